import asyncio
import copy
import time
from typing import Awaitable, Callable, Optional

from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.logger import logger
from gamerlookup.resolver.structures import CacheStats, CanonicalProfile

CacheKey = tuple[PlatformEnum, str]


def make_cache_key(platform: PlatformEnum, identifier: str) -> CacheKey:
    return platform, identifier.strip().lower()


class CacheEntry:
    __slots__ = ("value", "stored_at", "ttl")

    def __init__(self, value: CanonicalProfile, stored_at: float, ttl: float):
        self.value = value
        self.stored_at = stored_at
        self.ttl = ttl

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


class ResultCache:
    """
    In-memory profile cache keyed by (platform, normalized identifier).

    Entries expire lazily on read; ``sweep`` (or the background sweeper) only bounds memory.
    ``single_flight`` guarantees at most one upstream resolution per key at any time.
    """

    def __init__(self, default_ttl: float = 1800.0, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._inflight: dict[CacheKey, asyncio.Task] = {}
        self._hits = 0
        self._misses = 0
        self._sweeper: Optional[asyncio.Task] = None

    def get(self, key: CacheKey) -> Optional[CanonicalProfile]:
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug("Evicted expired entry %s/%s", key[0].value, key[1])
            entry = None
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return copy.deepcopy(entry.value)

    def put(self, key: CacheKey, profile: CanonicalProfile, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(copy.deepcopy(profile), self._clock(), ttl)

    def invalidate(self, key: CacheKey) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))

    def in_flight(self, key: CacheKey) -> bool:
        return key in self._inflight

    async def single_flight(
            self,
            key: CacheKey,
            factory: Callable[[], Awaitable[CanonicalProfile]]
    ) -> CanonicalProfile:
        """
        Run ``factory`` for ``key`` unless a run is already in flight, in which case join it.
        Every caller observes the same outcome, including the same exception.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._finish_flight(key, done))
        else:
            logger.debug("Joining in-flight resolution for %s/%s", key[0].value, key[1])
        # shield: one cancelled caller must not cancel the shared resolution
        result = await asyncio.shield(task)
        return copy.deepcopy(result)

    def _finish_flight(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # every waiter may have been cancelled; keep asyncio from reporting an unretrieved error
        if not task.cancelled():
            task.exception()

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def start_sweeper(self, interval: float) -> None:
        if interval <= 0 or (self._sweeper and not self._sweeper.done()):
            return
        self._sweeper = asyncio.ensure_future(self._sweep_loop(interval))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()
