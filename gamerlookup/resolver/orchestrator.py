"""
Fallback orchestration: cache, single-flight, then the platform's adapter chain in order.
"""
import asyncio
import datetime
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.logger import logger
from gamerlookup.resolver.cache import CacheKey, ResultCache, make_cache_key
from gamerlookup.resolver.classifier import classify
from gamerlookup.resolver.errors import (
    TRANSIENT_KINDS, ResolutionFailure, SourceError, is_try_next,
)
from gamerlookup.resolver.events import EventSink, LoggingEventSink
from gamerlookup.resolver.normalizer import DEFAULT_TOP_N, normalize
from gamerlookup.resolver.structures import (
    AttemptRecord, CanonicalProfile, ErrorKind, ProfileRequest, RawPlatformPayload,
)
from gamerlookup.sources import SourceAdapter

HistoryRecorder = Callable[[CanonicalProfile, str], Awaitable[Any]]


def _now_iso() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat()


class FallbackOrchestrator:
    def __init__(
            self,
            chains: Mapping[PlatformEnum, Sequence[SourceAdapter]],
            cache: ResultCache,
            *,
            attempt_timeout: float = 20.0,
            deadline: float = 60.0,
            transient_retries: int = 0,
            top_n: int = DEFAULT_TOP_N,
            ttl_for: Optional[Callable[[PlatformEnum], Optional[float]]] = None,
            events: Optional[EventSink] = None,
            history: Optional[HistoryRecorder] = None,
            clock: Callable[[], float] = time.monotonic
    ):
        self.chains = {platform: tuple(adapters) for platform, adapters in chains.items()}
        self.cache = cache
        self.attempt_timeout = attempt_timeout
        self.deadline = deadline
        self.transient_retries = max(0, transient_retries)
        self.top_n = top_n
        self.ttl_for = ttl_for or (lambda platform: None)
        self.events = events or LoggingEventSink()
        self.history = history
        self._clock = clock

    def _validate(self, request: ProfileRequest) -> tuple[PlatformEnum, str]:
        try:
            platform = PlatformEnum(request.get("platform"))
        except ValueError:
            raise ResolutionFailure(
                f"Unknown platform {request.get('platform')!r}", [], fatal_kind=ErrorKind.MALFORMED_REQUEST
            ) from None
        identifier = request.get("identifier")
        if not isinstance(identifier, str) or not identifier.strip():
            raise ResolutionFailure("Gamer tag is required", [], fatal_kind=ErrorKind.MALFORMED_REQUEST)
        if not self.chains.get(platform):
            raise ResolutionFailure(
                f"No sources configured for {platform.value}", [], fatal_kind=ErrorKind.MALFORMED_REQUEST
            )
        return platform, identifier.strip()

    async def resolve(self, request: ProfileRequest) -> CanonicalProfile:
        """
        Resolve ``request`` to a canonical profile, or raise ``ResolutionFailure``.

        Cache hits return without touching any adapter. Concurrent misses on the same key
        share one resolution and observe the same outcome.
        """
        platform, identifier = self._validate(request)
        key = make_cache_key(platform, identifier)

        cached = self.cache.get(key)
        if cached is not None:
            self.events.emit("cache_hit", platform=platform.value, key=key[1])
            return cached
        self.events.emit("cache_miss", platform=platform.value, key=key[1])

        return await self.cache.single_flight(key, lambda: self._resolve_fresh(platform, identifier, key))

    async def _resolve_fresh(self, platform: PlatformEnum, identifier: str, key: CacheKey) -> CanonicalProfile:
        attempts: list[AttemptRecord] = []
        deadline_at = self._clock() + self.deadline

        for adapter in self.chains[platform]:
            if adapter.requires_credential and adapter.token_manager is not None:
                remaining = deadline_at - self._clock()
                if remaining <= 0:
                    raise self._failure(platform, identifier, attempts, deadline_exceeded=True)
                started_at = _now_iso()
                started = self._clock()
                kind = await self._check_credential(adapter, min(self.attempt_timeout, remaining))
                if kind is not None:
                    self._record(attempts, platform, identifier, adapter, started_at,
                                 self._clock() - started, kind)
                    if kind is ErrorKind.TIMEOUT and remaining < self.attempt_timeout:
                        raise self._failure(platform, identifier, attempts, deadline_exceeded=True)
                    continue

            for try_number in range(self.transient_retries + 1):
                remaining = deadline_at - self._clock()
                if remaining <= 0:
                    raise self._failure(platform, identifier, attempts, deadline_exceeded=True)
                capped_by_deadline = remaining < self.attempt_timeout

                started_at = _now_iso()
                started = self._clock()
                profile, kind = await self._attempt(
                    adapter, platform, identifier, min(self.attempt_timeout, remaining)
                )
                self._record(attempts, platform, identifier, adapter, started_at,
                             self._clock() - started, kind, try_number)

                if kind is None:
                    self.cache.put(key, profile, ttl=self.ttl_for(platform))
                    await self._record_history(profile, key[1])
                    return profile
                if not is_try_next(kind):
                    raise self._failure(platform, identifier, attempts, fatal_kind=kind)
                if kind is ErrorKind.TIMEOUT and capped_by_deadline:
                    raise self._failure(platform, identifier, attempts, deadline_exceeded=True)
                if kind not in TRANSIENT_KINDS:
                    break

        raise self._failure(platform, identifier, attempts)

    async def _check_credential(self, adapter: SourceAdapter, timeout: float) -> Optional[ErrorKind]:
        try:
            usable = await asyncio.wait_for(adapter.token_manager.ensure_usable(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Credential check for %s timed out after %.1fs", adapter.source_kind.value, timeout)
            return ErrorKind.TIMEOUT
        return None if usable else ErrorKind.CREDENTIAL_INVALID

    async def _attempt(
            self,
            adapter: SourceAdapter,
            platform: PlatformEnum,
            identifier: str,
            timeout: float
    ) -> tuple[Optional[CanonicalProfile], Optional[ErrorKind]]:
        try:
            payload: RawPlatformPayload = await asyncio.wait_for(adapter.acquire(identifier), timeout)
        except SourceError as e:
            logger.info("%s failed for %s/%s: %s (%s)",
                        adapter.source_kind.value, platform.value, identifier, e.kind.value, e)
            return None, e.kind
        except asyncio.TimeoutError:
            logger.info("%s timed out after %.1fs for %s/%s",
                        adapter.source_kind.value, timeout, platform.value, identifier)
            return None, ErrorKind.TIMEOUT
        except Exception as e:
            logger.exception("Unexpected error in %s for %s/%s: %s",
                             adapter.source_kind.value, platform.value, identifier, e)
            return None, ErrorKind.UPSTREAM_UNAVAILABLE

        try:
            profile = normalize(platform, payload, top_n=self.top_n, resolved_at=_now_iso())
        except (KeyError, TypeError, ValueError) as e:
            logger.exception("Unusable %s payload for %s/%s: %s",
                             adapter.source_kind.value, platform.value, identifier, e)
            return None, ErrorKind.UPSTREAM_UNAVAILABLE

        profile.update(classify(adapter.source_kind, profile))
        return profile, None

    def _record(
            self,
            attempts: list[AttemptRecord],
            platform: PlatformEnum,
            identifier: str,
            adapter: SourceAdapter,
            started_at: str,
            elapsed: float,
            kind: Optional[ErrorKind],
            retry: int = 0
    ) -> None:
        record = AttemptRecord(
            source_kind=adapter.source_kind,
            started_at=started_at,
            outcome="success" if kind is None else "failure",
            error_kind=kind,
        )
        attempts.append(record)
        self.events.emit(
            "attempt",
            platform=platform.value,
            identifier=identifier,
            source_kind=adapter.source_kind.value,
            started_at=started_at,
            outcome=record["outcome"],
            error_kind=kind.value if kind else None,
            retry=retry,
            duration_ms=int(elapsed * 1000),
        )

    def _failure(
            self,
            platform: PlatformEnum,
            identifier: str,
            attempts: list[AttemptRecord],
            fatal_kind: Optional[ErrorKind] = None,
            deadline_exceeded: bool = False
    ) -> ResolutionFailure:
        if deadline_exceeded:
            message = f"Lookup of {platform.value} profile {identifier!r} ran out of time"
        else:
            message = f"Could not resolve {platform.value} profile {identifier!r} from any source"
        failure = ResolutionFailure(message, attempts, fatal_kind=fatal_kind, deadline_exceeded=deadline_exceeded)
        self.events.emit(
            "resolution_failed",
            platform=platform.value,
            identifier=identifier,
            sources_attempted=failure.sources_attempted,
            error_kinds=[kind.value for kind in failure.error_kinds],
            status=failure.http_status,
        )
        return failure

    async def _record_history(self, profile: CanonicalProfile, lookup_key: str) -> None:
        if self.history is None:
            return
        try:
            await self.history(profile, lookup_key)
        except Exception as e:
            logger.error("Could not record lookup history for %s/%s: %s",
                         profile["platform"].value, profile["identifier"], e, exc_info=True)
