import asyncio
import datetime
from typing import Awaitable, Callable, Optional

import aiohttp

from gamerlookup.logger import logger, register_secret
from gamerlookup.resolver.structures import TokenStatus

TokenValidator = Callable[[str], Awaitable[bool]]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class TokenRecord:
    __slots__ = ("_value", "issued_at", "expires_at", "last_validated_at", "invalid_reason")

    def __init__(self, value: str, issued_at: datetime.datetime,
                 expires_at: Optional[datetime.datetime] = None):
        self._value = value
        self.issued_at = issued_at
        self.expires_at = expires_at
        self.last_validated_at: Optional[datetime.datetime] = None
        self.invalid_reason: Optional[str] = None

    def __repr__(self) -> str:
        return (f"TokenRecord(issued_at={self.issued_at!r}, expires_at={self.expires_at!r}, "
                f"invalid={self.invalid_reason is not None})")


class TokenLifecycleManager:
    """
    Tracks one externally issued session credential (the PSN NPSSO token).

    The manager never mints tokens: a new value only arrives through ``supply``.
    Upstream validation runs at most once per ``staleness`` window so that freshness
    checks do not burn the vendor's rate limit.
    """

    def __init__(
            self,
            name: str,
            validator: Optional[TokenValidator] = None,
            staleness: float = 900.0,
            max_age: datetime.timedelta = datetime.timedelta(days=30),
            clock: Callable[[], datetime.datetime] = _utcnow
    ):
        self.name = name
        self.validator = validator
        self.staleness = datetime.timedelta(seconds=staleness)
        self.max_age = max_age
        self._clock = clock
        self._record: Optional[TokenRecord] = None
        self._lock = asyncio.Lock()

    def supply(self, token: str, expires_at: Optional[datetime.datetime] = None) -> None:
        if not token or not token.strip():
            raise ValueError("token must be a non-empty string")
        register_secret(token)
        self._record = TokenRecord(token.strip(), self._clock(), expires_at)
        logger.info("Credential %s supplied (expires_at=%s)", self.name, _iso(expires_at) or "unknown")

    def clear(self) -> None:
        self._record = None

    def reveal(self) -> Optional[str]:
        """Secret value for source adapters; never hand it to API callers or logs."""
        return self._record._value if self._record else None

    def _is_expired(self, now: datetime.datetime) -> bool:
        record = self._record
        if record is None:
            return True
        if record.expires_at is not None:
            return now >= record.expires_at
        return now - record.issued_at > self.max_age

    def _needs_validation(self, now: datetime.datetime) -> bool:
        record = self._record
        return record.last_validated_at is None or now - record.last_validated_at > self.staleness

    def is_usable(self) -> bool:
        now = self._clock()
        record = self._record
        if record is None or record.invalid_reason is not None or self._is_expired(now):
            return False
        if record.expires_at is None and self.validator is not None:
            return not self._needs_validation(now)
        return True

    async def ensure_usable(self) -> bool:
        """
        Usability check that validates against the upstream endpoint when the last
        validation is older than the staleness window.
        """
        async with self._lock:
            now = self._clock()
            record = self._record
            if record is None or record.invalid_reason is not None or self._is_expired(now):
                return False
            if self.validator is None or not self._needs_validation(now):
                return True

            try:
                valid = await self.validator(record._value)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning("Could not validate credential %s: %s", self.name, type(e).__name__)
                return False

            if self._record is not record:
                # refreshed externally while validating; judge the new one next cycle
                return False
            if not valid:
                record.invalid_reason = "rejected by upstream validation"
                logger.warning("Credential %s rejected by upstream validation", self.name)
                return False
            record.last_validated_at = self._clock()
            logger.debug("Credential %s validated", self.name)
            return True

    async def mark_invalid(self, reason: str) -> None:
        async with self._lock:
            if self._record is None:
                return
            self._record.invalid_reason = reason
        logger.warning("Credential %s marked invalid: %s", self.name, reason)

    def status(self) -> TokenStatus:
        record = self._record
        if record is None:
            return TokenStatus(exists=False, is_expired=True, last_updated=None, last_validated_at=None)
        now = self._clock()
        return TokenStatus(
            exists=True,
            is_expired=record.invalid_reason is not None or self._is_expired(now),
            last_updated=_iso(record.issued_at),
            last_validated_at=_iso(record.last_validated_at),
        )
