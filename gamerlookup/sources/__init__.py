"""
Source adapters: one acquisition strategy each (official API or public-page scrape).

An adapter either returns a complete vendor payload or raises ``SourceError`` with a typed
``ErrorKind``; it never returns a partial result. Identifier handling is explicit: ``accepts``
tells whether the identifier already is the platform-native id, otherwise
``resolve_identifier`` turns a vanity name into one before ``fetch`` runs.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import aiohttp

from gamerlookup.lib.db.schemes import PlatformEnum
from gamerlookup.logger import logger
from gamerlookup.resolver.errors import SourceError, error_kind_for_status
from gamerlookup.resolver.structures import ErrorKind, RawPlatformPayload, SourceKind
from gamerlookup.resolver.tokens import TokenLifecycleManager
from gamerlookup.sources.http_session import get_session


class SourceAdapter(ABC):
    source_kind: SourceKind
    platform: PlatformEnum
    requires_credential: bool = False

    def __init__(self, token_manager: Optional[TokenLifecycleManager] = None):
        self.token_manager = token_manager

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source_kind.value}>"

    def accepts(self, identifier: str) -> bool:
        """True when ``identifier`` is already in the form ``fetch`` expects."""
        return True

    async def resolve_identifier(self, identifier: str) -> str:
        return identifier

    @abstractmethod
    async def fetch(self, native_id: str) -> RawPlatformPayload:
        ...

    async def acquire(self, identifier: str) -> RawPlatformPayload:
        identifier = identifier.strip()
        try:
            if not self.accepts(identifier):
                identifier = await self.resolve_identifier(identifier)
            return await self.fetch(identifier)
        except SourceError as e:
            if e.kind is ErrorKind.CREDENTIAL_INVALID and self.token_manager is not None:
                await self.token_manager.mark_invalid(f"{self.source_kind.value}: {e}")
            raise
        except aiohttp.ClientResponseError as e:
            raise SourceError(error_kind_for_status(e.status), f"HTTP {e.status}") from e
        except aiohttp.ClientError as e:
            raise SourceError(ErrorKind.UPSTREAM_UNAVAILABLE, type(e).__name__) from e
        except asyncio.TimeoutError as e:
            raise SourceError(ErrorKind.TIMEOUT, "request timed out") from e


StatusKinds = Mapping[int, ErrorKind]


def raise_for_status(response: aiohttp.ClientResponse, context: str,
                     status_kinds: Optional[StatusKinds] = None) -> None:
    """
    Raise ``SourceError`` for an error status. ``status_kinds`` overrides the generic
    mapping where a vendor gives a status its own meaning.
    """
    if response.status < 400:
        return
    kind = (status_kinds or {}).get(response.status) or error_kind_for_status(response.status)
    logger.warning("%s -> %s (%s)", context, response.status, kind.value)
    raise SourceError(kind, f"{context}: HTTP {response.status}")


async def get_json(
        url: str,
        context: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        status_kinds: Optional[StatusKinds] = None
) -> Any:
    session = get_session()
    async with session.get(url, params=params, headers=headers) as response:
        raise_for_status(response, context, status_kinds)
        try:
            return await response.json(content_type=None)
        except ValueError as e:
            raise SourceError(ErrorKind.UPSTREAM_UNAVAILABLE, f"{context}: invalid JSON") from e


async def post_json(
        url: str,
        context: str,
        *,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
        status_kinds: Optional[StatusKinds] = None
) -> Any:
    session = get_session()
    async with session.post(url, json=json, headers=headers) as response:
        raise_for_status(response, context, status_kinds)
        try:
            return await response.json(content_type=None)
        except ValueError as e:
            raise SourceError(ErrorKind.UPSTREAM_UNAVAILABLE, f"{context}: invalid JSON") from e
