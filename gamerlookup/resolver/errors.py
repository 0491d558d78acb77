from typing import Optional

from gamerlookup.resolver.structures import AttemptRecord, ErrorKind

# kinds after which the orchestrator stops walking the chain
FATAL_KINDS = frozenset({ErrorKind.MALFORMED_REQUEST})

# kinds worth a second try against the same source
TRANSIENT_KINDS = frozenset({ErrorKind.UPSTREAM_UNAVAILABLE, ErrorKind.TIMEOUT})


def is_try_next(kind: ErrorKind) -> bool:
    return kind not in FATAL_KINDS


class SourceError(Exception):
    """
    Raised by a source adapter when it cannot produce a payload.
    The message is meant for logs; it must never carry credentials.
    """

    def __init__(self, kind: ErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind


def error_kind_for_status(status: int) -> ErrorKind:
    if status in (401, 403):
        return ErrorKind.CREDENTIAL_INVALID
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status in (400, 422):
        return ErrorKind.MALFORMED_REQUEST
    return ErrorKind.UPSTREAM_UNAVAILABLE


class ResolutionFailure(Exception):
    """
    Aggregate failure of one resolution: which sources were tried, in order, and how each failed.
    """

    def __init__(self, message: str, attempts: list[AttemptRecord],
                 fatal_kind: Optional[ErrorKind] = None, deadline_exceeded: bool = False):
        super().__init__(message)
        self.message = message
        self.attempts = list(attempts)
        self.fatal_kind = fatal_kind
        self.deadline_exceeded = deadline_exceeded

    @property
    def sources_attempted(self) -> list[str]:
        return [attempt["source_kind"].value for attempt in self.attempts]

    @property
    def error_kinds(self) -> list[ErrorKind]:
        return [attempt["error_kind"] for attempt in self.attempts if attempt["error_kind"] is not None]

    @property
    def http_status(self) -> int:
        if self.fatal_kind is ErrorKind.MALFORMED_REQUEST:
            return 400
        if self.deadline_exceeded:
            return 504
        kinds = self.error_kinds
        if kinds and all(kind is ErrorKind.CREDENTIAL_INVALID for kind in kinds):
            return 401
        remaining = [kind for kind in kinds if kind is not ErrorKind.CREDENTIAL_INVALID]
        if remaining and all(kind is ErrorKind.NOT_FOUND for kind in remaining):
            return 404
        if remaining and all(kind is ErrorKind.RATE_LIMITED for kind in remaining):
            return 429
        return 502

    def to_response(self) -> dict:
        return {
            "error": self.message,
            "sources_attempted": self.sources_attempted,
            "error_kinds": [kind.value for kind in self.error_kinds],
        }
