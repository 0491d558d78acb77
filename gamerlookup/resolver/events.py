import json
import logging
from typing import Any, Protocol

from gamerlookup.logger import logger


class EventSink(Protocol):
    def emit(self, event: str, **fields: Any) -> None:
        ...


class LoggingEventSink:
    """Writes one structured line per event through the package logger."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def emit(self, event: str, **fields: Any) -> None:
        payload = {"event": event, **fields}
        logger.log(self.level, json.dumps(payload, default=str, sort_keys=True))


class RecordingEventSink:
    """Keeps events in memory, handy for tests and debugging sessions."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]
