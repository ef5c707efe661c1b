"""Status and log events published by the core to its subscribers."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass
class ConsoleEvent:
    """A single status change or log line."""

    kind: str
    message: str
    level: str = "info"
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "level": self.level,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
        }


Subscriber = Callable[[ConsoleEvent], None]


class EventBus:
    """Fan-out of core events. Subscribers must not block."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber and return a callable that removes it."""
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    def emit(self, kind: str, message: str, level: str = "info", **data: Any) -> ConsoleEvent:
        event = ConsoleEvent(kind=kind, message=message, level=level, data=data)
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception("event_subscriber_error", kind=kind)
        return event

    def status(self, message: str, **data: Any) -> ConsoleEvent:
        return self.emit("status", message, **data)

    def log(self, message: str, level: str = "info", **data: Any) -> ConsoleEvent:
        return self.emit("log", message, level=level, **data)


class EventLog:
    """Bounded in-memory history of events, served by the daemon."""

    def __init__(self, maxlen: int = 500) -> None:
        self._events: deque[ConsoleEvent] = deque(maxlen=maxlen)

    def __call__(self, event: ConsoleEvent) -> None:
        self._events.append(event)

    def recent(self, limit: int = 50) -> list[ConsoleEvent]:
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def clear(self) -> None:
        self._events.clear()
