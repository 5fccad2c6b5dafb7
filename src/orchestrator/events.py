"""Fire-and-forget notifications about agent lifecycle changes."""

from __future__ import annotations

import threading
from typing import Any

import structlog


class EventPublisher:
    """Best-effort event sink.

    ``publish`` never raises: delivery failures are logged and dropped.
    Subclasses implement ``_deliver``.
    """

    def __init__(self) -> None:
        self._log = structlog.get_logger("events")

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self._deliver(event, payload)
        except Exception as exc:
            self._log.warning("event_delivery_failed", event=event, error=str(exc))

    def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingEventPublisher(EventPublisher):
    """Writes every event to the console log."""

    def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        self._log.info("event", event=event, **payload)


class RecordingEventPublisher(EventPublisher):
    """Keeps every event in memory, in emission order."""

    def __init__(self) -> None:
        super().__init__()
        self._events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self._events.append((event, dict(payload)))

    @property
    def events(self) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            return list(self._events)

    def named(self, event: str) -> list[dict[str, Any]]:
        """Payloads of all events called *event*."""
        return [payload for name, payload in self.events if name == event]


class FanoutEventPublisher(EventPublisher):
    """Forwards each event to several publishers independently."""

    def __init__(self, *publishers: EventPublisher) -> None:
        super().__init__()
        self._publishers = list(publishers)

    def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        for publisher in self._publishers:
            publisher.publish(event, payload)
