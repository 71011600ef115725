"""Progress event envelope and the in-process bus."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Condition
from typing import Any, Protocol
from uuid import UUID


@dataclass(slots=True)
class Event:
    """One progress event of one rollover."""

    event_id: UUID
    event_type: str
    rollover_id: UUID
    payload: dict[str, Any]
    correlation_id: UUID | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "rollover_id": str(self.rollover_id),
            "payload": self.payload,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Event:
        return cls(
            event_id=UUID(raw["event_id"]),
            event_type=raw["event_type"],
            rollover_id=UUID(raw["rollover_id"]),
            payload=raw["payload"],
            correlation_id=UUID(raw["correlation_id"]) if raw.get("correlation_id") else None,
            created_at=datetime.fromisoformat(raw["created_at"]),
        )


class EventBus(Protocol):
    """Where the orchestrator reports progress."""

    def publish(self, event: Event) -> None:
        """Publish an event to the bus."""

    def subscribe(self, event_type: str) -> Iterator[Event]:
        """Yield events of the given type as they arrive."""

    def next_event(self, event_type: str, timeout: float | None = None) -> Event | None:
        """Return the next event or None if timed out."""


class InMemoryEventBus:
    """In-process bus with a bounded backlog per event type.

    Progress events are often published with nobody listening, so each type
    keeps at most ``backlog`` undelivered events and the oldest are dropped.
    """

    def __init__(self, backlog: int = 1000) -> None:
        self._backlog = backlog
        self._topics: dict[str, deque[Event]] = {}
        self._ready = Condition()
        self.dropped = 0

    def publish(self, event: Event) -> None:
        with self._ready:
            topic = self._topics.setdefault(event.event_type, deque())
            if len(topic) >= self._backlog:
                topic.popleft()
                self.dropped += 1
            topic.append(event)
            self._ready.notify_all()

    def subscribe(self, event_type: str) -> Iterator[Event]:
        while True:
            event = self.next_event(event_type)
            if event is not None:
                yield event

    def next_event(self, event_type: str, timeout: float | None = None) -> Event | None:
        with self._ready:
            topic = self._topics.setdefault(event_type, deque())
            if not self._ready.wait_for(lambda: len(topic) > 0, timeout):
                return None
            return topic.popleft()
