"""Event recording helper."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from threading import Lock
from uuid import UUID

from rollover.orchestrator.event_bus import Event, EventBus


@dataclass(slots=True)
class RecordingEventBus:
    """Wraps another EventBus and records published events."""

    bus: EventBus
    events: list[Event] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def publish(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)
        self.bus.publish(event)

    def subscribe(self, event_type: str) -> Iterator[Event]:
        return self.bus.subscribe(event_type)

    def next_event(self, event_type: str, timeout: float | None = None) -> Event | None:
        return self.bus.next_event(event_type, timeout=timeout)

    def for_rollover(self, rollover_id: UUID) -> list[Event]:
        with self._lock:
            return [event for event in self.events if event.rollover_id == rollover_id]

    def close(self) -> None:
        close = getattr(self.bus, "close", None)
        if close is not None:
            close()
