"""Tests for event bus implementations."""

from __future__ import annotations

from uuid import uuid4

from rollover.contracts.events import ROLLOVER_COMPLETED, ROLLOVER_STARTED
from rollover.orchestrator.event_bus import Event, InMemoryEventBus
from rollover.orchestrator.nats_bus import decode_event, encode_event
from rollover.orchestrator.recorder import RecordingEventBus


def _event(event_type: str, rollover_id=None) -> Event:
    return Event(
        event_id=uuid4(),
        event_type=event_type,
        rollover_id=rollover_id or uuid4(),
        payload={"target": "green"},
    )


def test_in_memory_bus_delivers_per_topic() -> None:
    bus = InMemoryEventBus()
    started = _event(ROLLOVER_STARTED)
    bus.publish(started)

    assert bus.next_event(ROLLOVER_COMPLETED, timeout=0.01) is None
    assert bus.next_event(ROLLOVER_STARTED, timeout=0.01) is started


def test_recorder_filters_by_rollover() -> None:
    bus = RecordingEventBus(InMemoryEventBus())
    rollover_id = uuid4()
    bus.publish(_event(ROLLOVER_STARTED, rollover_id))
    bus.publish(_event(ROLLOVER_STARTED))
    bus.publish(_event(ROLLOVER_COMPLETED, rollover_id))

    mine = bus.for_rollover(rollover_id)

    assert [event.event_type for event in mine] == [ROLLOVER_STARTED, ROLLOVER_COMPLETED]
    assert len(bus.events) == 3
    assert bus.next_event(ROLLOVER_COMPLETED, timeout=0.01) is not None


def test_nats_wire_format_round_trip() -> None:
    event = _event(ROLLOVER_COMPLETED)
    event.correlation_id = uuid4()

    decoded = decode_event(encode_event(event))

    assert decoded == event


def test_in_memory_bus_drops_oldest_when_backlog_is_full() -> None:
    bus = InMemoryEventBus(backlog=2)
    first, second, third = (_event(ROLLOVER_STARTED) for _ in range(3))
    for event in (first, second, third):
        bus.publish(event)

    assert bus.dropped == 1
    assert bus.next_event(ROLLOVER_STARTED, timeout=0.01) is second
    assert bus.next_event(ROLLOVER_STARTED, timeout=0.01) is third
    assert bus.next_event(ROLLOVER_STARTED, timeout=0.01) is None


def test_event_dict_is_json_friendly() -> None:
    event = _event(ROLLOVER_STARTED)

    raw = event.to_dict()

    assert raw["rollover_id"] == str(event.rollover_id)
    assert raw["correlation_id"] is None
    assert Event.from_dict(raw) == event
