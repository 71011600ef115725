"""Progress event contracts for rollover observability."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from rollover.contracts.types import FailureKind, PhaseEvent, RolloverPhase


class RolloverStarted(BaseModel):
    target: str
    image_ref: str
    replicas: int


class PhaseChanged(BaseModel):
    target: str
    source: RolloverPhase
    event: PhaseEvent
    dest: RolloverPhase
    details: dict[str, Any] = Field(default_factory=dict)


class RolloverCompleted(BaseModel):
    target: str
    live_environment: str
    drained: str | None = None


class RolloverAborted(BaseModel):
    target: str
    reason: FailureKind
    detail: str
    phase: RolloverPhase
    traffic_switched: bool


ROLLOVER_STARTED = "rollover.started"
ROLLOVER_PHASE_CHANGED = "rollover.phase.changed"
ROLLOVER_COMPLETED = "rollover.completed"
ROLLOVER_ABORTED = "rollover.aborted"
