"""Rollover workflow state machine.

The transition table is data; :func:`next_phase` is a pure lookup so the
workflow decisions can be tested without any platform.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from rollover.contracts.models import PhaseTransition
from rollover.contracts.types import PhaseEvent, RolloverPhase

P = RolloverPhase
E = PhaseEvent

ROLLOVER_TRANSITIONS: tuple[tuple[PhaseEvent, RolloverPhase, RolloverPhase], ...] = (
    (E.REQUEST_RECEIVED, P.START, P.DEPLOYING),
    (E.PLATFORM_ACK, P.DEPLOYING, P.HEALTH_CHECKING),
    (E.PLATFORM_UNAVAILABLE, P.DEPLOYING, P.DEPLOYING),
    (E.INVALID_SPEC, P.DEPLOYING, P.ABORTED),
    (E.DEPLOY_FAILED, P.DEPLOYING, P.ABORTED),
    (E.CANCELLED, P.DEPLOYING, P.ABORTED),
    (E.HEALTHY, P.HEALTH_CHECKING, P.SWITCHING),
    (E.UNHEALTHY, P.HEALTH_CHECKING, P.ABORTED),
    (E.SWITCH_VERIFIED, P.SWITCHING, P.REBINDING),
    (E.SWITCH_FAILED, P.SWITCHING, P.ABORTED),
    (E.CANCELLED, P.SWITCHING, P.ABORTED),
    (E.REBIND_SUCCEEDED, P.REBINDING, P.DRAINING),
    (E.REBIND_FAILED, P.REBINDING, P.ABORTED),
    (E.DRAIN_COMPLETED, P.DRAINING, P.DONE),
    (E.DRAIN_FAILED, P.DRAINING, P.ABORTED),
)

# Phases after which traffic has already moved to the candidate.
POST_SWITCH_PHASES = frozenset({P.REBINDING, P.DRAINING})


class InvalidTransition(RuntimeError):
    """Raised when an event is not defined for the current phase."""


def next_phase(
    phase: RolloverPhase,
    event: PhaseEvent,
    transitions: Iterable[tuple[PhaseEvent, RolloverPhase, RolloverPhase]] = ROLLOVER_TRANSITIONS,
) -> RolloverPhase:
    """Return the phase reached from ``phase`` on ``event``."""
    for trigger, source, dest in transitions:
        if trigger is event and source is phase:
            return dest
    raise InvalidTransition(f"No transition for '{event.value}' from phase '{phase.value}'")


class RolloverStateMachine:
    """Tracks the current phase of one rollover and records its history.

    Not thread-safe; one instance belongs to one workflow run.
    """

    def __init__(
        self,
        transitions: Iterable[tuple[PhaseEvent, RolloverPhase, RolloverPhase]] = ROLLOVER_TRANSITIONS,
        on_transition: Callable[[PhaseTransition], None] | None = None,
    ) -> None:
        self._transitions = tuple(transitions)
        self._on_transition = on_transition
        self._state = RolloverPhase.START
        self.history: list[PhaseTransition] = []

    @property
    def state(self) -> RolloverPhase:
        return self._state

    @property
    def terminal(self) -> bool:
        return self._state.terminal

    def trigger(self, event: PhaseEvent, **details: Any) -> PhaseTransition:
        if self._state.terminal:
            raise InvalidTransition(f"Workflow already finished in phase '{self._state.value}'")
        dest = next_phase(self._state, event, self._transitions)
        transition = PhaseTransition(source=self._state, event=event, dest=dest, details=details)
        self._state = dest
        self.history.append(transition)
        if self._on_transition:
            self._on_transition(transition)
        return transition

    def last_active_phase(self) -> RolloverPhase:
        """Last non-terminal phase entered."""
        for transition in reversed(self.history):
            if not transition.dest.terminal:
                return transition.dest
        return RolloverPhase.START
