"""Shared enums for rollover contracts."""

from __future__ import annotations

from enum import Enum


class EnvironmentState(str, Enum):
    """Lifecycle states of a deployable slot."""

    UNCONFIGURED = "UNCONFIGURED"
    DEPLOYING = "DEPLOYING"
    HEALTH_CHECKING = "HEALTH_CHECKING"
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    LIVE = "LIVE"
    DRAINING = "DRAINING"
    DRAINED = "DRAINED"


class RolloverPhase(str, Enum):
    """Orchestrator workflow phases."""

    START = "START"
    DEPLOYING = "DEPLOYING"
    HEALTH_CHECKING = "HEALTH_CHECKING"
    SWITCHING = "SWITCHING"
    REBINDING = "REBINDING"
    DRAINING = "DRAINING"
    DONE = "DONE"
    ABORTED = "ABORTED"

    @property
    def terminal(self) -> bool:
        return self in (RolloverPhase.DONE, RolloverPhase.ABORTED)


class PhaseEvent(str, Enum):
    """Outcomes that drive phase transitions."""

    REQUEST_RECEIVED = "request_received"
    PLATFORM_ACK = "platform_ack"
    PLATFORM_UNAVAILABLE = "platform_unavailable"
    INVALID_SPEC = "invalid_spec"
    DEPLOY_FAILED = "deploy_failed"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    SWITCH_VERIFIED = "switch_verified"
    SWITCH_FAILED = "switch_failed"
    REBIND_SUCCEEDED = "rebind_succeeded"
    REBIND_FAILED = "rebind_failed"
    DRAIN_COMPLETED = "drain_completed"
    DRAIN_FAILED = "drain_failed"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    """Error taxonomy surfaced by every component."""

    TRANSIENT = "TRANSIENT"
    INVALID = "INVALID"
    HEALTH_GATE_FAILED = "HEALTH_GATE_FAILED"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    CANCELLED = "CANCELLED"


class HealthStatus(str, Enum):
    """Outcome of a health gate."""

    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"


class HealthFailureReason(str, Enum):
    """Why a health gate did not pass."""

    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
