"""Domain models for blue/green rollovers."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import re
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import yaml  # type: ignore[import-untyped]

from rollover.contracts.types import (
    EnvironmentState,
    FailureKind,
    HealthFailureReason,
    HealthStatus,
    PhaseEvent,
    RolloverPhase,
)

_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
IMAGE_REF_PATTERN = re.compile(
    rf"^(?:(?P<registry>[a-zA-Z0-9.-]+(?::[0-9]+)?)/)?"
    rf"(?P<repository>{_COMPONENT}(?:/{_COMPONENT})*)"
    r"(?::(?P<tag>[\w][\w.-]{0,127}))?"
    r"(?:@(?P<digest>sha256:[a-f0-9]{64}))?$"
)


def parse_image_ref(image_ref: str) -> re.Match[str]:
    """Return the parsed image reference or raise ValueError."""
    match = IMAGE_REF_PATTERN.match(image_ref.strip()) if image_ref else None
    if match is None:
        raise ValueError(f"Malformed image reference: {image_ref!r}")
    return match


def image_identity(image_ref: str) -> str | None:
    """Tag of the image, or its digest when it is pinned by digest only."""
    match = parse_image_ref(image_ref)
    return match.group("tag") or match.group("digest")


class HealthPolicy(BaseModel):
    """Polling policy for the health gate."""

    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(default=300.0, gt=0)
    interval_seconds: float = Field(default=5.0, gt=0)
    success_threshold: int = Field(default=1, ge=1)
    expected_identity: str | None = None


class RolloverRequest(BaseModel):
    """Intent of a single rollover invocation."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(min_length=1)
    image_ref: str
    replicas: int = Field(ge=0)
    health: HealthPolicy = Field(default_factory=HealthPolicy)
    drain_incumbent: bool = False

    @field_validator("image_ref")
    @classmethod
    def _validate_image_ref(cls, value: str) -> str:
        parse_image_ref(value)
        return value.strip()

    @model_validator(mode="after")
    def _require_identity(self) -> RolloverRequest:
        if self.expected_identity is None:
            raise ValueError(
                f"cannot tell which version {self.image_ref!r} serves; "
                "tag the image or set health.expected_identity"
            )
        return self

    @property
    def expected_identity(self) -> str | None:
        """Identity the candidate's probe must report."""
        return self.health.expected_identity or image_identity(self.image_ref)

    @classmethod
    def load(cls, path: Path) -> RolloverRequest:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        return cls.model_validate(data)


class Environment(BaseModel):
    """One of the two deployable slots."""

    name: str
    image_ref: str | None = None
    desired_replicas: int = Field(default=0, ge=0)
    state: EnvironmentState = EnvironmentState.UNCONFIGURED


class RouterState(BaseModel):
    """Active backend pointer of the traffic router."""

    model_config = ConfigDict(frozen=True)

    backend: str | None = None
    generation: int = Field(default=0, ge=0)


class AutoscalerBinding(BaseModel):
    """Which environment the autoscaling policy targets."""

    model_config = ConfigDict(frozen=True)

    target: str | None = None
    min_replicas: int = Field(default=1, ge=0)
    max_replicas: int = Field(default=10, ge=0)


class DeploymentStatus(BaseModel):
    """Replica counts reported by the workload API."""

    ready_replicas: int = 0
    desired_replicas: int = 0
    image_ref: str | None = None


class ProbeResult(BaseModel):
    """Outcome of a single health probe attempt."""

    passed: bool
    identity: str | None = None
    status_code: int | None = None
    detail: str = ""


class HealthResult(BaseModel):
    """Outcome of the health gate."""

    status: HealthStatus
    reason: HealthFailureReason | None = None
    attempts: int = 0
    consecutive_passes: int = 0
    elapsed_seconds: float = 0.0

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY


class PhaseTransition(BaseModel):
    """A single recorded state-machine transition."""

    source: RolloverPhase
    event: PhaseEvent
    dest: RolloverPhase
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: dict[str, Any] = Field(default_factory=dict)


class RolloverResult(BaseModel):
    """Final outcome returned by the orchestrator."""

    rollover_id: UUID = Field(default_factory=uuid4)
    target: str
    state: RolloverPhase
    reason: FailureKind | None = None
    detail: str | None = None
    phase_reached: RolloverPhase
    traffic_switched: bool = False
    live_environment: str | None = None
    previous_environment: str | None = None
    transitions: list[PhaseTransition] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is RolloverPhase.DONE
