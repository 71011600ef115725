"""Ports for the external control planes the orchestrator drives."""

from __future__ import annotations

from typing import Protocol

from rollover.contracts.models import (
    AutoscalerBinding,
    DeploymentStatus,
    ProbeResult,
    RouterState,
)


class WorkloadApi(Protocol):
    """Workload control API (deployments and replica counts)."""

    def ensure_deployment(self, name: str, image_ref: str, replicas: int) -> None:
        """Create or update a deployment; return once the platform acknowledges."""

    def get_deployment_status(self, name: str) -> DeploymentStatus:
        """Return ready and desired replica counts."""

    def scale_deployment(self, name: str, replicas: int) -> None:
        """Set the desired replica count."""


class RouterApi(Protocol):
    """Router control API holding the active-backend pointer."""

    def get_active_backend(self) -> RouterState:
        """Return the active backend and its generation token."""

    def set_active_backend(self, backend: str, expected_generation: int) -> RouterState:
        """Conditionally write the backend; raise ConcurrentModification on conflict."""


class AutoscalerApi(Protocol):
    """Autoscaler control API."""

    def get_binding(self) -> AutoscalerBinding:
        """Return the current binding."""

    def set_binding_target(self, target: str) -> AutoscalerBinding:
        """Point the autoscaling policy at a different environment."""


class HealthProbe(Protocol):
    """Single-shot health probe against one environment."""

    def probe(self, environment: str, expected_identity: str | None) -> ProbeResult:
        """Probe once; raise or return a failed result when unhealthy."""
