"""Deployment records for the two rollover slots."""

from __future__ import annotations

import logging
from threading import Event as ThreadEvent, Lock

from rollover.contracts.errors import Cancelled, InvalidSpec, PlatformUnavailable
from rollover.contracts.models import DeploymentStatus, Environment, parse_image_ref
from rollover.contracts.types import EnvironmentState
from rollover.platform.base import WorkloadApi
from rollover.runtime.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class EnvironmentManager:
    """Creates, scales and tracks environments through the workload API.

    Records are never deleted; draining scales to zero and keeps the record so
    traffic can be switched back quickly.
    """

    def __init__(
        self,
        workload: WorkloadApi,
        *,
        clock: Clock | None = None,
        drain_timeout: float = 300.0,
        drain_poll_interval: float = 5.0,
    ) -> None:
        self._workload = workload
        self._clock = clock or SystemClock()
        self._drain_timeout = drain_timeout
        self._drain_poll_interval = drain_poll_interval
        self._environments: dict[str, Environment] = {}
        self._lock = Lock()

    def get(self, name: str) -> Environment:
        """Copy of the record; an unknown name reads as UNCONFIGURED without being added."""
        with self._lock:
            record = self._environments.get(name)
            return record.model_copy() if record is not None else Environment(name=name)

    def snapshot(self) -> dict[str, Environment]:
        with self._lock:
            return {name: env.model_copy() for name, env in self._environments.items()}

    def _record(self, name: str) -> Environment:
        if name not in self._environments:
            self._environments[name] = Environment(name=name)
        return self._environments[name]

    def mark(self, name: str, state: EnvironmentState) -> Environment:
        """Move an environment to a lifecycle state other than LIVE."""
        if state is EnvironmentState.LIVE:
            raise ValueError("use promote() to mark an environment live")
        with self._lock:
            record = self._record(name)
            record.state = state
            return record.model_copy()

    def promote(self, name: str) -> Environment:
        """Mark ``name`` LIVE, demoting any previously live environment."""
        with self._lock:
            for other in self._environments.values():
                if other.name != name and other.state is EnvironmentState.LIVE:
                    other.state = EnvironmentState.HEALTHY
            record = self._record(name)
            record.state = EnvironmentState.LIVE
            return record.model_copy()

    def ensure(self, name: str, image_ref: str, replicas: int) -> Environment:
        if not name:
            raise InvalidSpec("environment name must not be empty")
        if replicas < 0:
            raise InvalidSpec(f"replicas must be non-negative, got {replicas}", environment=name)
        try:
            parse_image_ref(image_ref)
        except ValueError as exc:
            raise InvalidSpec(str(exc), environment=name) from exc

        self._workload.ensure_deployment(name, image_ref, replicas)
        with self._lock:
            record = self._record(name)
            record.image_ref = image_ref
            record.desired_replicas = replicas
            record.state = EnvironmentState.DEPLOYING
            logger.info(
                "environment.ensured",
                extra={"extra": {"environment": name, "image": image_ref, "replicas": replicas}},
            )
            return record.model_copy()

    def scale_to(
        self, name: str, replicas: int, cancel: ThreadEvent | None = None, *, wait: bool = True
    ) -> Environment:
        """Scale ``name``; scaling to zero waits for it to drain unless ``wait`` is False."""
        if replicas < 0:
            raise InvalidSpec(f"replicas must be non-negative, got {replicas}", environment=name)
        self._workload.scale_deployment(name, replicas)
        with self._lock:
            record = self._record(name)
            record.desired_replicas = replicas
            record.state = EnvironmentState.DRAINING if replicas == 0 else EnvironmentState.DEPLOYING
        logger.info(
            "environment.scaled", extra={"extra": {"environment": name, "replicas": replicas}}
        )
        if replicas == 0 and wait:
            self.await_drained(name, cancel)
        return self.get(name)

    def await_drained(self, name: str, cancel: ThreadEvent | None = None) -> None:
        """Poll until no replica of ``name`` is ready, for at most the drain timeout."""
        deadline = self._clock.monotonic() + self._drain_timeout
        while True:
            status = self._workload.get_deployment_status(name)
            if status.ready_replicas == 0:
                self.mark(name, EnvironmentState.DRAINED)
                logger.info("environment.drained", extra={"extra": {"environment": name}})
                return
            if self._clock.monotonic() >= deadline:
                raise PlatformUnavailable(
                    f"{name} still has {status.ready_replicas} ready replicas after "
                    f"{self._drain_timeout:.0f}s",
                    environment=name,
                )
            if self._clock.sleep(self._drain_poll_interval, cancel):
                raise Cancelled(f"drain of {name} cancelled", environment=name)

    def status(self, name: str) -> DeploymentStatus:
        return self._workload.get_deployment_status(name)
