"""In-memory control planes for demos and tests."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from threading import Lock

from rollover.contracts.errors import ConcurrentModification, InvalidSpec, PlatformUnavailable
from rollover.contracts.models import (
    AutoscalerBinding,
    DeploymentStatus,
    ProbeResult,
    RouterState,
    image_identity,
)


@dataclass(slots=True)
class _Deployment:
    image_ref: str
    replicas: int
    ready: int = 0
    pending_reads: int = 0


class InMemoryWorkloadApi:
    """Deployment store with injectable transient and validation failures."""

    def __init__(
        self,
        *,
        unavailable_failures: int = 0,
        rejected_images: Iterable[str] = (),
        ready_after_reads: int = 0,
        journal: list[str] | None = None,
    ) -> None:
        self.deployments: dict[str, _Deployment] = {}
        self.unavailable_failures = unavailable_failures
        self.rejected_images = set(rejected_images)
        self.ready_after_reads = ready_after_reads
        self.journal = journal if journal is not None else []
        self._lock = Lock()

    def ensure_deployment(self, name: str, image_ref: str, replicas: int) -> None:
        with self._lock:
            self.journal.append(f"workload.ensure:{name}")
            if self.unavailable_failures > 0:
                self.unavailable_failures -= 1
                raise PlatformUnavailable("workload API unavailable", environment=name)
            if image_ref in self.rejected_images:
                raise InvalidSpec(f"image {image_ref} rejected by platform", environment=name)
            existing = self.deployments.get(name)
            if existing and existing.image_ref == image_ref and existing.replicas == replicas:
                return
            self.deployments[name] = _Deployment(
                image_ref=image_ref,
                replicas=replicas,
                ready=0 if self.ready_after_reads else replicas,
                pending_reads=self.ready_after_reads,
            )

    def get_deployment_status(self, name: str) -> DeploymentStatus:
        with self._lock:
            deployment = self.deployments.get(name)
            if deployment is None:
                return DeploymentStatus()
            if deployment.pending_reads > 0:
                deployment.pending_reads -= 1
            else:
                deployment.ready = deployment.replicas
            return DeploymentStatus(
                ready_replicas=deployment.ready,
                desired_replicas=deployment.replicas,
                image_ref=deployment.image_ref,
            )

    def scale_deployment(self, name: str, replicas: int) -> None:
        with self._lock:
            self.journal.append(f"workload.scale:{name}:{replicas}")
            deployment = self.deployments.get(name)
            if deployment is None:
                raise InvalidSpec(f"deployment {name} does not exist", environment=name)
            deployment.replicas = replicas
            deployment.pending_reads = self.ready_after_reads
            if not self.ready_after_reads:
                deployment.ready = replicas

    def image_for(self, name: str) -> str | None:
        deployment = self.deployments.get(name)
        return deployment.image_ref if deployment else None


class InMemoryRouterApi:
    """Router pointer with a generation token and injectable write conflicts."""

    def __init__(
        self,
        backend: str | None = None,
        *,
        conflicts: int = 0,
        journal: list[str] | None = None,
    ) -> None:
        self._state = RouterState(backend=backend, generation=1 if backend else 0)
        self.conflicts = conflicts
        self.journal = journal if journal is not None else []
        self._lock = Lock()

    def get_active_backend(self) -> RouterState:
        with self._lock:
            return self._state

    def set_active_backend(self, backend: str, expected_generation: int) -> RouterState:
        with self._lock:
            self.journal.append(f"router.set:{backend}")
            if self.conflicts > 0:
                # Simulates another writer landing between our read and write.
                self.conflicts -= 1
                self._state = RouterState(
                    backend=self._state.backend, generation=self._state.generation + 1
                )
            if self._state.generation != expected_generation:
                raise ConcurrentModification(
                    "router generation changed",
                    environment=backend,
                    expected_generation=expected_generation,
                    actual_generation=self._state.generation,
                )
            self._state = RouterState(backend=backend, generation=self._state.generation + 1)
            return self._state

    def interfere(self, backend: str | None = None) -> RouterState:
        """Apply an out-of-band write, as a second operator would."""
        with self._lock:
            self._state = RouterState(
                backend=backend if backend is not None else self._state.backend,
                generation=self._state.generation + 1,
            )
            return self._state


class InMemoryAutoscalerApi:
    """Autoscaler binding holder."""

    def __init__(
        self,
        target: str | None = None,
        *,
        min_replicas: int = 1,
        max_replicas: int = 10,
        unavailable_failures: int = 0,
        journal: list[str] | None = None,
    ) -> None:
        self._binding = AutoscalerBinding(
            target=target, min_replicas=min_replicas, max_replicas=max_replicas
        )
        self.unavailable_failures = unavailable_failures
        self.journal = journal if journal is not None else []
        self._lock = Lock()

    def get_binding(self) -> AutoscalerBinding:
        with self._lock:
            return self._binding

    def set_binding_target(self, target: str) -> AutoscalerBinding:
        with self._lock:
            self.journal.append(f"autoscaler.set:{target}")
            if self.unavailable_failures > 0:
                self.unavailable_failures -= 1
                raise PlatformUnavailable("autoscaler API unavailable", environment=target)
            self._binding = self._binding.model_copy(update={"target": target})
            return self._binding


@dataclass(slots=True)
class ScriptedProbe:
    """Replays a fixed sequence of probe outcomes; the last one repeats.

    Entries are booleans (pass/fail) or exceptions to raise.
    """

    outcomes: list[bool | Exception]
    on_probe: Callable[[int], None] | None = None
    calls: int = field(default=0, init=False)

    def probe(self, environment: str, expected_identity: str | None) -> ProbeResult:
        index = min(self.calls, len(self.outcomes) - 1)
        self.calls += 1
        if self.on_probe:
            self.on_probe(self.calls)
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return ProbeResult(
            passed=outcome,
            identity=expected_identity if outcome else None,
            status_code=200 if outcome else 503,
            detail="scripted",
        )


@dataclass(slots=True)
class WorkloadIdentityProbe:
    """Reports the tag of the image a deployment runs, once its pods are ready."""

    workload: InMemoryWorkloadApi
    broken_images: set[str] = field(default_factory=set)

    def probe(self, environment: str, expected_identity: str | None) -> ProbeResult:
        image_ref = self.workload.image_for(environment)
        if image_ref is None:
            return ProbeResult(passed=False, detail=f"{environment} has no deployment")
        if image_ref in self.broken_images:
            return ProbeResult(passed=False, status_code=500, detail="probe returned 500")
        status = self.workload.get_deployment_status(environment)
        if status.ready_replicas == 0:
            return ProbeResult(passed=False, detail="no ready replicas")
        identity = image_identity(image_ref)
        return ProbeResult(
            passed=expected_identity is None or identity == expected_identity,
            identity=identity,
            status_code=200,
            detail=f"serving {identity}",
        )
