"""Blue/green rollover workflow orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from threading import Event as ThreadEvent, Lock
from typing import Any
from uuid import UUID, uuid4

from pydantic import ValidationError

from rollover.autoscaler.binder import AutoscalerBinder
from rollover.contracts.errors import (
    Cancelled,
    InvalidSpec,
    PlatformUnavailable,
    RolloverError,
    RolloverInProgress,
)
from rollover.contracts.events import (
    ROLLOVER_ABORTED,
    ROLLOVER_COMPLETED,
    ROLLOVER_PHASE_CHANGED,
    ROLLOVER_STARTED,
    PhaseChanged,
    RolloverAborted,
    RolloverCompleted,
    RolloverStarted,
)
from rollover.contracts.models import (
    HealthPolicy,
    PhaseTransition,
    RolloverRequest,
    RolloverResult,
)
from rollover.contracts.types import (
    EnvironmentState,
    FailureKind,
    HealthFailureReason,
    PhaseEvent,
    RolloverPhase,
)
from rollover.environments.manager import EnvironmentManager
from rollover.health.verifier import HealthVerifier
from rollover.observability.logging import rollover_context
from rollover.observability.metrics import PHASE_DURATION, ROLLOVER_RESULTS
from rollover.observability.telemetry import span as trace_span
from rollover.orchestrator.event_bus import Event, EventBus
from rollover.orchestrator.state_machine import POST_SWITCH_PHASES, RolloverStateMachine
from rollover.runtime.clock import Clock, SystemClock
from rollover.runtime.retry import BackoffPolicy, retry_call
from rollover.traffic.switch import TrafficSwitchController

logger = logging.getLogger(__name__)


class _Abort(Exception):
    """Internal signal carrying the event and reason that end a run."""

    def __init__(self, event: PhaseEvent, kind: FailureKind, detail: str) -> None:
        super().__init__(detail)
        self.event = event
        self.kind = kind
        self.detail = detail


@dataclass(slots=True)
class _Run:
    rollover_id: UUID
    request: RolloverRequest
    machine: RolloverStateMachine
    cancel: ThreadEvent
    incumbent: str | None = None
    drained: str | None = None
    traffic_switched: bool = False


class RolloverOrchestrator:
    """Drives one rollover at a time through deploy, gate, switch, rebind and drain.

    Failures never escape as exceptions: every run ends in a
    :class:`RolloverResult` whose state is DONE or ABORTED. There is no
    automatic rollback; switching back is another rollover with the roles
    reversed (see :meth:`rollback`).
    """

    def __init__(
        self,
        environments: EnvironmentManager,
        health: HealthVerifier,
        traffic: TrafficSwitchController,
        autoscaler: AutoscalerBinder,
        *,
        bus: EventBus | None = None,
        platform_policy: BackoffPolicy | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.environments = environments
        self.health = health
        self.traffic = traffic
        self.autoscaler = autoscaler
        self.bus = bus
        self.platform_policy = platform_policy or BackoffPolicy(attempts=3, base_delay=1.0)
        self.clock = clock or SystemClock()
        self._busy = Lock()
        self._correlation_id: UUID | None = None

    # ----- Entry points -----

    def run_rollover(
        self,
        request: RolloverRequest,
        cancel: ThreadEvent | None = None,
        *,
        correlation_id: UUID | None = None,
    ) -> RolloverResult:
        """Run the full workflow for ``request`` and block until it finishes.

        ``correlation_id`` is stamped on every progress event of the run; a
        rollback uses the id of the rollover it reverses.
        """
        if not self._busy.acquire(blocking=False):
            raise RolloverInProgress("another rollover is already running")
        self._correlation_id = correlation_id
        try:
            return self._run(request, cancel or ThreadEvent())
        finally:
            self._correlation_id = None
            self._busy.release()

    def rollback(
        self,
        previous: RolloverResult | None = None,
        *,
        environment: str | None = None,
        image_ref: str | None = None,
        replicas: int | None = None,
        health: HealthPolicy | None = None,
        drain_incumbent: bool = False,
        cancel: ThreadEvent | None = None,
    ) -> RolloverResult:
        """Switch traffic back by rolling over to the previously live environment."""
        target = environment or (previous.previous_environment if previous else None)
        if not target:
            raise InvalidSpec("no previous environment to roll back to")
        record = self.environments.get(target)
        image = image_ref or record.image_ref or self._deployed_image(target)
        if not image:
            raise InvalidSpec(f"image for {target} is unknown; pass image_ref", environment=target)
        if replicas is None:
            replicas = record.desired_replicas or self._live_replicas()
        try:
            request = RolloverRequest(
                target=target,
                image_ref=image,
                replicas=replicas,
                health=health or HealthPolicy(),
                drain_incumbent=drain_incumbent,
            )
        except ValidationError as exc:
            raise InvalidSpec(str(exc), environment=target) from exc
        logger.info(
            "rollover.rollback.requested",
            extra={"extra": {"target": target, "image": image, "replicas": replicas}},
        )
        return self.run_rollover(
            request,
            cancel=cancel,
            correlation_id=previous.rollover_id if previous is not None else None,
        )

    def status(self) -> dict[str, Any]:
        """Snapshot of router, autoscaler and environment records."""
        router = self.traffic.current()
        binding = self.autoscaler.current()
        return {
            "router": router.model_dump(),
            "autoscaler": binding.model_dump(),
            "environments": {
                name: env.model_dump(mode="json")
                for name, env in self.environments.snapshot().items()
            },
        }

    def close(self) -> None:
        """Flush the event bus and release the probe's connections."""
        for resource in (self.bus, self.health.probe):
            close = getattr(resource, "close", None)
            if close is not None:
                close()
        logger.info("rollover.orchestrator.closed")

    # ----- Workflow -----

    def _run(self, request: RolloverRequest, cancel: ThreadEvent) -> RolloverResult:
        rollover_id = uuid4()
        machine = RolloverStateMachine(
            on_transition=lambda t: self._on_transition(rollover_id, request, t)
        )
        run = _Run(rollover_id=rollover_id, request=request, machine=machine, cancel=cancel)
        with rollover_context(rollover_id), trace_span(
            "rollover.orchestrator",
            "rollover.run",
            rollover_id=str(rollover_id),
            target=request.target,
            image=request.image_ref,
        ) as span:
            self._publish(
                ROLLOVER_STARTED,
                rollover_id,
                RolloverStarted(
                    target=request.target,
                    image_ref=request.image_ref,
                    replicas=request.replicas,
                ).model_dump(mode="json"),
            )
            machine.trigger(PhaseEvent.REQUEST_RECEIVED)
            try:
                for step in (
                    self._deploy,
                    self._health_check,
                    self._switch,
                    self._rebind,
                    self._drain,
                ):
                    phase = machine.state
                    with trace_span("rollover.orchestrator", f"rollover.{phase.value.lower()}"):
                        with PHASE_DURATION.labels(phase=phase.value).time():
                            step(run)
            except _Abort as abort:
                result = self._abort(run, abort)
            else:
                result = self._complete(run)
            span.set_attribute("rollover.state", result.state.value)
        return result

    def _deploy(self, run: _Run) -> None:
        request = run.request
        try:
            run.incumbent = self._observe_incumbent(run)
            if run.incumbent == request.target:
                raise InvalidSpec(
                    f"{request.target} is already live; roll over to the idle environment",
                    environment=request.target,
                )
            retry_call(
                lambda: self.environments.ensure(
                    request.target, request.image_ref, request.replicas
                ),
                policy=self.platform_policy,
                retry_on=(PlatformUnavailable,),
                operation=f"workload.ensure:{request.target}",
                clock=self.clock,
                cancel=run.cancel,
                on_retry=lambda attempt, exc, delay: run.machine.trigger(
                    PhaseEvent.PLATFORM_UNAVAILABLE,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(exc),
                ),
            )
        except InvalidSpec as exc:
            raise _Abort(PhaseEvent.INVALID_SPEC, exc.kind, str(exc)) from exc
        except Cancelled as exc:
            raise _Abort(PhaseEvent.CANCELLED, exc.kind, str(exc)) from exc
        except RolloverError as exc:
            raise _Abort(PhaseEvent.DEPLOY_FAILED, exc.kind, str(exc)) from exc
        run.machine.trigger(PhaseEvent.PLATFORM_ACK)

    def _health_check(self, run: _Run) -> None:
        request = run.request
        self.environments.mark(request.target, EnvironmentState.HEALTH_CHECKING)
        result = self.health.await_healthy(
            request.target,
            request.health,
            cancel=run.cancel,
            expected_identity=request.expected_identity,
        )
        if not result.healthy:
            self.environments.mark(request.target, EnvironmentState.UNHEALTHY)
            cancelled = result.reason is HealthFailureReason.CANCELLED
            kind = FailureKind.CANCELLED if cancelled else FailureKind.HEALTH_GATE_FAILED
            detail = (
                f"health check of {request.target} cancelled after {result.attempts} attempts"
                if cancelled
                else f"{request.target} not healthy after {result.elapsed_seconds:.1f}s "
                f"({result.attempts} attempts)"
            )
            raise _Abort(PhaseEvent.UNHEALTHY, kind, detail)
        self.environments.mark(request.target, EnvironmentState.HEALTHY)
        run.machine.trigger(PhaseEvent.HEALTHY, attempts=result.attempts)

    def _switch(self, run: _Run) -> None:
        target = run.request.target
        if run.cancel.is_set():
            raise _Abort(PhaseEvent.CANCELLED, FailureKind.CANCELLED, "cancelled before switch")
        try:
            state = self.traffic.switch_to(
                target, expected_current=run.incumbent, cancel=run.cancel
            )
        except Cancelled as exc:
            raise _Abort(PhaseEvent.CANCELLED, exc.kind, str(exc)) from exc
        except RolloverError as exc:
            raise _Abort(PhaseEvent.SWITCH_FAILED, exc.kind, str(exc)) from exc
        if not self.traffic.verify(target):
            run.traffic_switched = self._router_points_at(target)
            if run.traffic_switched:
                self.environments.promote(target)
            raise _Abort(
                PhaseEvent.SWITCH_FAILED,
                FailureKind.CONCURRENT_MODIFICATION,
                f"router does not report {target} as active after the switch",
            )
        run.traffic_switched = True
        self.environments.promote(target)
        run.machine.trigger(PhaseEvent.SWITCH_VERIFIED, generation=state.generation)

    def _rebind(self, run: _Run) -> None:
        target = run.request.target
        # Not cancellable: the autoscaler must follow traffic once it has moved.
        try:
            binding = retry_call(
                lambda: self.autoscaler.rebind(target),
                policy=self.platform_policy,
                retry_on=(PlatformUnavailable,),
                operation=f"autoscaler.rebind:{target}",
                clock=self.clock,
            )
        except RolloverError as exc:
            raise _Abort(PhaseEvent.REBIND_FAILED, exc.kind, str(exc)) from exc
        run.machine.trigger(PhaseEvent.REBIND_SUCCEEDED, target=binding.target)

    def _drain(self, run: _Run) -> None:
        incumbent = run.incumbent
        if not run.request.drain_incumbent or incumbent is None:
            run.machine.trigger(PhaseEvent.DRAIN_COMPLETED, skipped=True)
            return
        try:
            retry_call(
                lambda: self.environments.scale_to(incumbent, 0, wait=False),
                policy=self.platform_policy,
                retry_on=(PlatformUnavailable,),
                operation=f"workload.scale:{incumbent}",
                clock=self.clock,
                cancel=run.cancel,
            )
            # The wait has its own deadline and is not retried.
            self.environments.await_drained(incumbent, cancel=run.cancel)
        except RolloverError as exc:
            raise _Abort(PhaseEvent.DRAIN_FAILED, exc.kind, str(exc)) from exc
        run.drained = incumbent
        run.machine.trigger(PhaseEvent.DRAIN_COMPLETED, skipped=False, drained=incumbent)

    # ----- Helpers -----

    def _observe_incumbent(self, run: _Run) -> str | None:
        state = retry_call(
            self.traffic.current,
            policy=self.platform_policy,
            retry_on=(PlatformUnavailable,),
            operation="router.read",
            clock=self.clock,
            cancel=run.cancel,
        )
        if state.backend is not None:
            self.environments.promote(state.backend)
        return state.backend

    def _router_points_at(self, environment: str) -> bool:
        try:
            return self.traffic.current().backend == environment
        except RolloverError:
            logger.warning(
                "router.read.failed", extra={"extra": {"environment": environment}}
            )
            return False

    def _live_environment(self, run: _Run) -> str | None:
        if run.traffic_switched:
            return run.request.target
        return run.incumbent

    def _deployed_image(self, environment: str) -> str | None:
        return retry_call(
            lambda: self.environments.status(environment),
            policy=self.platform_policy,
            retry_on=(PlatformUnavailable,),
            operation=f"workload.status:{environment}",
            clock=self.clock,
        ).image_ref

    def _live_replicas(self) -> int:
        for env in self.environments.snapshot().values():
            if env.state is EnvironmentState.LIVE and env.desired_replicas:
                return env.desired_replicas
        return self.autoscaler.current().min_replicas

    def _complete(self, run: _Run) -> RolloverResult:
        request = run.request
        ROLLOVER_RESULTS.labels(state=RolloverPhase.DONE.value, reason="none").inc()
        self._publish(
            ROLLOVER_COMPLETED,
            run.rollover_id,
            RolloverCompleted(
                target=request.target, live_environment=request.target, drained=run.drained
            ).model_dump(mode="json"),
        )
        logger.info(
            "rollover.completed",
            extra={
                "extra": {
                    "rollover_id": str(run.rollover_id),
                    "live": request.target,
                    "previous": run.incumbent,
                    "drained": run.drained,
                }
            },
        )
        return RolloverResult(
            rollover_id=run.rollover_id,
            target=request.target,
            state=RolloverPhase.DONE,
            phase_reached=run.machine.last_active_phase(),
            traffic_switched=True,
            live_environment=request.target,
            previous_environment=run.incumbent,
            transitions=list(run.machine.history),
        )

    def _abort(self, run: _Run, abort: _Abort) -> RolloverResult:
        phase = run.machine.state
        run.machine.trigger(abort.event, reason=abort.kind.value, detail=abort.detail)
        post_switch = phase in POST_SWITCH_PHASES or run.traffic_switched
        ROLLOVER_RESULTS.labels(state=RolloverPhase.ABORTED.value, reason=abort.kind.value).inc()
        self._publish(
            ROLLOVER_ABORTED,
            run.rollover_id,
            RolloverAborted(
                target=run.request.target,
                reason=abort.kind,
                detail=abort.detail,
                phase=phase,
                traffic_switched=post_switch,
            ).model_dump(mode="json"),
        )
        logger.error(
            "rollover.aborted.post_switch" if post_switch else "rollover.aborted",
            extra={
                "extra": {
                    "rollover_id": str(run.rollover_id),
                    "phase": phase.value,
                    "reason": abort.kind.value,
                    "detail": abort.detail,
                    "live": self._live_environment(run),
                }
            },
        )
        return RolloverResult(
            rollover_id=run.rollover_id,
            target=run.request.target,
            state=RolloverPhase.ABORTED,
            reason=abort.kind,
            detail=abort.detail,
            phase_reached=phase,
            traffic_switched=post_switch,
            live_environment=self._live_environment(run),
            previous_environment=run.incumbent,
            transitions=list(run.machine.history),
        )

    def _on_transition(
        self, rollover_id: UUID, request: RolloverRequest, transition: PhaseTransition
    ) -> None:
        logger.info(
            "rollover.phase.entered",
            extra={
                "extra": {
                    "rollover_id": str(rollover_id),
                    "source": transition.source.value,
                    "event": transition.event.value,
                    "phase": transition.dest.value,
                }
            },
        )
        self._publish(
            ROLLOVER_PHASE_CHANGED,
            rollover_id,
            PhaseChanged(
                target=request.target,
                source=transition.source,
                event=transition.event,
                dest=transition.dest,
                details=transition.details,
            ).model_dump(mode="json"),
        )

    def _publish(self, event_type: str, rollover_id: UUID, payload: dict[str, Any]) -> None:
        if self.bus is None:
            return
        self.bus.publish(
            Event(
                event_id=uuid4(),
                event_type=event_type,
                rollover_id=rollover_id,
                payload=payload,
                correlation_id=self._correlation_id,
            )
        )
