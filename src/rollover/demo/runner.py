"""Scenario runner for rollover demos."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os

from rollover.config.settings import RolloverSettings
from rollover.contracts.models import AutoscalerBinding, RolloverResult, RouterState
from rollover.demo.fixtures import ScenarioFixtures
from rollover.observability.logging import configure_logging
from rollover.observability.metrics import start_metrics_server
from rollover.observability.telemetry import DISABLE_TRACING_ENV, setup_tracing
from rollover.orchestrator.event_bus import Event, InMemoryEventBus
from rollover.orchestrator.factory import PlatformBundle, build_orchestrator
from rollover.orchestrator.recorder import RecordingEventBus
from rollover.platform.memory import (
    InMemoryAutoscalerApi,
    InMemoryRouterApi,
    InMemoryWorkloadApi,
    WorkloadIdentityProbe,
)
from rollover.runtime.clock import ManualClock

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScenarioResult:
    """Result from running a scenario."""

    name: str
    results: list[RolloverResult]
    events: list[Event]
    router: RouterState
    autoscaler: AutoscalerBinding
    journal: list[str] = field(default_factory=list)

    @property
    def final(self) -> RolloverResult:
        return self.results[-1]


def run_scenario(
    fixtures: ScenarioFixtures,
    *,
    start_metrics: bool = False,
    enable_tracing: bool = True,
) -> ScenarioResult:
    """Run a scenario end-to-end against in-memory control planes.

    Time is virtual: health polling, backoff and drain waits advance a
    :class:`ManualClock` instead of sleeping.
    """
    configure_logging()
    if not enable_tracing:
        os.environ[DISABLE_TRACING_ENV] = "1"
    setup_tracing("rollover-demo")
    if start_metrics:
        start_metrics_server()

    journal: list[str] = []
    workload = InMemoryWorkloadApi(journal=journal)
    router = InMemoryRouterApi(
        fixtures.live, conflicts=fixtures.router_conflicts, journal=journal
    )
    autoscaler = InMemoryAutoscalerApi(fixtures.live, journal=journal)
    platform = PlatformBundle(
        workload=workload,
        router=router,
        autoscaler=autoscaler,
        probe=WorkloadIdentityProbe(workload, broken_images=fixtures.broken_images),
    )
    bus = RecordingEventBus(InMemoryEventBus())
    orchestrator = build_orchestrator(
        platform,
        RolloverSettings(drain_poll_seconds=1.0, drain_timeout_seconds=30.0),
        bus=bus,
        clock=ManualClock(),
    )

    orchestrator.environments.ensure(fixtures.live, fixtures.live_image, fixtures.live_replicas)
    orchestrator.environments.promote(fixtures.live)
    journal.clear()

    results = [orchestrator.run_rollover(fixtures.request)]
    if fixtures.switch_back and results[0].succeeded:
        results.append(orchestrator.rollback(results[0], health=fixtures.request.health))

    logger.info(
        "demo.scenario.finished",
        extra={
            "extra": {
                "scenario": fixtures.name,
                "states": [result.state.value for result in results],
                "live": router.get_active_backend().backend,
            }
        },
    )
    return ScenarioResult(
        name=fixtures.name,
        results=results,
        events=list(bus.events),
        router=router.get_active_backend(),
        autoscaler=autoscaler.get_binding(),
        journal=list(journal),
    )
