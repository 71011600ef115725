"""Factory functions that wire an orchestrator from configuration."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from rollover.autoscaler.binder import AutoscalerBinder
from rollover.config.settings import RolloverSettings, get_settings
from rollover.environments.manager import EnvironmentManager
from rollover.health.verifier import HealthVerifier
from rollover.orchestrator.event_bus import EventBus, InMemoryEventBus
from rollover.orchestrator.orchestrator import RolloverOrchestrator
from rollover.platform.base import AutoscalerApi, HealthProbe, RouterApi, WorkloadApi
from rollover.runtime.clock import Clock, SystemClock
from rollover.runtime.retry import BackoffPolicy
from rollover.traffic.switch import TrafficSwitchController


@dataclass(slots=True)
class PlatformBundle:
    """The four control-plane ports one orchestrator drives."""

    workload: WorkloadApi
    router: RouterApi
    autoscaler: AutoscalerApi
    probe: HealthProbe


def _nats_bus(settings: RolloverSettings) -> EventBus:
    from rollover.orchestrator.nats_bus import NATSEventBus

    return NATSEventBus(settings.nats_url)


# Bus registry for simple DI. Extend as new transports are added.
_BUSES: dict[str, Callable[[RolloverSettings], EventBus]] = {
    "memory": lambda settings: InMemoryEventBus(),
    "nats": _nats_bus,
}


def build_event_bus(settings: RolloverSettings | None = None) -> EventBus:
    settings = settings or get_settings()
    name = settings.event_bus.lower()
    try:
        return _BUSES[name](settings)
    except KeyError as exc:
        raise ValueError(f"Unknown event bus '{name}'") from exc


def kubernetes_platform(settings: RolloverSettings | None = None) -> PlatformBundle:
    """Build Kubernetes-backed ports; loads cluster credentials."""
    from rollover.platform.kubernetes import (
        KubernetesAutoscalerApi,
        KubernetesRouterApi,
        KubernetesWorkloadApi,
        ResourceNaming,
        load_cluster_config,
    )
    from rollover.platform.probe import HttpHealthProbe, ReadinessGatedProbe

    settings = settings or get_settings()
    load_cluster_config(in_cluster=settings.in_cluster, context=settings.kube_context)
    naming = ResourceNaming(app_name=settings.app_name)
    workload = KubernetesWorkloadApi(namespace=settings.namespace, naming=naming)
    probe: HealthProbe = HttpHealthProbe(
        url_template=settings.health_url_template,
        identity_field=settings.health_identity_field,
        timeout=settings.probe_timeout_seconds,
    )
    if settings.require_ready_replicas:
        probe = ReadinessGatedProbe(workload=workload, inner=probe)
    return PlatformBundle(
        workload=workload,
        router=KubernetesRouterApi(
            namespace=settings.namespace, ingress_name=settings.ingress_name, naming=naming
        ),
        autoscaler=KubernetesAutoscalerApi(
            namespace=settings.namespace, hpa_name=settings.hpa_name, naming=naming
        ),
        probe=probe,
    )


def build_orchestrator(
    platform: PlatformBundle,
    settings: RolloverSettings | None = None,
    *,
    bus: EventBus | None = None,
    clock: Clock | None = None,
) -> RolloverOrchestrator:
    settings = settings or get_settings()
    clock = clock or SystemClock()
    backoff = {
        "base_delay": settings.backoff_base_seconds,
        "max_delay": settings.backoff_max_seconds,
    }
    return RolloverOrchestrator(
        environments=EnvironmentManager(
            platform.workload,
            clock=clock,
            drain_timeout=settings.drain_timeout_seconds,
            drain_poll_interval=settings.drain_poll_seconds,
        ),
        health=HealthVerifier(platform.probe, clock=clock),
        traffic=TrafficSwitchController(
            platform.router,
            policy=BackoffPolicy(attempts=settings.switch_attempts, **backoff),
            clock=clock,
            settle_seconds=settings.verify_settle_seconds,
        ),
        autoscaler=AutoscalerBinder(platform.autoscaler),
        bus=bus,
        platform_policy=BackoffPolicy(attempts=settings.platform_call_attempts, **backoff),
        clock=clock,
    )
