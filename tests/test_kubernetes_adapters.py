"""Tests for the Kubernetes adapters using mocked API clients."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

from kubernetes.client.exceptions import ApiException
import pytest
import urllib3

from rollover.contracts.errors import ConcurrentModification, InvalidSpec, PlatformUnavailable
from rollover.platform.kubernetes import (
    KubernetesAutoscalerApi,
    KubernetesRouterApi,
    KubernetesWorkloadApi,
    ResourceNaming,
    classify_api_error,
)

NAMING = ResourceNaming(app_name="sample-app")


def _ingress(service: str, resource_version: str = "41") -> SimpleNamespace:
    backend = SimpleNamespace(service=SimpleNamespace(name=service))
    path = SimpleNamespace(backend=backend)
    rule = SimpleNamespace(http=SimpleNamespace(paths=[path]))
    return SimpleNamespace(
        metadata=SimpleNamespace(resource_version=resource_version),
        spec=SimpleNamespace(rules=[rule]),
    )


def _hpa(deployment: str) -> SimpleNamespace:
    return SimpleNamespace(
        spec=SimpleNamespace(
            scale_target_ref=SimpleNamespace(name=deployment), min_replicas=2, max_replicas=10
        )
    )


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (409, ConcurrentModification),
        (404, InvalidSpec),
        (422, InvalidSpec),
        (500, PlatformUnavailable),
        (503, PlatformUnavailable),
    ],
)
def test_api_errors_are_classified(status: int, expected: type) -> None:
    assert isinstance(classify_api_error(ApiException(status=status, reason="x")), expected)


def test_naming_round_trips_environment_names() -> None:
    assert NAMING.deployment("green") == "sample-app-green"
    assert NAMING.service("green") == "sample-app-green-service"
    assert NAMING.environment_from_service("sample-app-green-service") == "green"
    assert NAMING.environment_from_deployment("other-app-green") is None


def test_workload_creates_missing_deployment() -> None:
    apps = MagicMock()
    apps.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")
    workload = KubernetesWorkloadApi(namespace="blue-green-demo", naming=NAMING, apps=apps)

    workload.ensure_deployment("green", "registry.local/sample-app:green", 3)

    apps.create_namespaced_deployment.assert_called_once()
    namespace, body = apps.create_namespaced_deployment.call_args.args
    assert namespace == "blue-green-demo"
    assert body.metadata.name == "sample-app-green"
    assert body.spec.replicas == 3
    container = body.spec.template.spec.containers[0]
    assert container.image == "registry.local/sample-app:green"
    assert container.env[0].value == "green"
    apps.patch_namespaced_deployment.assert_not_called()


def test_workload_patches_existing_deployment() -> None:
    apps = MagicMock()
    workload = KubernetesWorkloadApi(namespace="ns", naming=NAMING, apps=apps)

    workload.ensure_deployment("green", "registry.local/sample-app:green", 2)

    apps.patch_namespaced_deployment.assert_called_once()
    apps.create_namespaced_deployment.assert_not_called()


def test_workload_status_and_scale() -> None:
    apps = MagicMock()
    apps.read_namespaced_deployment_status.return_value = SimpleNamespace(
        status=SimpleNamespace(ready_replicas=None),
        spec=SimpleNamespace(
            replicas=2,
            template=SimpleNamespace(
                spec=SimpleNamespace(containers=[SimpleNamespace(image="sample-app:blue")])
            ),
        ),
    )
    workload = KubernetesWorkloadApi(namespace="ns", naming=NAMING, apps=apps)

    status = workload.get_deployment_status("blue")
    workload.scale_deployment("blue", 0)

    assert (status.ready_replicas, status.desired_replicas) == (0, 2)
    assert status.image_ref == "sample-app:blue"
    args = apps.patch_namespaced_deployment_scale.call_args.args
    assert args == ("sample-app-blue", "ns", {"spec": {"replicas": 0}})


def test_workload_maps_connection_errors_to_transient() -> None:
    apps = MagicMock()
    apps.read_namespaced_deployment_status.side_effect = urllib3.exceptions.ProtocolError("reset")
    workload = KubernetesWorkloadApi(namespace="ns", naming=NAMING, apps=apps)

    with pytest.raises(PlatformUnavailable):
        workload.get_deployment_status("blue")


def test_router_reads_backend_and_generation() -> None:
    networking = MagicMock()
    networking.read_namespaced_ingress.return_value = _ingress("sample-app-blue-service", "41")
    router = KubernetesRouterApi(
        namespace="ns", ingress_name="sample-app-ingress", naming=NAMING, networking=networking
    )

    state = router.get_active_backend()

    assert (state.backend, state.generation) == ("blue", 41)


def test_router_write_replays_resource_version() -> None:
    networking = MagicMock()
    networking.read_namespaced_ingress.return_value = _ingress("sample-app-blue-service", "41")
    networking.replace_namespaced_ingress.side_effect = (
        lambda name, namespace, body, **kwargs: _ingress(
            body.spec.rules[0].http.paths[0].backend.service.name, "42"
        )
    )
    router = KubernetesRouterApi(
        namespace="ns", ingress_name="sample-app-ingress", naming=NAMING, networking=networking
    )

    state = router.set_active_backend("green", 41)

    assert (state.backend, state.generation) == ("green", 42)
    body = networking.replace_namespaced_ingress.call_args.args[2]
    assert body.metadata.resource_version == "41"


def test_router_rejects_stale_generation_without_writing() -> None:
    networking = MagicMock()
    networking.read_namespaced_ingress.return_value = _ingress("sample-app-blue-service", "43")
    router = KubernetesRouterApi(
        namespace="ns", ingress_name="sample-app-ingress", naming=NAMING, networking=networking
    )

    with pytest.raises(ConcurrentModification):
        router.set_active_backend("green", 41)

    networking.replace_namespaced_ingress.assert_not_called()


def test_router_conflict_from_api_server() -> None:
    networking = MagicMock()
    networking.read_namespaced_ingress.return_value = _ingress("sample-app-blue-service", "41")
    networking.replace_namespaced_ingress.side_effect = ApiException(status=409, reason="Conflict")
    router = KubernetesRouterApi(
        namespace="ns", ingress_name="sample-app-ingress", naming=NAMING, networking=networking
    )

    with pytest.raises(ConcurrentModification):
        router.set_active_backend("green", 41)


def test_autoscaler_patches_scale_target() -> None:
    autoscaling = MagicMock()
    autoscaling.read_namespaced_horizontal_pod_autoscaler.return_value = _hpa("sample-app-blue")
    autoscaling.patch_namespaced_horizontal_pod_autoscaler.return_value = _hpa("sample-app-green")
    autoscaler = KubernetesAutoscalerApi(
        namespace="ns", hpa_name="sample-app-hpa", naming=NAMING, autoscaling=autoscaling
    )

    assert autoscaler.get_binding().target == "blue"
    binding = autoscaler.set_binding_target("green")

    assert binding.target == "green"
    assert binding.min_replicas == 2
    body = autoscaling.patch_namespaced_horizontal_pod_autoscaler.call_args.args[2]
    assert body["spec"]["scaleTargetRef"]["name"] == "sample-app-green"
