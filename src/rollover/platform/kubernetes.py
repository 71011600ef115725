"""Kubernetes-backed control planes.

Each environment ``<env>`` maps to a Deployment ``<app>-<env>`` fronted by a
Service ``<app>-<env>-service``. The router is an Ingress whose backend service
names the live environment, and the autoscaler is a HorizontalPodAutoscaler
whose ``scaleTargetRef`` names a Deployment.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
import urllib3

from rollover.contracts.errors import (
    ConcurrentModification,
    InvalidSpec,
    PlatformUnavailable,
    RolloverError,
)
from rollover.contracts.models import (
    AutoscalerBinding,
    DeploymentStatus,
    RouterState,
    image_identity,
)

logger = logging.getLogger(__name__)

_INVALID_STATUSES = {400, 403, 404, 422}


def load_cluster_config(in_cluster: bool = False, context: str | None = None) -> None:
    """Load credentials from the pod service account or the local kubeconfig."""
    if in_cluster:
        config.load_incluster_config()
    else:
        config.load_kube_config(context=context)


def classify_api_error(exc: ApiException, environment: str | None = None) -> RolloverError:
    """Translate a Kubernetes API error into the rollover error taxonomy."""
    status = exc.status or 0
    message = f"kubernetes API returned {status}: {exc.reason}"
    if status == 409:
        return ConcurrentModification(message, environment=environment)
    if status in _INVALID_STATUSES:
        return InvalidSpec(message, environment=environment)
    return PlatformUnavailable(message, environment=environment)


@contextmanager
def _platform_call(environment: str | None) -> Iterator[None]:
    try:
        yield
    except ApiException as exc:
        raise classify_api_error(exc, environment) from exc
    except urllib3.exceptions.HTTPError as exc:
        raise PlatformUnavailable(
            f"kubernetes API unreachable: {exc}", environment=environment
        ) from exc


@dataclass(slots=True)
class ResourceNaming:
    """Naming convention shared by the Kubernetes adapters."""

    app_name: str
    service_suffix: str = "-service"

    def deployment(self, environment: str) -> str:
        return f"{self.app_name}-{environment}"

    def service(self, environment: str) -> str:
        return f"{self.deployment(environment)}{self.service_suffix}"

    def environment_from_deployment(self, name: str) -> str | None:
        prefix = f"{self.app_name}-"
        if not name.startswith(prefix):
            return None
        return name[len(prefix) :] or None

    def environment_from_service(self, name: str) -> str | None:
        if not name.endswith(self.service_suffix):
            return None
        return self.environment_from_deployment(name[: -len(self.service_suffix)])


@dataclass(slots=True)
class KubernetesWorkloadApi:
    """Deployments in a namespace."""

    namespace: str
    naming: ResourceNaming
    container_port: int = 3000
    request_timeout: float = 30.0
    apps: Any = field(default=None)

    def __post_init__(self) -> None:
        if self.apps is None:
            self.apps = client.AppsV1Api()

    def _manifest(self, environment: str, image_ref: str, replicas: int) -> client.V1Deployment:
        labels = {"app": self.naming.app_name, "version": environment}
        container = client.V1Container(
            name=self.naming.app_name,
            image=image_ref,
            ports=[client.V1ContainerPort(container_port=self.container_port)],
            env=[
                client.V1EnvVar(
                    name="APP_VERSION", value=image_identity(image_ref) or environment
                )
            ],
        )
        return client.V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=client.V1ObjectMeta(name=self.naming.deployment(environment), labels=labels),
            spec=client.V1DeploymentSpec(
                replicas=replicas,
                selector=client.V1LabelSelector(match_labels=labels),
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(labels=labels),
                    spec=client.V1PodSpec(containers=[container]),
                ),
            ),
        )

    def ensure_deployment(self, name: str, image_ref: str, replicas: int) -> None:
        body = self._manifest(name, image_ref, replicas)
        deployment = self.naming.deployment(name)
        with _platform_call(name):
            try:
                self.apps.read_namespaced_deployment(
                    deployment, self.namespace, _request_timeout=self.request_timeout
                )
            except ApiException as exc:
                if exc.status != 404:
                    raise
                self.apps.create_namespaced_deployment(
                    self.namespace, body, _request_timeout=self.request_timeout
                )
                logger.info(
                    "k8s.deployment.created",
                    extra={"extra": {"deployment": deployment, "image": image_ref}},
                )
                return
            self.apps.patch_namespaced_deployment(
                deployment, self.namespace, body, _request_timeout=self.request_timeout
            )
            logger.info(
                "k8s.deployment.patched",
                extra={"extra": {"deployment": deployment, "image": image_ref}},
            )

    def get_deployment_status(self, name: str) -> DeploymentStatus:
        with _platform_call(name):
            deployment = self.apps.read_namespaced_deployment_status(
                self.naming.deployment(name),
                self.namespace,
                _request_timeout=self.request_timeout,
            )
        containers = deployment.spec.template.spec.containers or []
        return DeploymentStatus(
            ready_replicas=deployment.status.ready_replicas or 0,
            desired_replicas=deployment.spec.replicas or 0,
            image_ref=containers[0].image if containers else None,
        )

    def scale_deployment(self, name: str, replicas: int) -> None:
        with _platform_call(name):
            self.apps.patch_namespaced_deployment_scale(
                self.naming.deployment(name),
                self.namespace,
                {"spec": {"replicas": replicas}},
                _request_timeout=self.request_timeout,
            )


def _ingress_backends(ingress: Any) -> Iterator[Any]:
    for rule in ingress.spec.rules or []:
        if rule.http is None:
            continue
        for path in rule.http.paths or []:
            if path.backend is not None and path.backend.service is not None:
                yield path.backend.service


@dataclass(slots=True)
class KubernetesRouterApi:
    """Ingress whose backend service names the live environment.

    The Ingress ``resourceVersion`` serves as the generation token; the write
    replays it so the API server rejects a stale update with 409.
    """

    namespace: str
    ingress_name: str
    naming: ResourceNaming
    request_timeout: float = 30.0
    networking: Any = field(default=None)

    def __post_init__(self) -> None:
        if self.networking is None:
            self.networking = client.NetworkingV1Api()

    def _read(self) -> Any:
        with _platform_call(None):
            return self.networking.read_namespaced_ingress(
                self.ingress_name, self.namespace, _request_timeout=self.request_timeout
            )

    def _state(self, ingress: Any) -> RouterState:
        backends = {
            self.naming.environment_from_service(service.name)
            for service in _ingress_backends(ingress)
        }
        # A split ingress has no single live environment.
        backend = backends.pop() if len(backends) == 1 else None
        # etcd revisions are numeric even though the API documents them as opaque.
        return RouterState(backend=backend, generation=int(ingress.metadata.resource_version))

    def get_active_backend(self) -> RouterState:
        return self._state(self._read())

    def set_active_backend(self, backend: str, expected_generation: int) -> RouterState:
        ingress = self._read()
        current = self._state(ingress)
        if current.generation != expected_generation:
            raise ConcurrentModification(
                f"ingress {self.ingress_name} changed",
                environment=backend,
                expected_generation=expected_generation,
                actual_generation=current.generation,
            )
        service_name = self.naming.service(backend)
        for service in _ingress_backends(ingress):
            service.name = service_name
        ingress.metadata.resource_version = str(expected_generation)
        with _platform_call(backend):
            updated = self.networking.replace_namespaced_ingress(
                self.ingress_name,
                self.namespace,
                ingress,
                _request_timeout=self.request_timeout,
            )
        return self._state(updated)


@dataclass(slots=True)
class KubernetesAutoscalerApi:
    """HorizontalPodAutoscaler whose scale target names an environment's Deployment."""

    namespace: str
    hpa_name: str
    naming: ResourceNaming
    request_timeout: float = 30.0
    autoscaling: Any = field(default=None)

    def __post_init__(self) -> None:
        if self.autoscaling is None:
            self.autoscaling = client.AutoscalingV1Api()

    def _binding(self, hpa: Any) -> AutoscalerBinding:
        return AutoscalerBinding(
            target=self.naming.environment_from_deployment(hpa.spec.scale_target_ref.name),
            min_replicas=hpa.spec.min_replicas or 1,
            max_replicas=hpa.spec.max_replicas,
        )

    def get_binding(self) -> AutoscalerBinding:
        with _platform_call(None):
            hpa = self.autoscaling.read_namespaced_horizontal_pod_autoscaler(
                self.hpa_name, self.namespace, _request_timeout=self.request_timeout
            )
        return self._binding(hpa)

    def set_binding_target(self, target: str) -> AutoscalerBinding:
        body = {
            "spec": {
                "scaleTargetRef": {
                    "apiVersion": "apps/v1",
                    "kind": "Deployment",
                    "name": self.naming.deployment(target),
                }
            }
        }
        with _platform_call(target):
            hpa = self.autoscaling.patch_namespaced_horizontal_pod_autoscaler(
                self.hpa_name, self.namespace, body, _request_timeout=self.request_timeout
            )
        return self._binding(hpa)
