"""HTTP health probes."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from rollover.contracts.errors import PlatformUnavailable
from rollover.contracts.models import ProbeResult
from rollover.platform.base import HealthProbe, WorkloadApi

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HttpHealthProbe:
    """GETs an environment's version endpoint and compares the reported identity.

    ``url_template`` is formatted with ``environment``, e.g.
    ``http://sample-app-{environment}-service/version``.
    """

    url_template: str
    identity_field: str = "version"
    timeout: float = 5.0
    client: httpx.Client | None = None
    _owned_client: httpx.Client | None = field(default=None, init=False)

    def _http(self) -> httpx.Client:
        if self.client is not None:
            return self.client
        if self._owned_client is None:
            self._owned_client = httpx.Client(timeout=self.timeout)
        return self._owned_client

    def url_for(self, environment: str) -> str:
        return self.url_template.format(environment=environment)

    def probe(self, environment: str, expected_identity: str | None) -> ProbeResult:
        url = self.url_for(environment)
        try:
            resp = self._http().get(url)
        except httpx.HTTPError as exc:
            raise PlatformUnavailable(
                f"probe {url} failed: {exc}", environment=environment
            ) from exc
        if not resp.is_success:
            return ProbeResult(
                passed=False,
                status_code=resp.status_code,
                detail=f"{url} returned {resp.status_code}",
            )
        try:
            body: Any = resp.json()
        except ValueError:
            return ProbeResult(
                passed=False, status_code=resp.status_code, detail="response is not JSON"
            )
        identity = body.get(self.identity_field) if isinstance(body, dict) else None
        identity = str(identity) if identity is not None else None
        passed = identity is not None and (
            expected_identity is None or identity == expected_identity
        )
        return ProbeResult(
            passed=passed,
            identity=identity,
            status_code=resp.status_code,
            detail=f"serving {identity}, expected {expected_identity}",
        )

    def close(self) -> None:
        if self._owned_client is not None:
            self._owned_client.close()
            self._owned_client = None


@dataclass(slots=True)
class ReadinessGatedProbe:
    """Counts a pass only once every desired replica reports ready."""

    workload: WorkloadApi
    inner: HealthProbe

    def probe(self, environment: str, expected_identity: str | None) -> ProbeResult:
        status = self.workload.get_deployment_status(environment)
        if status.desired_replicas == 0 or status.ready_replicas < status.desired_replicas:
            logger.info(
                "health.replicas.pending",
                extra={
                    "extra": {
                        "environment": environment,
                        "ready": status.ready_replicas,
                        "desired": status.desired_replicas,
                    }
                },
            )
            return ProbeResult(
                passed=False,
                detail=f"{status.ready_replicas}/{status.desired_replicas} replicas ready",
            )
        return self.inner.probe(environment, expected_identity)

    def close(self) -> None:
        close = getattr(self.inner, "close", None)
        if close is not None:
            close()
