"""Health gate that waits for consecutive successful probes."""

from __future__ import annotations

import logging
from threading import Event as ThreadEvent

from rollover.contracts.errors import RolloverError
from rollover.contracts.models import HealthPolicy, HealthResult
from rollover.contracts.types import HealthFailureReason, HealthStatus
from rollover.observability.metrics import HEALTH_ATTEMPTS
from rollover.observability.telemetry import span as trace_span
from rollover.platform.base import HealthProbe
from rollover.runtime.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class HealthVerifier:
    """Polls an environment's probe until healthy, timed out or cancelled.

    A failed attempt (probe error, non-2xx, wrong identity) resets the
    consecutive-pass counter but never extends the time budget.
    """

    def __init__(self, probe: HealthProbe, *, clock: Clock | None = None) -> None:
        self._probe = probe
        self._clock = clock or SystemClock()

    @property
    def probe(self) -> HealthProbe:
        return self._probe

    def await_healthy(
        self,
        environment: str,
        policy: HealthPolicy,
        cancel: ThreadEvent | None = None,
        expected_identity: str | None = None,
    ) -> HealthResult:
        identity = expected_identity or policy.expected_identity
        with trace_span(
            "rollover.health",
            "health.await",
            environment=environment,
            success_threshold=policy.success_threshold,
            expected_identity=identity,
        ) as span:
            result = self._poll(environment, policy, identity, cancel)
            span.set_attribute("rollover.status", result.status.value)
            span.set_attribute("rollover.attempts", result.attempts)
        logger.info(
            "health.gate.finished",
            extra={
                "extra": {
                    "environment": environment,
                    "status": result.status.value,
                    "reason": result.reason.value if result.reason else None,
                    "attempts": result.attempts,
                    "elapsed_seconds": result.elapsed_seconds,
                }
            },
        )
        return result

    def _poll(
        self,
        environment: str,
        policy: HealthPolicy,
        identity: str | None,
        cancel: ThreadEvent | None,
    ) -> HealthResult:
        start = self._clock.monotonic()
        deadline = start + policy.timeout_seconds
        attempts = 0
        consecutive = 0

        def _result(status: HealthStatus, reason: HealthFailureReason | None) -> HealthResult:
            return HealthResult(
                status=status,
                reason=reason,
                attempts=attempts,
                consecutive_passes=consecutive,
                elapsed_seconds=self._clock.monotonic() - start,
            )

        while True:
            if cancel is not None and cancel.is_set():
                return _result(HealthStatus.UNHEALTHY, HealthFailureReason.CANCELLED)
            attempts += 1
            try:
                probe = self._probe.probe(environment, identity)
                passed, detail = probe.passed, probe.detail
            except RolloverError as exc:
                passed, detail = False, str(exc)

            if passed:
                consecutive += 1
                HEALTH_ATTEMPTS.labels(outcome="pass").inc()
                if consecutive >= policy.success_threshold:
                    return _result(HealthStatus.HEALTHY, None)
            else:
                consecutive = 0
                HEALTH_ATTEMPTS.labels(outcome="fail").inc()
                logger.info(
                    "health.attempt.failed",
                    extra={
                        "extra": {"environment": environment, "attempt": attempts, "detail": detail}
                    },
                )

            now = self._clock.monotonic()
            if now >= deadline:
                return _result(HealthStatus.UNHEALTHY, HealthFailureReason.TIMEOUT)
            if self._clock.sleep(min(policy.interval_seconds, deadline - now), cancel):
                return _result(HealthStatus.UNHEALTHY, HealthFailureReason.CANCELLED)
