"""Unit tests for the consecutive-pass health gate."""

from __future__ import annotations

from threading import Event as ThreadEvent

from rollover.contracts.errors import PlatformUnavailable
from rollover.contracts.models import HealthPolicy, ProbeResult
from rollover.contracts.types import HealthFailureReason, HealthStatus
from rollover.health.verifier import HealthVerifier
from rollover.platform.memory import ScriptedProbe
from rollover.runtime.clock import ManualClock


def test_failure_resets_consecutive_passes() -> None:
    clock = ManualClock()
    probe = ScriptedProbe([True, True, False, True, True, True])
    policy = HealthPolicy(timeout_seconds=60, interval_seconds=2, success_threshold=3)

    result = HealthVerifier(probe, clock=clock).await_healthy("green", policy)

    assert result.status is HealthStatus.HEALTHY
    assert result.attempts == 6
    assert result.consecutive_passes == 3
    assert result.elapsed_seconds == 10


def test_timeout_bounds_total_wait() -> None:
    clock = ManualClock()
    probe = ScriptedProbe([False])
    policy = HealthPolicy(timeout_seconds=10, interval_seconds=3, success_threshold=1)

    result = HealthVerifier(probe, clock=clock).await_healthy("green", policy)

    assert result.status is HealthStatus.UNHEALTHY
    assert result.reason is HealthFailureReason.TIMEOUT
    assert result.elapsed_seconds <= policy.timeout_seconds
    # The last wait is shortened so the deadline is never overshot.
    assert clock.sleeps == [3, 3, 3, 1]
    assert result.attempts == probe.calls == 5


def test_cancel_returns_within_one_interval() -> None:
    clock = ManualClock()
    cancel = ThreadEvent()

    def _cancel_on_second(call: int) -> None:
        if call == 2:
            cancel.set()

    probe = ScriptedProbe([False], on_probe=_cancel_on_second)
    policy = HealthPolicy(timeout_seconds=300, interval_seconds=5)

    result = HealthVerifier(probe, clock=clock).await_healthy("green", policy, cancel=cancel)

    assert result.status is HealthStatus.UNHEALTHY
    assert result.reason is HealthFailureReason.CANCELLED
    assert result.attempts == 2
    assert result.elapsed_seconds <= policy.interval_seconds


def test_already_cancelled_never_probes() -> None:
    cancel = ThreadEvent()
    cancel.set()
    probe = ScriptedProbe([True])

    result = HealthVerifier(probe, clock=ManualClock()).await_healthy(
        "green", HealthPolicy(), cancel=cancel
    )

    assert result.reason is HealthFailureReason.CANCELLED
    assert probe.calls == 0


def test_probe_errors_count_as_failed_attempts() -> None:
    probe = ScriptedProbe([True, PlatformUnavailable("connection refused"), True, True])
    policy = HealthPolicy(timeout_seconds=60, interval_seconds=1, success_threshold=2)

    result = HealthVerifier(probe, clock=ManualClock()).await_healthy("green", policy)

    assert result.healthy
    assert result.attempts == 4


class _IdentityProbe:
    def __init__(self) -> None:
        self.seen: list[str | None] = []

    def probe(self, environment: str, expected_identity: str | None) -> ProbeResult:
        self.seen.append(expected_identity)
        return ProbeResult(passed=expected_identity == "v2", identity="v2")


def test_expected_identity_prefers_argument_over_policy() -> None:
    probe = _IdentityProbe()
    policy = HealthPolicy(timeout_seconds=5, interval_seconds=1, expected_identity="v1")
    verifier = HealthVerifier(probe, clock=ManualClock())

    assert verifier.await_healthy("green", policy, expected_identity="v2").healthy
    assert not verifier.await_healthy("green", policy).healthy
    assert probe.seen[0] == "v2"
    assert set(probe.seen[1:]) == {"v1"}
