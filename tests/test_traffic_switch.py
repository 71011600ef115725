"""Unit tests for the router compare-and-set controller."""

from __future__ import annotations

import pytest

from rollover.contracts.errors import ConcurrentModification, PlatformUnavailable, StaleIntent
from rollover.contracts.models import RouterState
from rollover.platform.memory import InMemoryRouterApi
from rollover.runtime.clock import ManualClock
from rollover.runtime.retry import BackoffPolicy
from rollover.traffic.switch import TrafficSwitchController


def _controller(router, clock: ManualClock | None = None, **kwargs) -> TrafficSwitchController:
    return TrafficSwitchController(
        router,
        policy=BackoffPolicy(attempts=3, base_delay=1.0),
        clock=clock or ManualClock(),
        **kwargs,
    )


def test_single_conflict_is_absorbed_by_a_fresh_read() -> None:
    clock = ManualClock()
    router = InMemoryRouterApi("blue", conflicts=1)

    state = _controller(router, clock).switch_to("green", expected_current="blue")

    assert state.backend == "green"
    assert state.generation == 3
    assert router.journal == ["router.set:green", "router.set:green"]
    assert clock.sleeps == [1.0]


def test_persistent_conflicts_surface_after_the_budget() -> None:
    router = InMemoryRouterApi("blue", conflicts=10)

    with pytest.raises(ConcurrentModification):
        _controller(router).switch_to("green", expected_current="blue")

    assert router.get_active_backend().backend == "blue"
    assert len(router.journal) == 3


def test_unexpected_backend_is_never_overridden() -> None:
    router = InMemoryRouterApi("blue")
    router.interfere("canary")

    with pytest.raises(StaleIntent):
        _controller(router).switch_to("green", expected_current="blue")

    assert router.journal == []
    assert router.get_active_backend().backend == "canary"


def test_switch_to_current_backend_is_a_no_op() -> None:
    router = InMemoryRouterApi("green")

    state = _controller(router).switch_to("green", expected_current="blue")

    assert state == RouterState(backend="green", generation=1)
    assert router.journal == []


def test_switch_from_empty_router() -> None:
    router = InMemoryRouterApi()

    state = _controller(router).switch_to("blue")

    assert state.backend == "blue"


class _FlakyRouter(InMemoryRouterApi):
    def __init__(self, backend: str, read_failures: int) -> None:
        super().__init__(backend)
        self.read_failures = read_failures

    def get_active_backend(self) -> RouterState:
        if self.read_failures > 0:
            self.read_failures -= 1
            raise PlatformUnavailable("router API timed out")
        return super().get_active_backend()


def test_unavailable_router_is_retried() -> None:
    router = _FlakyRouter("blue", read_failures=2)

    state = _controller(router).switch_to("green", expected_current="blue")

    assert state.backend == "green"


def test_verify_reads_back_the_router() -> None:
    router = InMemoryRouterApi("blue")
    controller = _controller(router)

    assert controller.verify("blue")
    assert not controller.verify("green")


def test_verify_waits_for_settle_delay() -> None:
    clock = ManualClock()
    controller = _controller(InMemoryRouterApi("green"), clock, settle_seconds=30.0)

    assert controller.verify("green")
    assert clock.sleeps == [30.0]


def test_verify_reports_false_when_router_stays_unreachable() -> None:
    controller = _controller(_FlakyRouter("green", read_failures=10))

    assert not controller.verify("green")
