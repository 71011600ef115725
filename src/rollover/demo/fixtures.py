"""Fixture data for demo scenarios."""

from __future__ import annotations

from rollover.contracts.models import HealthPolicy, RolloverRequest

BLUE_IMAGE = "registry.local/sample-app:blue"
GREEN_IMAGE = "registry.local/sample-app:green"

# Fast polling so scenarios finish in a handful of virtual seconds.
_DEMO_HEALTH = HealthPolicy(timeout_seconds=30.0, interval_seconds=2.0, success_threshold=2)


class ScenarioFixtures:
    """Container for the starting platform state and the request to run."""

    def __init__(
        self,
        name: str,
        request: RolloverRequest,
        *,
        live: str = "blue",
        live_image: str = BLUE_IMAGE,
        live_replicas: int = 2,
        router_conflicts: int = 0,
        broken_images: set[str] | None = None,
        switch_back: bool = False,
    ) -> None:
        self.name = name
        self.request = request
        self.live = live
        self.live_image = live_image
        self.live_replicas = live_replicas
        self.router_conflicts = router_conflicts
        self.broken_images = broken_images or set()
        self.switch_back = switch_back


def _green_request(drain_incumbent: bool = False) -> RolloverRequest:
    return RolloverRequest(
        target="green",
        image_ref=GREEN_IMAGE,
        replicas=2,
        health=_DEMO_HEALTH,
        drain_incumbent=drain_incumbent,
    )


def happy_path() -> ScenarioFixtures:
    return ScenarioFixtures("happy", _green_request(drain_incumbent=True))


def unhealthy_path() -> ScenarioFixtures:
    return ScenarioFixtures("unhealthy", _green_request(), broken_images={GREEN_IMAGE})


def conflict_path() -> ScenarioFixtures:
    # One competing write is absorbed by the switch retry.
    return ScenarioFixtures("conflict", _green_request(), router_conflicts=1)


def rollback_path() -> ScenarioFixtures:
    return ScenarioFixtures("rollback", _green_request(), switch_back=True)


SCENARIOS = {
    "happy": happy_path,
    "unhealthy": unhealthy_path,
    "conflict": conflict_path,
    "rollback": rollback_path,
}
