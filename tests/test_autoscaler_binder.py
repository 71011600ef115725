"""Unit tests for autoscaler rebinding."""

from __future__ import annotations

from rollover.autoscaler.binder import AutoscalerBinder
from rollover.platform.memory import InMemoryAutoscalerApi


def test_rebind_moves_target_and_keeps_bounds() -> None:
    autoscaler = InMemoryAutoscalerApi("blue", min_replicas=2, max_replicas=8)

    binding = AutoscalerBinder(autoscaler).rebind("green")

    assert binding.target == "green"
    assert (binding.min_replicas, binding.max_replicas) == (2, 8)


def test_rebind_is_idempotent() -> None:
    autoscaler = InMemoryAutoscalerApi("blue")
    binder = AutoscalerBinder(autoscaler)

    binder.rebind("green")
    binder.rebind("green")

    assert autoscaler.journal == ["autoscaler.set:green"]
    assert binder.current().target == "green"
