"""Tests for the command line entrypoint."""

from __future__ import annotations

import pytest

from rollover import cli
from rollover.contracts.events import ROLLOVER_COMPLETED
from rollover.orchestrator.event_bus import InMemoryEventBus
from rollover.orchestrator.factory import PlatformBundle, build_orchestrator
from rollover.platform.memory import (
    InMemoryAutoscalerApi,
    InMemoryRouterApi,
    InMemoryWorkloadApi,
    WorkloadIdentityProbe,
)
from rollover.runtime.clock import ManualClock


def test_demo_command_reports_final_routing(capsys) -> None:
    assert cli.main(["demo", "rollback"]) == 0

    out = capsys.readouterr().out
    assert "Scenario rollback finished (DONE, DONE)" in out
    assert "traffic on blue" in out


def test_run_requires_target_and_image() -> None:
    with pytest.raises(SystemExit):
        cli.main(["run", "--target", "green"])


def test_switch_back_arguments() -> None:
    args = cli.build_parser().parse_args(
        ["switch-back", "--environment", "blue", "--drain", "--success-threshold", "3"]
    )

    assert args.environment == "blue"
    assert args.drain is True
    assert args.success_threshold == 3
    assert args.image is None


class _ClosingBus(InMemoryEventBus):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    def close(self) -> None:
        self.closed = True


def test_run_closes_the_event_bus_after_the_rollover(monkeypatch, capsys) -> None:
    bus = _ClosingBus()
    workload = InMemoryWorkloadApi()

    def _in_memory(settings):
        return build_orchestrator(
            PlatformBundle(
                workload=workload,
                router=InMemoryRouterApi("blue"),
                autoscaler=InMemoryAutoscalerApi("blue"),
                probe=WorkloadIdentityProbe(workload),
            ),
            settings,
            bus=bus,
            clock=ManualClock(),
        )

    monkeypatch.setattr(cli, "_orchestrator", _in_memory)

    code = cli.main(
        ["run", "--target", "green", "--image", "registry.local/sample-app:green"]
    )

    assert code == 0
    assert '"state": "DONE"' in capsys.readouterr().out
    assert bus.closed
    assert bus.next_event(ROLLOVER_COMPLETED, timeout=0.01) is not None
