"""Command line entrypoint for blue/green rollovers."""

from __future__ import annotations

from argparse import ArgumentParser, Namespace
from contextlib import closing
import json
from pathlib import Path
import sys
from threading import Event as ThreadEvent, Thread
from typing import Any, Callable

from rollover.config.settings import RolloverSettings, get_settings
from rollover.contracts.models import HealthPolicy, RolloverRequest, RolloverResult
from rollover.demo import fixtures
from rollover.demo.runner import run_scenario
from rollover.observability.logging import configure_logging
from rollover.observability.metrics import start_metrics_server
from rollover.observability.telemetry import setup_tracing
from rollover.orchestrator.factory import (
    build_event_bus,
    build_orchestrator,
    kubernetes_platform,
)
from rollover.orchestrator.orchestrator import RolloverOrchestrator


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="rollover", description="Blue/green rollovers on Kubernetes.")
    parser.add_argument("--metrics", action="store_true", help="Serve /metrics while running.")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Deploy to the idle environment and switch traffic.")
    run.add_argument("--file", type=Path, help="YAML rollover request.")
    run.add_argument("--target", help="Environment to deploy, e.g. green.")
    run.add_argument("--image", help="Image reference to deploy.")
    run.add_argument("--replicas", type=int, default=2)
    _add_health_arguments(run)

    back = commands.add_parser("switch-back", help="Roll traffic back to the idle environment.")
    back.add_argument("--environment", help="Environment to switch to (default: the idle one).")
    back.add_argument("--image", help="Image to redeploy (default: what it already runs).")
    back.add_argument("--replicas", type=int)
    _add_health_arguments(back)

    commands.add_parser("status", help="Show router, autoscaler and environment state.")

    demo = commands.add_parser("demo", help="Run an in-memory demo scenario.")
    demo.add_argument("scenario", choices=sorted(fixtures.SCENARIOS))
    return parser


def _add_health_arguments(parser: ArgumentParser) -> None:
    parser.add_argument("--drain", action="store_true", help="Scale the old environment to 0.")
    parser.add_argument("--health-timeout", type=float, default=300.0)
    parser.add_argument("--health-interval", type=float, default=5.0)
    parser.add_argument("--success-threshold", type=int, default=1)
    parser.add_argument("--expect-version", help="Version the probe must report.")


def _health_policy(args: Namespace) -> HealthPolicy:
    return HealthPolicy(
        timeout_seconds=args.health_timeout,
        interval_seconds=args.health_interval,
        success_threshold=args.success_threshold,
        expected_identity=args.expect_version,
    )


def _request_from_args(args: Namespace) -> RolloverRequest:
    if args.file:
        return RolloverRequest.load(args.file)
    if not args.target or not args.image:
        raise SystemExit("run needs --file or both --target and --image")
    return RolloverRequest(
        target=args.target,
        image_ref=args.image,
        replicas=args.replicas,
        health=_health_policy(args),
        drain_incumbent=args.drain,
    )


def _run_cancellable(work: Callable[[ThreadEvent], RolloverResult]) -> RolloverResult:
    """Run ``work`` on a worker thread; Ctrl-C cancels it cooperatively."""
    cancel = ThreadEvent()
    outcome: dict[str, Any] = {}

    def _target() -> None:
        try:
            outcome["result"] = work(cancel)
        except Exception as exc:  # noqa: BLE001
            outcome["error"] = exc

    worker = Thread(target=_target, name="rollover", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(timeout=0.5)
        except KeyboardInterrupt:
            print("Cancelling rollover...", file=sys.stderr)
            cancel.set()
    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def _print_result(result: RolloverResult) -> int:
    print(json.dumps(result.model_dump(mode="json", exclude={"transitions"}), indent=2))
    return 0 if result.succeeded else 1


def _orchestrator(settings: RolloverSettings) -> RolloverOrchestrator:
    return build_orchestrator(
        kubernetes_platform(settings), settings, bus=build_event_bus(settings)
    )


def _switch_back(
    args: Namespace, orchestrator: RolloverOrchestrator, settings: RolloverSettings
) -> int:
    target = args.environment
    if target is None:
        live = orchestrator.traffic.current().backend
        target = settings.other_environment(live) if live else settings.environments[0]
    result = _run_cancellable(
        lambda cancel: orchestrator.rollback(
            environment=target,
            image_ref=args.image,
            replicas=args.replicas,
            health=_health_policy(args),
            drain_incumbent=args.drain,
            cancel=cancel,
        )
    )
    return _print_result(result)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)
    setup_tracing(settings.service_name)
    if args.metrics:
        start_metrics_server(port=settings.metrics_port)

    if args.command == "demo":
        scenario = run_scenario(fixtures.SCENARIOS[args.scenario]())
        states = ", ".join(result.state.value for result in scenario.results)
        print(
            f"Scenario {scenario.name} finished ({states}); "
            f"traffic on {scenario.router.backend}, autoscaler on {scenario.autoscaler.target}"
        )
        return 0

    request = _request_from_args(args) if args.command == "run" else None
    # Closing flushes progress events still queued for the bus.
    with closing(_orchestrator(settings)) as orchestrator:
        if args.command == "status":
            print(json.dumps(orchestrator.status(), indent=2))
            return 0
        if args.command == "switch-back":
            return _switch_back(args, orchestrator, settings)
        return _print_result(
            _run_cancellable(lambda cancel: orchestrator.run_rollover(request, cancel=cancel))
        )


if __name__ == "__main__":
    sys.exit(main())
