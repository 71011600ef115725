"""Tests for logging, metrics and tracing helpers."""

from __future__ import annotations

import json
import logging

from rollover.contracts.models import HealthPolicy, RolloverRequest
from rollover.observability.logging import JsonFormatter, rollover_context
from rollover.observability.metrics import Counter, Histogram, render_metrics
from rollover.observability.telemetry import get_tracer, span
from rollover.orchestrator.factory import PlatformBundle, build_orchestrator
from rollover.platform.memory import (
    InMemoryAutoscalerApi,
    InMemoryRouterApi,
    InMemoryWorkloadApi,
    ScriptedProbe,
)
from rollover.runtime.clock import ManualClock


def test_json_formatter_merges_extra_fields() -> None:
    record = logging.LogRecord(
        "rollover.test", logging.INFO, __file__, 1, "router.switched", (), None
    )
    record.extra = {"backend": "green", "generation": 3}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["event"] == "router.switched"
    assert "rollover_id" not in payload
    assert payload["level"] == "INFO"
    assert payload["backend"] == "green"
    assert payload["generation"] == 3


def test_counter_and_histogram_render_prometheus_text() -> None:
    counter = Counter(name="demo_total", description="Demo", label_names=("outcome",))
    counter.labels(outcome="pass").inc()
    counter.labels(outcome="pass").inc(2)
    histogram = Histogram(name="demo_seconds", description="Demo", label_names=("phase",))
    histogram.labels(phase="SWITCHING").observe(0.5)

    lines = counter.render() + histogram.render()

    assert 'demo_total{outcome="pass"} 3.0' in lines
    assert 'demo_seconds_count{phase="SWITCHING"} 1' in lines
    assert 'demo_seconds_sum{phase="SWITCHING"} 0.5' in lines


def test_rollover_outcomes_are_counted() -> None:
    orchestrator = build_orchestrator(
        PlatformBundle(
            workload=InMemoryWorkloadApi(),
            router=InMemoryRouterApi("blue"),
            autoscaler=InMemoryAutoscalerApi("blue"),
            probe=ScriptedProbe([False]),
        ),
        clock=ManualClock(),
    )
    orchestrator.run_rollover(
        RolloverRequest(
            target="green",
            image_ref="registry.local/sample-app:green",
            replicas=1,
            health=HealthPolicy(timeout_seconds=4, interval_seconds=2),
        )
    )

    text = render_metrics()

    assert 'rollover_results_total{state="ABORTED",reason="HEALTH_GATE_FAILED"}' in text
    assert 'rollover_health_attempts_total{outcome="fail"}' in text
    assert 'rollover_phase_duration_seconds_count{phase="HEALTH_CHECKING"}' in text


def test_tracer_is_a_no_op_when_disabled() -> None:
    with get_tracer("rollover.test").start_as_current_span("noop") as span:
        span.set_attribute("key", "value")


def test_rollover_context_stamps_records_logged_inside_it() -> None:
    record = logging.LogRecord("rollover.test", logging.INFO, __file__, 1, "deploy.ready", (), None)

    with rollover_context("abc-123"):
        inside = json.loads(JsonFormatter().format(record))
    outside = json.loads(JsonFormatter().format(record))

    assert inside["rollover_id"] == "abc-123"
    assert "rollover_id" not in outside


def test_span_helper_skips_missing_attributes() -> None:
    with span("rollover.test", "noop", environment="green", image=None) as current:
        current.set_attribute("rollover.state", "DONE")
