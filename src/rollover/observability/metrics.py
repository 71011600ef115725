"""Rollover counters and timings in the Prometheus text format."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import logging
from threading import Lock, Thread
import time

logger = logging.getLogger(__name__)


@dataclass
class _LabeledCounter:
    value: float = 0.0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def inc(self, amount: float = 1.0) -> None:
        with self._lock:
            self.value += amount


@dataclass
class _LabeledHistogram:
    count: int = 0
    total: float = 0.0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def observe(self, value: float) -> None:
        with self._lock:
            self.count += 1
            self.total += value

    @contextmanager
    def time(self) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - started)


@dataclass
class Counter:
    name: str
    description: str
    label_names: tuple[str, ...]
    values: dict[tuple[str, ...], _LabeledCounter] = field(default_factory=dict)

    def labels(self, **labels: str) -> _LabeledCounter:
        key = tuple(labels[name] for name in self.label_names)
        if key not in self.values:
            self.values[key] = _LabeledCounter()
        return self.values[key]

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} counter"]
        for labels, counter in self.values.items():
            lines.append(f"{self.name}{{{_label_str(self.label_names, labels)}}} {counter.value}")
        return lines


@dataclass
class Histogram:
    name: str
    description: str
    label_names: tuple[str, ...]
    values: dict[tuple[str, ...], _LabeledHistogram] = field(default_factory=dict)

    def labels(self, **labels: str) -> _LabeledHistogram:
        key = tuple(labels[name] for name in self.label_names)
        if key not in self.values:
            self.values[key] = _LabeledHistogram()
        return self.values[key]

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} summary"]
        for labels, histogram in self.values.items():
            label_str = _label_str(self.label_names, labels)
            lines.append(f"{self.name}_count{{{label_str}}} {histogram.count}")
            lines.append(f"{self.name}_sum{{{label_str}}} {histogram.total}")
        return lines


def _label_str(names: tuple[str, ...], values: tuple[str, ...]) -> str:
    return ",".join(f'{name}="{value}"' for name, value in zip(names, values))


ROLLOVER_RESULTS = Counter(
    name="rollover_results_total",
    description="Count of finished rollovers by terminal state and reason",
    label_names=("state", "reason"),
)

PHASE_DURATION = Histogram(
    name="rollover_phase_duration_seconds",
    description="Duration of rollover phases",
    label_names=("phase",),
)

HEALTH_ATTEMPTS = Counter(
    name="rollover_health_attempts_total",
    description="Health probe attempts by outcome",
    label_names=("outcome",),
)

SWITCH_ATTEMPTS = Counter(
    name="rollover_switch_attempts_total",
    description="Router compare-and-set attempts by outcome",
    label_names=("outcome",),
)

REGISTRY: tuple[Counter | Histogram, ...] = (
    ROLLOVER_RESULTS,
    PHASE_DURATION,
    HEALTH_ATTEMPTS,
    SWITCH_ATTEMPTS,
)


def render_metrics() -> str:
    lines: list[str] = []
    for metric in REGISTRY:
        lines.extend(metric.render())
    return "\n".join(lines) + "\n"


class _MetricsHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/metrics":
            self._reply(200, render_metrics(), "text/plain; version=0.0.4")
        elif self.path == "/healthz":
            self._reply(200, "ok\n", "text/plain")
        else:
            self._reply(404, "not found\n", "text/plain")

    def _reply(self, status: int, text: str, content_type: str) -> None:
        body = text.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("metrics.request", extra={"extra": {"line": format % args}})


_server: ThreadingHTTPServer | None = None


def start_metrics_server(port: int = 8005, host: str = "0.0.0.0") -> ThreadingHTTPServer:
    """Serve ``/metrics`` from a daemon thread; later calls reuse the first server."""
    global _server
    if _server is not None:
        return _server
    _server = ThreadingHTTPServer((host, port), _MetricsHandler)
    Thread(target=_server.serve_forever, name="metrics", daemon=True).start()
    logger.info("metrics.server.started", extra={"extra": {"host": host, "port": port}})
    return _server
