"""OpenTelemetry tracing setup."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
import os
from typing import Any

logger = logging.getLogger(__name__)

DISABLE_TRACING_ENV = "ROLLOVER_DISABLE_TRACING"

_configured_service: str | None = None


class _NoOpSpan:
    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def set_attribute(self, key: str, value: Any) -> None:
        return None


class _NoOpTracer:
    def start_as_current_span(self, name: str) -> _NoOpSpan:
        return _NoOpSpan()


_NOOP_TRACER = _NoOpTracer()


def tracing_disabled() -> bool:
    return os.getenv(DISABLE_TRACING_ENV) == "1"


def setup_tracing(service_name: str, exporter: Any | None = None) -> None:
    """Install a tracer provider once per process; console export by default."""
    global _configured_service
    if tracing_disabled():
        logger.info("tracing.disabled", extra={"extra": {"service": service_name}})
        return
    if _configured_service is not None:
        return
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    _configured_service = service_name
    logger.info("tracing.configured", extra={"extra": {"service": service_name}})


def get_tracer(name: str) -> Any:
    """Return a tracer, or a no-op stand-in when tracing is disabled."""
    if tracing_disabled():
        return _NOOP_TRACER
    from opentelemetry import trace

    return trace.get_tracer(name)


@contextmanager
def span(tracer_name: str, name: str, **attributes: Any) -> Iterator[Any]:
    """Open a span and stamp it with ``attributes`` (None values are skipped)."""
    with get_tracer(tracer_name).start_as_current_span(name) as current:
        for key, value in attributes.items():
            if value is not None:
                current.set_attribute(f"rollover.{key}", value)
        yield current
