"""Structured logging utilities."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
import json
import logging
from typing import Any

_rollover_id: ContextVar[str | None] = ContextVar("rollover_id", default=None)


@contextmanager
def rollover_context(rollover_id: object) -> Iterator[None]:
    """Stamp every record logged inside the block with ``rollover_id``."""
    token = _rollover_id.set(str(rollover_id))
    try:
        yield
    finally:
        _rollover_id.reset(token)


def current_rollover_id() -> str | None:
    return _rollover_id.get()


class JsonFormatter(logging.Formatter):
    """One JSON object per record; ``extra={"extra": {...}}`` fields are merged in."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        rollover_id = current_rollover_id()
        if rollover_id is not None:
            payload["rollover_id"] = rollover_id
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            payload.update(record.extra)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Send JSON lines to stderr; names like ``"debug"`` are accepted."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)
