"""Bounded exponential backoff for platform calls."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from threading import Event as ThreadEvent
from typing import TypeVar

from rollover.contracts.errors import Cancelled, RolloverError
from rollover.runtime.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Attempt budget and delay schedule (base * multiplier ** n, capped)."""

    attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")

    def delay(self, failed_attempt: int) -> float:
        """Delay after the ``failed_attempt``-th failure (1-based)."""
        return min(self.base_delay * self.multiplier ** (failed_attempt - 1), self.max_delay)


def retry_call(
    fn: Callable[[], T],
    *,
    policy: BackoffPolicy,
    retry_on: tuple[type[RolloverError], ...],
    operation: str,
    fatal: tuple[type[RolloverError], ...] = (),
    clock: Clock | None = None,
    cancel: ThreadEvent | None = None,
    on_retry: Callable[[int, RolloverError, float], None] | None = None,
) -> T:
    """Call ``fn`` until it succeeds or the attempt budget is spent.

    Only exceptions listed in ``retry_on`` are retried, unless they are also an
    instance of ``fatal``; the last one is re-raised once the budget is
    exhausted. A set ``cancel`` event during a backoff wait raises
    :class:`Cancelled`.
    """
    clock = clock or SystemClock()
    for attempt in range(1, policy.attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if isinstance(exc, fatal):
                raise
            if attempt == policy.attempts:
                logger.error(
                    "retry.exhausted",
                    extra={
                        "extra": {
                            "operation": operation,
                            "attempts": attempt,
                            "kind": exc.kind.value,
                            "error": str(exc),
                        }
                    },
                )
                raise
            delay = policy.delay(attempt)
            logger.warning(
                "retry.scheduled",
                extra={
                    "extra": {
                        "operation": operation,
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "kind": exc.kind.value,
                        "error": str(exc),
                    }
                },
            )
            if on_retry:
                on_retry(attempt, exc, delay)
            if clock.sleep(delay, cancel):
                raise Cancelled(f"{operation} cancelled during backoff") from exc
    raise AssertionError("unreachable")  # pragma: no cover
