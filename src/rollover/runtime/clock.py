"""Time sources for polling loops and backoff waits."""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Event as ThreadEvent, Lock
import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic time plus a cancellable sleep."""

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float, cancel: ThreadEvent | None = None) -> bool:
        """Wait up to ``seconds``; return True if ``cancel`` was set."""
        ...


class SystemClock:
    """Wall-clock implementation backed by ``time.monotonic``."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: ThreadEvent | None = None) -> bool:
        if cancel is not None:
            return cancel.wait(max(seconds, 0.0))
        if seconds > 0:
            time.sleep(seconds)
        return False


@dataclass(slots=True)
class ManualClock:
    """Virtual clock that advances only when slept on.

    Used by the demo scenarios and tests so polling loops finish instantly.
    """

    now: float = 0.0
    sleeps: list[float] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def monotonic(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds

    def sleep(self, seconds: float, cancel: ThreadEvent | None = None) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        with self._lock:
            self.sleeps.append(seconds)
            self.now += max(seconds, 0.0)
        return cancel is not None and cancel.is_set()
