"""Error taxonomy for rollover components.

Every component raises one of these instead of leaking raw platform errors,
so the orchestrator can map a failure to a :class:`FailureKind` without
knowing which backend produced it.
"""

from __future__ import annotations

from rollover.contracts.types import FailureKind


class RolloverError(RuntimeError):
    """Base class for all classified rollover failures."""

    kind: FailureKind = FailureKind.TRANSIENT

    def __init__(self, message: str, *, environment: str | None = None) -> None:
        super().__init__(message)
        self.environment = environment

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.TRANSIENT


class PlatformUnavailable(RolloverError):
    """Transient platform or network failure; safe to retry."""

    kind = FailureKind.TRANSIENT


class InvalidSpec(RolloverError):
    """Malformed request or deployment spec; never retried."""

    kind = FailureKind.INVALID


class ConcurrentModification(RolloverError):
    """Router state changed between read and conditional write."""

    kind = FailureKind.CONCURRENT_MODIFICATION

    def __init__(
        self,
        message: str,
        *,
        environment: str | None = None,
        expected_generation: int | None = None,
        actual_generation: int | None = None,
    ) -> None:
        super().__init__(message, environment=environment)
        self.expected_generation = expected_generation
        self.actual_generation = actual_generation


class Cancelled(RolloverError):
    """Caller aborted the in-flight step."""

    kind = FailureKind.CANCELLED


class RolloverInProgress(RuntimeError):
    """Raised when a second workflow is started on a busy orchestrator."""


class StaleIntent(ConcurrentModification):
    """Router moved to a backend the caller did not expect; retrying would override it."""
