"""Compare-and-set control of the router's active backend."""

from __future__ import annotations

import logging
from threading import Event as ThreadEvent

from rollover.contracts.errors import (
    ConcurrentModification,
    PlatformUnavailable,
    RolloverError,
    StaleIntent,
)
from rollover.contracts.models import RouterState
from rollover.observability.metrics import SWITCH_ATTEMPTS
from rollover.platform.base import RouterApi
from rollover.runtime.clock import Clock, SystemClock
from rollover.runtime.retry import BackoffPolicy, retry_call

logger = logging.getLogger(__name__)


class TrafficSwitchController:
    """Owns the "which environment is live" pointer.

    Every write presents the generation it last read. A conflicting writer
    surfaces as :class:`ConcurrentModification`; each retry starts from a fresh
    read rather than replaying the failed write.
    """

    def __init__(
        self,
        router: RouterApi,
        *,
        policy: BackoffPolicy | None = None,
        clock: Clock | None = None,
        settle_seconds: float = 0.0,
    ) -> None:
        self._router = router
        self._policy = policy or BackoffPolicy(attempts=3, base_delay=1.0)
        self._clock = clock or SystemClock()
        self._settle_seconds = settle_seconds

    def current(self) -> RouterState:
        return self._router.get_active_backend()

    def switch_to(
        self,
        environment: str,
        *,
        expected_current: str | None = None,
        cancel: ThreadEvent | None = None,
    ) -> RouterState:
        """Point the router at ``environment``.

        When ``expected_current`` is given, a fresh read showing any backend
        other than it (or ``environment`` itself) aborts immediately with
        :class:`StaleIntent`.
        """

        def _attempt() -> RouterState:
            observed = self._router.get_active_backend()
            if observed.backend == environment:
                return observed
            if expected_current is not None and observed.backend != expected_current:
                SWITCH_ATTEMPTS.labels(outcome="stale").inc()
                raise StaleIntent(
                    f"router points at {observed.backend!r}, expected {expected_current!r}",
                    environment=environment,
                    actual_generation=observed.generation,
                )
            try:
                state = self._router.set_active_backend(environment, observed.generation)
            except ConcurrentModification:
                SWITCH_ATTEMPTS.labels(outcome="conflict").inc()
                raise
            except PlatformUnavailable:
                SWITCH_ATTEMPTS.labels(outcome="unavailable").inc()
                raise
            SWITCH_ATTEMPTS.labels(outcome="ok").inc()
            return state

        state = retry_call(
            _attempt,
            policy=self._policy,
            retry_on=(ConcurrentModification, PlatformUnavailable),
            fatal=(StaleIntent,),
            operation=f"router.switch:{environment}",
            clock=self._clock,
            cancel=cancel,
        )
        logger.info(
            "router.switched",
            extra={"extra": {"backend": state.backend, "generation": state.generation}},
        )
        return state

    def verify(self, environment: str, cancel: ThreadEvent | None = None) -> bool:
        """Re-read router state and confirm ``environment`` is the active backend."""
        if self._settle_seconds and self._clock.sleep(self._settle_seconds, cancel):
            return False
        try:
            state = retry_call(
                self._router.get_active_backend,
                policy=self._policy,
                retry_on=(PlatformUnavailable,),
                operation="router.verify",
                clock=self._clock,
                cancel=cancel,
            )
        except RolloverError as exc:
            logger.warning(
                "router.verify.failed",
                extra={"extra": {"environment": environment, "error": str(exc)}},
            )
            return False
        verified = state.backend == environment
        logger.info(
            "router.verified",
            extra={
                "extra": {
                    "environment": environment,
                    "backend": state.backend,
                    "verified": verified,
                }
            },
        )
        return verified
