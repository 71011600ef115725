"""Autoscaling policy target binding."""

from __future__ import annotations

import logging

from rollover.contracts.models import AutoscalerBinding
from rollover.platform.base import AutoscalerApi

logger = logging.getLogger(__name__)


class AutoscalerBinder:
    """Points the autoscaling policy at the live environment.

    Callers must only rebind after the router switch has been verified.
    """

    def __init__(self, autoscaler: AutoscalerApi) -> None:
        self._autoscaler = autoscaler

    def current(self) -> AutoscalerBinding:
        return self._autoscaler.get_binding()

    def rebind(self, environment: str) -> AutoscalerBinding:
        binding = self._autoscaler.get_binding()
        if binding.target == environment:
            logger.info("autoscaler.rebind.noop", extra={"extra": {"target": environment}})
            return binding
        updated = self._autoscaler.set_binding_target(environment)
        logger.info(
            "autoscaler.rebound",
            extra={"extra": {"previous": binding.target, "target": updated.target}},
        )
        return updated
