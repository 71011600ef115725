"""Centralized settings for the rollover orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import os
from pathlib import Path

from rollover.config.adapter import (
    ConfigAdapter,
    ConfigSource,
    DotEnvConfigSource,
    EnvConfigSource,
    MountedSecretsConfigSource,
)


@lru_cache
def _config_adapter() -> ConfigAdapter:
    sources: list[ConfigSource] = [
        EnvConfigSource(),
        DotEnvConfigSource(path=Path(os.getenv("DOTENV_PATH", ".env"))),
    ]
    secrets_dir = os.getenv("ROLLOVER_SECRETS_DIR")
    if secrets_dir:
        sources.append(MountedSecretsConfigSource(directory=Path(secrets_dir)))
    return ConfigAdapter(tuple(sources))


def get_config_value(key: str, default: str | None = None) -> str | None:
    return _config_adapter().get(key, default)


def _get_float(key: str, default: float) -> float:
    raw = get_config_value(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{key} must be a number, got {raw!r}") from exc


def _get_int(key: str, default: int) -> int:
    raw = get_config_value(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{key} must be an integer, got {raw!r}") from exc


def _parse_pair(value: str | None, fallback: tuple[str, str]) -> tuple[str, str]:
    if not value:
        return fallback
    items = [item.strip() for item in value.split(",") if item.strip()]
    if len(items) != 2 or items[0] == items[1]:
        raise RuntimeError(f"ROLLOVER_ENVIRONMENTS must name two distinct slots, got {value!r}")
    return items[0], items[1]


def _get_bool(key: str, default: bool) -> bool:
    raw = get_config_value(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class RolloverSettings:
    namespace: str = "blue-green-demo"
    app_name: str = "sample-app"
    ingress_name: str = "sample-app-ingress"
    hpa_name: str = "sample-app-hpa"
    in_cluster: bool = False
    kube_context: str | None = None
    health_url_template: str = "http://sample-app-{environment}-service/version"
    health_identity_field: str = "version"
    probe_timeout_seconds: float = 5.0
    require_ready_replicas: bool = True
    platform_call_attempts: int = 3
    switch_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    verify_settle_seconds: float = 0.0
    drain_timeout_seconds: float = 300.0
    drain_poll_seconds: float = 5.0
    shutdown_timeout_seconds: float = 600.0
    log_level: str = "INFO"
    metrics_port: int = 8005
    event_bus: str = "memory"
    nats_url: str = "nats://nats:4222"
    service_name: str = "rollover"
    environments: tuple[str, str] = ("blue", "green")

    def other_environment(self, name: str) -> str:
        first, second = self.environments
        if name not in self.environments:
            raise ValueError(f"{name!r} is not one of {self.environments}")
        return second if name == first else first


@lru_cache
def get_settings() -> RolloverSettings:
    defaults = RolloverSettings()
    app_name = get_config_value("ROLLOVER_APP_NAME", defaults.app_name) or defaults.app_name
    return RolloverSettings(
        namespace=get_config_value("ROLLOVER_NAMESPACE", defaults.namespace) or defaults.namespace,
        app_name=app_name,
        ingress_name=get_config_value("ROLLOVER_INGRESS_NAME", f"{app_name}-ingress")
        or f"{app_name}-ingress",
        hpa_name=get_config_value("ROLLOVER_HPA_NAME", f"{app_name}-hpa") or f"{app_name}-hpa",
        in_cluster=_get_bool("ROLLOVER_IN_CLUSTER", defaults.in_cluster),
        kube_context=get_config_value("ROLLOVER_KUBE_CONTEXT"),
        health_url_template=get_config_value(
            "ROLLOVER_HEALTH_URL_TEMPLATE",
            f"http://{app_name}-{{environment}}-service/version",
        )
        or defaults.health_url_template,
        health_identity_field=get_config_value(
            "ROLLOVER_HEALTH_IDENTITY_FIELD", defaults.health_identity_field
        )
        or defaults.health_identity_field,
        probe_timeout_seconds=_get_float(
            "ROLLOVER_PROBE_TIMEOUT_SECONDS", defaults.probe_timeout_seconds
        ),
        require_ready_replicas=_get_bool(
            "ROLLOVER_REQUIRE_READY_REPLICAS", defaults.require_ready_replicas
        ),
        platform_call_attempts=_get_int(
            "ROLLOVER_PLATFORM_CALL_ATTEMPTS", defaults.platform_call_attempts
        ),
        switch_attempts=_get_int("ROLLOVER_SWITCH_ATTEMPTS", defaults.switch_attempts),
        backoff_base_seconds=_get_float(
            "ROLLOVER_BACKOFF_BASE_SECONDS", defaults.backoff_base_seconds
        ),
        backoff_max_seconds=_get_float("ROLLOVER_BACKOFF_MAX_SECONDS", defaults.backoff_max_seconds),
        verify_settle_seconds=_get_float(
            "ROLLOVER_VERIFY_SETTLE_SECONDS", defaults.verify_settle_seconds
        ),
        drain_timeout_seconds=_get_float(
            "ROLLOVER_DRAIN_TIMEOUT_SECONDS", defaults.drain_timeout_seconds
        ),
        drain_poll_seconds=_get_float("ROLLOVER_DRAIN_POLL_SECONDS", defaults.drain_poll_seconds),
        shutdown_timeout_seconds=_get_float(
            "ROLLOVER_SHUTDOWN_TIMEOUT_SECONDS", defaults.shutdown_timeout_seconds
        ),
        log_level=get_config_value("ROLLOVER_LOG_LEVEL", defaults.log_level) or defaults.log_level,
        metrics_port=_get_int("ROLLOVER_METRICS_PORT", defaults.metrics_port),
        event_bus=get_config_value("ROLLOVER_BUS", defaults.event_bus) or defaults.event_bus,
        nats_url=get_config_value("NATS_URL", defaults.nats_url) or defaults.nats_url,
        service_name=get_config_value("SERVICE_NAME", defaults.service_name)
        or defaults.service_name,
        environments=_parse_pair(get_config_value("ROLLOVER_ENVIRONMENTS"), defaults.environments),
    )
