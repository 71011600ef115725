"""Tests for layered configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from rollover.config import settings
from rollover.config.adapter import DotEnvConfigSource, MountedSecretsConfigSource


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for key in [
        "ROLLOVER_NAMESPACE",
        "ROLLOVER_APP_NAME",
        "ROLLOVER_INGRESS_NAME",
        "ROLLOVER_SWITCH_ATTEMPTS",
        "ROLLOVER_IN_CLUSTER",
        "ROLLOVER_ENVIRONMENTS",
        "ROLLOVER_BUS",
        "ROLLOVER_SECRETS_DIR",
        "NATS_URL",
    ]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DOTENV_PATH", "tests/.env.DO_NOT_USE")


def test_defaults_match_the_demo_cluster() -> None:
    cfg = settings.get_settings()

    assert cfg.namespace == "blue-green-demo"
    assert cfg.ingress_name == "sample-app-ingress"
    assert cfg.hpa_name == "sample-app-hpa"
    assert cfg.environments == ("blue", "green")
    assert cfg.event_bus == "memory"


def test_names_derive_from_app_name(monkeypatch) -> None:
    monkeypatch.setenv("ROLLOVER_APP_NAME", "checkout")

    cfg = settings.get_settings()

    assert cfg.ingress_name == "checkout-ingress"
    assert cfg.health_url_template == "http://checkout-{environment}-service/version"


def test_env_values_are_typed(monkeypatch) -> None:
    monkeypatch.setenv("ROLLOVER_SWITCH_ATTEMPTS", "5")
    monkeypatch.setenv("ROLLOVER_IN_CLUSTER", "true")

    cfg = settings.get_settings()

    assert cfg.switch_attempts == 5
    assert cfg.in_cluster is True


def test_bad_number_is_reported(monkeypatch) -> None:
    monkeypatch.setenv("ROLLOVER_SWITCH_ATTEMPTS", "three")

    with pytest.raises(RuntimeError):
        settings.get_settings()


def test_environment_pair_must_be_distinct(monkeypatch) -> None:
    monkeypatch.setenv("ROLLOVER_ENVIRONMENTS", "blue,blue")

    with pytest.raises(RuntimeError):
        settings.get_settings()


def test_dotenv_is_read_after_environment(monkeypatch, tmp_path: Path) -> None:
    dotenv = tmp_path / ".env"
    dotenv.write_text(
        "# local overrides\nexport ROLLOVER_NAMESPACE='staging'\nROLLOVER_BUS=nats\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("DOTENV_PATH", str(dotenv))
    monkeypatch.setenv("ROLLOVER_BUS", "memory")
    settings._config_adapter.cache_clear()

    cfg = settings.get_settings()

    assert cfg.namespace == "staging"
    assert cfg.event_bus == "memory"


def test_missing_dotenv_is_ignored(tmp_path: Path) -> None:
    source = DotEnvConfigSource(path=tmp_path / "missing.env")

    assert source.get("ROLLOVER_NAMESPACE") is None


def test_other_environment() -> None:
    cfg = settings.RolloverSettings()

    assert cfg.other_environment("blue") == "green"
    assert cfg.other_environment("green") == "blue"
    with pytest.raises(ValueError):
        cfg.other_environment("red")


def test_mounted_secrets_fill_gaps_left_by_environment(monkeypatch, tmp_path: Path) -> None:
    (tmp_path / "NATS_URL").write_text("nats://secret-host:4222\n", encoding="utf-8")
    (tmp_path / "ROLLOVER_NAMESPACE").write_text("from-secret", encoding="utf-8")
    monkeypatch.setenv("ROLLOVER_SECRETS_DIR", str(tmp_path))
    monkeypatch.setenv("ROLLOVER_NAMESPACE", "from-env")

    cfg = settings.get_settings()

    assert cfg.nats_url == "nats://secret-host:4222"
    assert cfg.namespace == "from-env"


def test_mounted_secret_rotation_is_picked_up(tmp_path: Path) -> None:
    source = MountedSecretsConfigSource(directory=tmp_path)
    assert source.get("NATS_URL") is None

    (tmp_path / "NATS_URL").write_text("nats://rotated:4222", encoding="utf-8")

    assert source.get("NATS_URL") == "nats://rotated:4222"
