import os

import pytest

# Tests never export spans and never read a developer's real .env file.
os.environ.setdefault("ROLLOVER_DISABLE_TRACING", "1")
os.environ.setdefault("DOTENV_PATH", "tests/.env.DO_NOT_USE")


@pytest.fixture(autouse=True)
def clear_settings_cache():
    from rollover.config import settings

    settings._config_adapter.cache_clear()
    settings.get_settings.cache_clear()
    yield
    settings._config_adapter.cache_clear()
    settings.get_settings.cache_clear()
