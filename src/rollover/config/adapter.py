"""Configuration sources, consulted in order: environment, .env file, mounted secrets."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Protocol


class ConfigSource(Protocol):
    """Anything that can resolve a configuration key to a string."""

    def get(self, key: str) -> str | None: ...


@dataclass(slots=True)
class EnvConfigSource:
    """Process environment, optionally under a key prefix."""

    prefix: str | None = None

    def get(self, key: str) -> str | None:
        return os.getenv(f"{self.prefix}{key}" if self.prefix else key)


@dataclass(slots=True)
class DotEnvConfigSource:
    """``KEY=value`` lines from a local file; ``export`` and quotes are tolerated.

    The file is parsed once, on first lookup. A missing file resolves nothing.
    """

    path: Path = Path(".env")
    encoding: str = "utf-8"
    _values: dict[str, str] | None = field(default=None, init=False)

    def _parse(self) -> dict[str, str]:
        values: dict[str, str] = {}
        if not self.path.is_file():
            return values
        for raw_line in self.path.read_text(encoding=self.encoding).splitlines():
            line = raw_line.strip()
            if line.startswith("export "):
                line = line[len("export ") :].lstrip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = (part.strip() for part in line.split("=", 1))
            if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
                value = value[1:-1]
            values[key] = value
        return values

    def get(self, key: str) -> str | None:
        if self._values is None:
            self._values = self._parse()
        return self._values.get(key)


@dataclass(slots=True)
class MountedSecretsConfigSource:
    """One file per key, as Kubernetes projects a Secret into a volume.

    Files are read on every lookup so rotated secrets are picked up without a
    restart.
    """

    directory: Path

    def get(self, key: str) -> str | None:
        path = self.directory / key
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8").strip()


@dataclass(slots=True)
class ConfigAdapter:
    """First source with a value wins."""

    sources: tuple[ConfigSource, ...]

    def get(self, key: str, default: str | None = None) -> str | None:
        for source in self.sources:
            value = source.get(key)
            if value is not None:
                return value
        return default
