"""TOML-based plugin configuration.

Loads the built-in defaults, ~/.gcedirector/google.toml (global) and
gcedirector.toml (project), merges them in that order, and exposes the
result as an immutable GoogleConfig.
"""

from __future__ import annotations

import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from gcedirector.core.exceptions import ConfigurationError
from gcedirector.observability.logging import LogConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".gcedirector" / "google.toml"
PROJECT_CONFIG_NAME = "gcedirector.toml"

DEFAULT_CONFIG: RawConfig = {
    "application": {
        "name": "gcedirector",
        "version": "0.1.0",
    },
    "compute": {
        "polling_timeout_seconds": 180,
        "max_polling_interval_seconds": 8,
        "image_aliases": {
            "centos6": (
                "https://www.googleapis.com/compute/v1/projects/centos-cloud"
                "/global/images/centos-6-v20160526"
            ),
            "rhel6": (
                "https://www.googleapis.com/compute/v1/projects/rhel-cloud"
                "/global/images/rhel-6-v20160511"
            ),
        },
    },
    "sql": {
        "region": "us-central",
    },
}


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    return _deep_merge(_deep_merge(DEFAULT_CONFIG, global_cfg), project_cfg)


@dataclass(frozen=True, slots=True)
class PollingPolicy:
    """Bounds for the Fibonacci backoff used while waiting on operations.

    Args:
        timeout_seconds: Total time after which remaining operations are abandoned.
        max_interval_seconds: Cap on the interval between two polling sweeps.
        initial_interval_seconds: First sleep before the first sweep.
    """

    timeout_seconds: int = 180
    max_interval_seconds: int = 8
    initial_interval_seconds: int = 1

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                f"Polling timeout must be positive: {self.timeout_seconds}"
            )
        if self.max_interval_seconds <= 0 or self.initial_interval_seconds <= 0:
            raise ConfigurationError("Polling intervals must be positive")


_NON_TAG_CHARS = re.compile(r"[^a-z0-9-]")


@dataclass(frozen=True, slots=True)
class GoogleConfig:
    """Resolved plugin configuration."""

    application_name: str = "gcedirector"
    application_version: str = "0.1.0"
    image_aliases: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    polling: PollingPolicy = field(default_factory=PollingPolicy)
    sql_region: str = "us-central"
    logging: LogConfig = field(default_factory=LogConfig)

    @classmethod
    def from_raw(cls, raw: RawConfig) -> GoogleConfig:
        merged = _deep_merge(DEFAULT_CONFIG, raw)
        application = merged["application"]
        compute = merged["compute"]

        try:
            polling = PollingPolicy(
                timeout_seconds=int(compute["polling_timeout_seconds"]),
                max_interval_seconds=int(compute["max_polling_interval_seconds"]),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid polling configuration: {e}") from e

        return cls(
            application_name=str(application["name"]),
            application_version=str(application["version"]),
            image_aliases=MappingProxyType(dict(compute.get("image_aliases", {}))),
            polling=polling,
            sql_region=str(merged["sql"]["region"]),
            logging=LogConfig.from_raw(merged.get("logging", {})),
        )

    @classmethod
    def load(
        cls,
        *,
        project_dir: Path | None = None,
        global_path: Path | None = None,
    ) -> GoogleConfig:
        return cls.from_raw(load_config(project_dir=project_dir, global_path=global_path))

    def provenance_tag(self) -> str:
        """Tool and version, lowercased and restricted to ``[a-z0-9-]``."""
        raw = f"{self.application_name}-{self.application_version}".lower()
        return _NON_TAG_CHARS.sub("-", raw)
