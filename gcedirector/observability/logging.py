"""Opt-in loguru sinks for gcedirector.

Library modules log through ``logger.bind(provider=..., component=...)`` and
bind ``zone``, ``region``, ``instance`` or ``operation`` while they work on a
single resource. Nothing is emitted until an application calls
``setup_logging``; the bound keys are then rendered after the call site::

    12:00:01.250 | WARNING  | ...provider:_tear_down:240 [gcp/provider zone=us-central1-a instance=director-1] - ...

The ``[logging]`` table of gcedirector.toml maps onto LogConfig.from_raw.
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, get_args

from loguru import logger

from gcedirector.core.exceptions import ConfigurationError

PACKAGE = "gcedirector"

logger.disable(PACKAGE)

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

_LEVELS: frozenset[str] = frozenset(get_args(LogLevel.__value__))

# Per-resource keys, rendered in this order after provider/component.
RESOURCE_KEYS = ("zone", "region", "instance", "operation")

_CALL_SITE = "{name}:{function}:{line}{extra[context]}"

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | " + _CALL_SITE + " - {message}"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>" + _CALL_SITE + "</cyan> - <level>{message}</level>"
)


def render_context(extra: Mapping[str, Any]) -> str:
    """Render bound keys as `` [gcp/poller zone=... operation=...]``.

    Keys bound to None are skipped, so a caller may bind ``zone=None`` for
    regional or global resources.
    """
    origin = "/".join(str(extra[k]) for k in ("provider", "component") if extra.get(k))
    parts = [origin] if origin else []
    parts += [f"{k}={extra[k]}" for k in RESOURCE_KEYS if extra.get(k) is not None]
    return f" [{' '.join(parts)}]" if parts else ""


def _patch(record: Any) -> None:
    record["extra"]["context"] = render_context(record["extra"])


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where gcedirector log records go.

    Attributes:
        level: Minimum level for the console sink. The file sink always
            records DEBUG and above.
        file: Log file path; None disables the file sink.
        console: Whether to log to stderr.
        rotation: loguru rotation policy for the file sink, e.g. "50 MB".
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = ".gcedirector/gcedirector.log"
    console: bool = False
    rotation: str = "50 MB"
    retention: int = 10

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> LogConfig:
        defaults = cls()
        level = str(raw.get("level", defaults.level)).upper()
        if level not in _LEVELS:
            raise ConfigurationError(
                f"Unknown log level '{level}', expected one of {sorted(_LEVELS)}"
            )
        try:
            retention = int(raw.get("retention", defaults.retention))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid log retention: {e}") from e
        return cls(
            level=level,  # type: ignore[arg-type]
            file=raw.get("file", defaults.file) or None,
            console=bool(raw.get("console", defaults.console)),
            rotation=str(raw.get("rotation", defaults.rotation)),
            retention=retention,
        )


def setup_logging(config: LogConfig) -> list[int]:
    """Enable gcedirector logging and add the configured sinks.

    Returns:
        Handler ids to pass to teardown_logging.
    """
    logger.enable(PACKAGE)
    logger.configure(patcher=_patch)

    handler_ids: list[int] = []
    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter=PACKAGE,
        ))
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",
            format=FILE_FORMAT,
            filter=PACKAGE,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,
        ))
    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable(PACKAGE)
