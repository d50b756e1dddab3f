"""Custom exception hierarchy for gcedirector.

All gcedirector-specific exceptions inherit from GceDirectorError, enabling
callers to catch every provider failure with a single except clause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gcedirector.core.conditions import ExceptionDetails


class GceDirectorError(Exception):
    """Base exception for all gcedirector errors."""


class ConfigurationError(GceDirectorError):
    """Raised for invalid configuration or template values, before any remote call."""


class TransientProviderError(GceDirectorError):
    """Raised when a read-only query against the provider fails unexpectedly."""


class UnrecoverableProviderError(GceDirectorError):
    """Raised once at the end of a batch whose outcome cannot be salvaged.

    Carries every condition accumulated during the batch so callers can
    report all the individual failures, not just the last one.
    """

    def __init__(self, message: str, details: ExceptionDetails) -> None:
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        lines = [str(condition) for condition in self.details.conditions()]
        if not lines:
            return base
        return base + "\n" + "\n".join(f"  {line}" for line in lines)
