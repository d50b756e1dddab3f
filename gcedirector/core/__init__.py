from gcedirector.core.conditions import Condition, ConditionAccumulator, ExceptionDetails
from gcedirector.core.exceptions import (
    ConfigurationError,
    GceDirectorError,
    TransientProviderError,
    UnrecoverableProviderError,
)

__all__ = [
    "Condition",
    "ConditionAccumulator",
    "ConfigurationError",
    "ExceptionDetails",
    "GceDirectorError",
    "TransientProviderError",
    "UnrecoverableProviderError",
]
