"""Error accumulation for batch operations.

Conditions are collected across a whole batch and only consulted at batch
boundaries, where they decide the aggregate outcome and, on failure, are
frozen into an ExceptionDetails carried by UnrecoverableProviderError.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal

type Severity = Literal["ERROR", "WARNING"]


@dataclass(frozen=True, slots=True)
class Condition:
    severity: Severity
    message: str
    key: str | None = None

    def __str__(self) -> str:
        if self.key is None:
            return f"({self.severity}) {self.message}"
        return f"({self.severity}) {self.key}: {self.message}"


@dataclass(frozen=True, slots=True)
class ExceptionDetails:
    """Immutable snapshot of the conditions of a failed batch."""

    conditions_by_key: Mapping[str | None, tuple[Condition, ...]]

    def conditions(self) -> Iterator[Condition]:
        for conditions in self.conditions_by_key.values():
            yield from conditions

    def messages(self) -> list[str]:
        return [c.message for c in self.conditions()]


@dataclass(slots=True)
class ConditionAccumulator:
    """Multimap from an optional resource key to the conditions raised for it."""

    _conditions: dict[str | None, list[Condition]] = field(default_factory=dict)

    def add_error(self, key: str | None, message: str) -> None:
        self._add(Condition("ERROR", message, key))

    def add_warning(self, key: str | None, message: str) -> None:
        self._add(Condition("WARNING", message, key))

    def _add(self, condition: Condition) -> None:
        self._conditions.setdefault(condition.key, []).append(condition)

    def has_error(self) -> bool:
        return any(c.severity == "ERROR" for c in self.conditions())

    def conditions(self) -> Iterator[Condition]:
        for conditions in self._conditions.values():
            yield from conditions

    def __len__(self) -> int:
        return sum(len(c) for c in self._conditions.values())

    def details(self) -> ExceptionDetails:
        return ExceptionDetails(
            MappingProxyType({k: tuple(v) for k, v in self._conditions.items()}),
        )
