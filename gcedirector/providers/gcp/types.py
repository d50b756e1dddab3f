"""Value types shared by the Compute Engine and Cloud SQL clients, the poller
and the providers."""

from __future__ import annotations

from dataclasses import dataclass

from .urls import local_name


@dataclass(frozen=True, slots=True)
class OperationError:
    code: str
    message: str


@dataclass(frozen=True, slots=True)
class PendingOperation:
    """Snapshot of an operation returned by an insert or delete request.

    The poller replaces snapshots with fresher ones; a snapshot itself is
    never mutated. ``zone`` is empty for global Cloud SQL operations.
    """

    name: str
    zone: str
    target_link: str
    operation_type: str
    status: str = "PENDING"
    errors: tuple[OperationError, ...] = ()

    @property
    def target_name(self) -> str:
        return local_name(self.target_link) or self.target_link


# =============================================================================
# Results at the Remote Resource Client boundary
# =============================================================================


@dataclass(frozen=True, slots=True)
class Ok[T]:
    value: T


@dataclass(frozen=True, slots=True)
class NotFound:
    message: str


@dataclass(frozen=True, slots=True)
class Conflict:
    message: str


@dataclass(frozen=True, slots=True)
class Failure:
    message: str
    code: int | None = None


type Result[T] = Ok[T] | NotFound | Conflict | Failure
