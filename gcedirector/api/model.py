from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class InstanceStatus(StrEnum):
    """Provider-agnostic instance status exposed to callers."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


_GCE_STATUS_MAP: dict[str, InstanceStatus] = {
    "PROVISIONING": InstanceStatus.PENDING,
    "STAGING": InstanceStatus.PENDING,
    "RUNNING": InstanceStatus.RUNNING,
    "STOPPING": InstanceStatus.STOPPING,
    "TERMINATED": InstanceStatus.STOPPED,
}


def from_gce_status(status: str | None) -> InstanceStatus:
    """Map a native Compute Engine status; anything unmapped is UNKNOWN."""
    return _GCE_STATUS_MAP.get(status or "", InstanceStatus.UNKNOWN)


_SQL_STATE_MAP: dict[str, InstanceStatus] = {
    "PENDING_CREATE": InstanceStatus.PENDING,
    "RUNNABLE": InstanceStatus.RUNNING,
    "SUSPENDED": InstanceStatus.STOPPED,
    "MAINTENANCE": InstanceStatus.STOPPED,
    "FAILED": InstanceStatus.FAILED,
}


def from_sql_state(state: str | None) -> InstanceStatus:
    """Map a Cloud SQL instance state; anything unmapped is UNKNOWN."""
    return _SQL_STATE_MAP.get(state or "", InstanceStatus.UNKNOWN)


@dataclass(frozen=True, slots=True)
class InstanceState:
    status: InstanceStatus
