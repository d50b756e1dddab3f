"""Result-typed boundary over the Compute Engine API.

The orchestration code never sees google-api-core exceptions: every call
returns an Ok, NotFound (404), Conflict (409) or Failure, so idempotency
decisions are ordinary pattern matches instead of except clauses.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from google.api_core import exceptions as gexc
from google.auth import exceptions as auth_exc
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .types import (
    Conflict,
    Failure,
    NotFound,
    Ok,
    OperationError,
    PendingOperation,
    Result,
)
from .urls import local_name

if TYPE_CHECKING:
    from google.cloud import compute_v1

log = logger.bind(provider="gcp", component="client")

_TRANSIENT = (
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
    gexc.InternalServerError,
)

_TRANSPORT = (gexc.GoogleAPIError, auth_exc.GoogleAuthError, OSError)


class ComputeClient(Protocol):
    """Operations the provider needs from Compute Engine."""

    def insert_disk(
        self, project: str, zone: str, disk: compute_v1.Disk,
    ) -> Result[PendingOperation]: ...

    def get_disk(
        self, project: str, zone: str, name: str,
    ) -> Result[compute_v1.Disk]: ...

    def delete_disk(
        self, project: str, zone: str, name: str,
    ) -> Result[PendingOperation]: ...

    def insert_instance(
        self, project: str, zone: str, instance: compute_v1.Instance,
    ) -> Result[PendingOperation]: ...

    def get_instance(
        self, project: str, zone: str, name: str,
    ) -> Result[compute_v1.Instance]: ...

    def delete_instance(
        self, project: str, zone: str, name: str,
    ) -> Result[PendingOperation]: ...

    def get_zone_operation(
        self, project: str, zone: str, name: str,
    ) -> Result[PendingOperation]: ...

    def get_operation(
        self, project: str, operation: PendingOperation,
    ) -> Result[PendingOperation]: ...


class GoogleComputeClient:
    """ComputeClient backed by the sync google-cloud-compute clients."""

    def __init__(
        self,
        instances_client: Any,
        disks_client: Any,
        zone_operations_client: Any,
    ) -> None:
        self._instances = instances_client
        self._disks = disks_client
        self._zone_operations = zone_operations_client

    @classmethod
    def create(cls) -> GoogleComputeClient:
        from google.cloud import compute_v1

        return cls(
            instances_client=compute_v1.InstancesClient(),
            disks_client=compute_v1.DisksClient(),
            zone_operations_client=compute_v1.ZoneOperationsClient(),
        )

    def insert_disk(
        self, project: str, zone: str, disk: compute_v1.Disk,
    ) -> Result[PendingOperation]:
        return _operation_call(
            self._disks.insert, project=project, zone=zone, disk_resource=disk,
        )

    def get_disk(
        self, project: str, zone: str, name: str,
    ) -> Result[compute_v1.Disk]:
        return _guarded(self._disks.get, project=project, zone=zone, disk=name)

    def delete_disk(
        self, project: str, zone: str, name: str,
    ) -> Result[PendingOperation]:
        return _operation_call(
            self._disks.delete, project=project, zone=zone, disk=name,
        )

    def insert_instance(
        self, project: str, zone: str, instance: compute_v1.Instance,
    ) -> Result[PendingOperation]:
        return _operation_call(
            self._instances.insert, project=project, zone=zone, instance_resource=instance,
        )

    def get_instance(
        self, project: str, zone: str, name: str,
    ) -> Result[compute_v1.Instance]:
        return _guarded(self._instances.get, project=project, zone=zone, instance=name)

    def delete_instance(
        self, project: str, zone: str, name: str,
    ) -> Result[PendingOperation]:
        return _operation_call(
            self._instances.delete, project=project, zone=zone, instance=name,
        )

    def get_zone_operation(
        self, project: str, zone: str, name: str,
    ) -> Result[PendingOperation]:
        return _operation_call(
            self._zone_operations.get, project=project, zone=zone, operation=name,
        )

    def get_operation(
        self, project: str, operation: PendingOperation,
    ) -> Result[PendingOperation]:
        return self.get_zone_operation(project, operation.zone, operation.name)


# =============================================================================
# Pure helpers
# =============================================================================


@retry(
    stop=stop_after_attempt(3),
    wait=wait_fixed(2),
    retry=retry_if_exception_type(_TRANSIENT),
    reraise=True,
)
def _call_with_retry(fn: Callable[..., Any], **kwargs: Any) -> Any:
    return fn(**kwargs)


def _guarded(fn: Callable[..., Any], **kwargs: Any) -> Result[Any]:
    try:
        return Ok(_call_with_retry(fn, **kwargs))
    except gexc.NotFound as e:
        return NotFound(_message(e))
    except gexc.Conflict as e:
        return Conflict(_message(e))
    except gexc.GoogleAPICallError as e:
        return Failure(_message(e), code=_status_code(e))
    except _TRANSPORT as e:
        log.debug("Transport error calling {fn}: {err}", fn=_fn_name(fn), err=e)
        return Failure(str(e) or type(e).__name__)


def _operation_call(fn: Callable[..., Any], **kwargs: Any) -> Result[PendingOperation]:
    match _guarded(fn, **kwargs):
        case Ok(value=raw):
            return Ok(to_pending_operation(raw))
        case other:
            return other


def to_pending_operation(raw: Any) -> PendingOperation:
    """Convert a compute_v1 Operation (or ExtendedOperation) to a snapshot."""
    error = getattr(raw, "error", None)
    raw_errors = getattr(error, "errors", None) or ()
    return PendingOperation(
        name=str(raw.name),
        zone=local_name(getattr(raw, "zone", "")) or "",
        target_link=str(getattr(raw, "target_link", "")),
        operation_type=str(getattr(raw, "operation_type", "")),
        status=_status_name(getattr(raw, "status", None)),
        errors=tuple(
            OperationError(code=str(e.code), message=str(e.message)) for e in raw_errors
        ),
    )


def _status_name(status: object) -> str:
    if status is None:
        return "PENDING"
    if isinstance(status, str):
        return status
    return str(getattr(status, "name", status))


def _message(e: gexc.GoogleAPICallError) -> str:
    return str(e.message or e)


def _status_code(e: gexc.GoogleAPICallError) -> int | None:
    code = e.code
    return int(code) if code is not None else None


def _fn_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", repr(fn))
