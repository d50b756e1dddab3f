"""Result-typed boundary over the Cloud SQL Admin API (sqladmin v1beta4).

Same contract as the Compute Engine client: HttpError never reaches the
provider. A 404 becomes NotFound, a 409 Conflict and any other status a
Failure carrying the HTTP code. Operations come back as PendingOperation
snapshots so the shared OperationPoller can wait on them.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from google.auth import exceptions as auth_exc
from googleapiclient.errors import HttpError
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception,
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

log = logger.bind(provider="gcp", component="sql-client")

SQLADMIN_API = "sqladmin"
SQLADMIN_VERSION = "v1beta4"

_TRANSIENT_STATUSES = frozenset({429, 500, 502, 503})

_TRANSPORT = (auth_exc.GoogleAuthError, OSError)

type DatabaseInstance = Mapping[str, Any]


class CloudSQLClient(Protocol):
    """Operations the Cloud SQL provider needs from the Admin API."""

    def insert_instance(
        self, project: str, body: Mapping[str, Any],
    ) -> Result[PendingOperation]: ...

    def get_instance(self, project: str, name: str) -> Result[DatabaseInstance]: ...

    def delete_instance(self, project: str, name: str) -> Result[PendingOperation]: ...

    def insert_user(
        self, project: str, instance: str, body: Mapping[str, Any],
    ) -> Result[PendingOperation]: ...

    def get_operation(
        self, project: str, operation: PendingOperation,
    ) -> Result[PendingOperation]: ...


class GoogleCloudSQLClient:
    """CloudSQLClient backed by a google-api-python-client discovery resource."""

    def __init__(self, sqladmin: Any) -> None:
        self._sqladmin = sqladmin

    @classmethod
    def create(cls) -> GoogleCloudSQLClient:
        from googleapiclient import discovery

        return cls(discovery.build(SQLADMIN_API, SQLADMIN_VERSION, cache_discovery=False))

    def insert_instance(
        self, project: str, body: Mapping[str, Any],
    ) -> Result[PendingOperation]:
        return _operation_call(self._sqladmin.instances().insert(project=project, body=dict(body)))

    def get_instance(self, project: str, name: str) -> Result[DatabaseInstance]:
        return _guarded(self._sqladmin.instances().get(project=project, instance=name))

    def delete_instance(self, project: str, name: str) -> Result[PendingOperation]:
        return _operation_call(self._sqladmin.instances().delete(project=project, instance=name))

    def insert_user(
        self, project: str, instance: str, body: Mapping[str, Any],
    ) -> Result[PendingOperation]:
        return _operation_call(
            self._sqladmin.users().insert(project=project, instance=instance, body=dict(body)),
        )

    def get_operation(
        self, project: str, operation: PendingOperation,
    ) -> Result[PendingOperation]:
        return _operation_call(
            self._sqladmin.operations().get(project=project, operation=operation.name),
        )


# =============================================================================
# Pure helpers
# =============================================================================


def _is_transient(e: BaseException) -> bool:
    return isinstance(e, HttpError) and _http_status(e) in _TRANSIENT_STATUSES


@retry(
    stop=stop_after_attempt(3),
    wait=wait_fixed(2),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)
def _execute_with_retry(request: Any) -> Any:
    return request.execute()


def _guarded(request: Any) -> Result[Any]:
    try:
        return Ok(_execute_with_retry(request))
    except HttpError as e:
        match _http_status(e):
            case 404:
                return NotFound(_reason(e))
            case 409:
                return Conflict(_reason(e))
            case status:
                return Failure(_reason(e), code=status)
    except _TRANSPORT as e:
        log.debug("Transport error calling Cloud SQL: {err}", err=e)
        return Failure(str(e) or type(e).__name__)


def _operation_call(request: Any) -> Result[PendingOperation]:
    match _guarded(request):
        case Ok(value=raw):
            return Ok(to_sql_operation(raw))
        case other:
            return other


def to_sql_operation(raw: Mapping[str, Any]) -> PendingOperation:
    """Convert a ``sql#operation`` resource to a snapshot.

    Cloud SQL operations are global, so the snapshot has no zone. The target
    link ends with the instance name; ``targetId`` is used when it is absent.
    """
    error = raw.get("error") or {}
    return PendingOperation(
        name=str(raw["name"]),
        zone="",
        target_link=str(raw.get("targetLink") or raw.get("targetId") or ""),
        operation_type=str(raw.get("operationType", "")),
        status=str(raw.get("status") or "PENDING"),
        errors=tuple(
            OperationError(code=str(e.get("code", "")), message=str(e.get("message", "")))
            for e in error.get("errors", ())
        ),
    )


def _http_status(e: HttpError) -> int | None:
    status = getattr(e.resp, "status", None)
    return int(status) if status is not None else None


def _reason(e: HttpError) -> str:
    return str(getattr(e, "reason", "") or e)
