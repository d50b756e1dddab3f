"""Cloud SQL provider for gcedirector.

Allocates MySQL database instances from a CloudSQLTemplate. Each instance
is created first and its master user second; an instance only counts once
its user exists. Below ``min_count`` every instance created by the call is
deleted again. Cloud SQL operations are global and carry no idempotent
error codes, so every operation error is a real one.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Final

from loguru import logger

from gcedirector.api.model import InstanceState, InstanceStatus, from_sql_state
from gcedirector.config import GoogleConfig
from gcedirector.core.conditions import ConditionAccumulator
from gcedirector.core.exceptions import (
    ConfigurationError,
    TransientProviderError,
    UnrecoverableProviderError,
)

from .config import GCP
from .operations import DONE_STATE, RUNNING_OR_DONE_STATES, OperationPoller
from .sql_client import CloudSQLClient, DatabaseInstance, GoogleCloudSQLClient
from .template import DEFAULT_INSTANCE_NAME_PREFIX, check_prefix, decorate_name, is_prefix_valid
from .types import Conflict, Failure, NotFound, Ok, PendingOperation

log = logger.bind(provider="gcp", component="sql")

DEFAULT_TIER: Final = "D1"
MAX_CREDENTIAL_LENGTH: Final = 16

USERNAME_MISSING_MSG: Final = "Database instance username must be provided."
INVALID_USERNAME_LENGTH_MSG: Final = (
    f"Database instance username must be between 1 and {MAX_CREDENTIAL_LENGTH} characters."
)
PASSWORD_MISSING_MSG: Final = "Database instance user password must be provided."
INVALID_PASSWORD_LENGTH_MSG: Final = (
    f"Database instance user password must be between 1 and {MAX_CREDENTIAL_LENGTH} characters."
)

# Instances accept connections from any address; access is guarded by the master user.
WORLD_ACL_ENTRY: Final[Mapping[str, str]] = MappingProxyType({
    "kind": "sql#aclEntry",
    "name": "world",
    "value": "0.0.0.0/0",
})

# Status codes under which a lookup means "no such instance" for this project.
_ABSENT_CODES: Final = frozenset({403})


class DatabaseEngine(StrEnum):
    MYSQL = "MYSQL"


@dataclass(frozen=True, slots=True)
class CloudSQLTemplate:
    """Declarative description of the database instances to allocate.

    Args:
        name: Template name, used only for logging.
        master_username: Name of the user created on every instance.
        master_user_password: Password of that user.
        engine: Database engine; only MySQL is offered.
        tier: Machine tier (D0 .. D32 or a db-* tier name).
        instance_name_prefix: Prefix of every decorated instance name.
        preferred_location: Zone to place instances near, if any.
    """

    name: str
    master_username: str | None
    master_user_password: str | None = field(repr=False)
    engine: DatabaseEngine = DatabaseEngine.MYSQL
    tier: str = DEFAULT_TIER
    instance_name_prefix: str = DEFAULT_INSTANCE_NAME_PREFIX
    preferred_location: str | None = None

    @classmethod
    def from_config(cls, name: str, config: Mapping[str, str]) -> CloudSQLTemplate:
        raw_engine = config.get("type", DatabaseEngine.MYSQL).upper()
        try:
            engine = DatabaseEngine(raw_engine)
        except ValueError:
            raise ConfigurationError(
                f"Unsupported database engine '{raw_engine}'. "
                f"Expected one of {[e.value for e in DatabaseEngine]}."
            ) from None

        return cls(
            name=name,
            master_username=config.get("adminUsername"),
            master_user_password=config.get("adminPassword"),
            engine=engine,
            tier=config.get("tier") or DEFAULT_TIER,
            instance_name_prefix=config.get("instanceNamePrefix", DEFAULT_INSTANCE_NAME_PREFIX),
            preferred_location=config.get("preferredLocation") or None,
        )

    def decorate(self, instance_id: str) -> str:
        return decorate_name(self.instance_name_prefix, instance_id)


def check_credentials(template: CloudSQLTemplate, accumulator: ConditionAccumulator) -> None:
    username, password = template.master_username, template.master_user_password
    if username is None:
        accumulator.add_error("adminUsername", USERNAME_MISSING_MSG)
    elif not 1 <= len(username) <= MAX_CREDENTIAL_LENGTH:
        accumulator.add_error("adminUsername", INVALID_USERNAME_LENGTH_MSG)

    if password is None:
        accumulator.add_error("adminPassword", PASSWORD_MISSING_MSG)
    elif not 1 <= len(password) <= MAX_CREDENTIAL_LENGTH:
        accumulator.add_error("adminPassword", INVALID_PASSWORD_LENGTH_MSG)


@dataclass(frozen=True, slots=True)
class CloudSQLInstance:
    """A live database instance found for one of the caller's ids."""

    template: CloudSQLTemplate
    instance_id: str
    details: DatabaseInstance

    @property
    def private_ip(self) -> str | None:
        addresses = self.details.get("ipAddresses") or ()
        return addresses[0].get("ipAddress") if addresses else None

    def properties(self) -> dict[str, str | None]:
        return {"DatabaseInstanceId": self.details.get("name")}


class GoogleCloudSQLProvider:
    """Stateless Cloud SQL provider. Holds only immutable config + a client."""

    def __init__(
        self,
        config: GCP,
        client: CloudSQLClient,
        google_config: GoogleConfig,
        project: str,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._client = client
        self._google_config = google_config
        self._project = project
        self._sleep = sleep

    @classmethod
    def create(
        cls,
        config: GCP,
        google_config: GoogleConfig | None = None,
    ) -> GoogleCloudSQLProvider:
        project = config.resolve_project()
        log.info("Resolved GCP project: {project}", project=project)

        return cls(
            config=config,
            client=GoogleCloudSQLClient.create(),
            google_config=google_config or GoogleConfig.load(),
            project=project,
        )

    @property
    def project(self) -> str:
        return self._project

    @property
    def region(self) -> str:
        return self._google_config.sql_region

    def _poller(self) -> OperationPoller:
        return OperationPoller(
            self._client, self._project, self._google_config.polling, sleep=self._sleep,
        )

    # =========================================================================
    # Allocation
    # =========================================================================

    def allocate(
        self,
        template: CloudSQLTemplate,
        instance_ids: Iterable[str],
        min_count: int,
    ) -> None:
        """Create one database instance (plus master user) per id.

        Raises:
            ValueError: ``instance_ids`` is empty or ``min_count`` is out of range.
            ConfigurationError: Invalid prefix or master user credentials.
            UnrecoverableProviderError: Fewer than ``min_count`` instances have a
                master user after the batch. Instances created by this call
                were deleted.
        """
        ids = list(dict.fromkeys(instance_ids))
        if not ids:
            raise ValueError("instance_ids must not be empty")
        if not 0 <= min_count <= len(ids):
            raise ValueError(f"min_count must be between 0 and {len(ids)}: {min_count}")

        self._check_template(template)

        accumulator = ConditionAccumulator()
        poller = self._poller()
        creation_ops: list[PendingOperation] = []
        ready: list[str] = []

        log.info(
            "Allocating {n} database instances from template '{template}' in {region} "
            "(min_count={min_count})",
            n=len(ids), template=template.name, region=self.region, min_count=min_count,
        )

        for instance_id in ids:
            name = template.decorate(instance_id)
            match self._client.insert_instance(self._project, self._build_instance(template, name)):
                case Ok(value=operation):
                    creation_ops.append(operation)
                case Conflict():
                    log.bind(region=self.region, instance=name).info(
                        "Database instance '{name}' already exists.", name=name,
                    )
                    ready.append(name)
                case NotFound(message=message) | Failure(message=message):
                    accumulator.add_error(name, message)

        created = poller.wait(creation_ops, DONE_STATE, accumulator)
        ready.extend(op.target_name for op in created)

        success_count = self._create_master_users(template, ready, poller, accumulator)

        if success_count < min_count:
            log.error(
                "Only {n} of the {total} database instances are usable, below the minimum "
                "of {min_count}. Tearing down.",
                n=success_count, total=len(ids), min_count=min_count,
            )
            self._tear_down(creation_ops, accumulator)
            raise UnrecoverableProviderError("Problem allocating instances.", accumulator.details())

        if success_count < len(ids):
            log.warning(
                "Allocated {n} of the {total} requested database instances (min_count={min_count})",
                n=success_count, total=len(ids), min_count=min_count,
            )
            for condition in accumulator.conditions():
                log.warning("{condition}", condition=condition)
            return

        log.info("Allocated {n} database instances", n=success_count)

    def _check_template(self, template: CloudSQLTemplate) -> None:
        accumulator = ConditionAccumulator()
        check_prefix(template.instance_name_prefix, accumulator)
        check_credentials(template, accumulator)
        if accumulator.has_error():
            raise ConfigurationError("; ".join(c.message for c in accumulator.conditions()))

    def _build_instance(self, template: CloudSQLTemplate, name: str) -> dict[str, Any]:
        settings: dict[str, Any] = {
            "tier": template.tier,
            "ipConfiguration": {
                "ipv4Enabled": True,
                "authorizedNetworks": [dict(WORLD_ACL_ENTRY)],
            },
        }
        if template.preferred_location:
            settings["locationPreference"] = {"zone": template.preferred_location}
        return {"name": name, "region": self.region, "settings": settings}

    def _create_master_users(
        self,
        template: CloudSQLTemplate,
        instance_names: Sequence[str],
        poller: OperationPoller,
        accumulator: ConditionAccumulator,
    ) -> int:
        """Create the master user on every ready instance; return how many have one."""
        user = {"name": template.master_username, "password": template.master_user_password}
        operations: list[PendingOperation] = []
        pre_existing = 0

        for name in instance_names:
            match self._client.insert_user(self._project, name, user):
                case Ok(value=operation):
                    operations.append(operation)
                case Conflict():
                    log.bind(instance=name).info(
                        "Master user '{user}' already exists.", user=template.master_username,
                    )
                    pre_existing += 1
                case NotFound(message=message) | Failure(message=message):
                    accumulator.add_error(name, message)

        return len(poller.wait(operations, DONE_STATE, accumulator)) + pre_existing

    # =========================================================================
    # Compensation
    # =========================================================================

    def _tear_down(
        self,
        creation_ops: Sequence[PendingOperation],
        accumulator: ConditionAccumulator,
    ) -> None:
        """Delete every database instance this allocation asked to create."""
        teardown_ops: list[PendingOperation] = []

        for operation in creation_ops:
            name = operation.target_name
            match self._client.delete_instance(self._project, name):
                case Ok(value=delete_op):
                    teardown_ops.append(delete_op)
                case NotFound():
                    log.bind(instance=name).debug("Database instance was never created")
                case Conflict(message=message) | Failure(message=message):
                    accumulator.add_error(name, message)

        succeeded = self._poller().wait(teardown_ops, DONE_STATE, accumulator)
        if len(succeeded) < len(teardown_ops):
            accumulator.add_error(
                None,
                f"{len(succeeded)} of the {len(teardown_ops)} tear down operations "
                "completed successfully.",
            )

    # =========================================================================
    # Discovery
    # =========================================================================

    def _lookup(self, name: str) -> DatabaseInstance | None:
        match self._client.get_instance(self._project, name):
            case Ok(value=instance):
                return instance
            case NotFound():
                log.info("Database instance '{name}' does not exist.", name=name)
                return None
            case Failure(code=code) if code in _ABSENT_CODES:
                log.info("Database instance '{name}' not found.", name=name)
                return None
            case Conflict(message=message) | Failure(message=message):
                raise TransientProviderError(
                    f"Problem looking up database instance '{name}': {message}"
                )

    def find(
        self,
        template: CloudSQLTemplate,
        instance_ids: Iterable[str],
    ) -> list[CloudSQLInstance]:
        """Look up live database instances; ids without one are omitted.

        Raises:
            TransientProviderError: A lookup failed for a reason other than
                404 or 403.
        """
        if not is_prefix_valid(template.instance_name_prefix):
            return []

        found: list[CloudSQLInstance] = []
        for instance_id in instance_ids:
            details = self._lookup(template.decorate(instance_id))
            if details is not None:
                found.append(CloudSQLInstance(template, instance_id, details))
        return found

    def get_instance_state(
        self,
        template: CloudSQLTemplate,
        instance_ids: Iterable[str],
    ) -> dict[str, InstanceState]:
        """Every requested id gets a state; missing instances are UNKNOWN."""
        ids = list(instance_ids)
        if not is_prefix_valid(template.instance_name_prefix):
            return {i: InstanceState(InstanceStatus.UNKNOWN) for i in ids}

        states: dict[str, InstanceState] = {}
        for instance_id in ids:
            details = self._lookup(template.decorate(instance_id))
            if details is None:
                states[instance_id] = InstanceState(InstanceStatus.UNKNOWN)
            else:
                states[instance_id] = InstanceState(from_sql_state(details.get("state")))
        return states

    def delete(
        self,
        template: CloudSQLTemplate,
        instance_ids: Iterable[str],
    ) -> None:
        """Delete database instances by id."""
        if not is_prefix_valid(template.instance_name_prefix):
            return

        accumulator = ConditionAccumulator()
        operations: list[PendingOperation] = []

        for instance_id in instance_ids:
            name = template.decorate(instance_id)
            match self._client.delete_instance(self._project, name):
                case Ok(value=operation):
                    operations.append(operation)
                case NotFound():
                    log.info(
                        "Attempted to delete database instance '{name}', but it does not exist.",
                        name=name,
                    )
                case Conflict():
                    log.info("Database instance '{name}' is already being deleted.", name=name)
                case Failure(message=message):
                    accumulator.add_error(name, message)

        self._poller().wait(operations, RUNNING_OR_DONE_STATES, accumulator)

        if accumulator.has_error():
            raise UnrecoverableProviderError("Problem deleting instances.", accumulator.details())
