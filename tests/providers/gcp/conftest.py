"""In-memory Compute Engine and Cloud SQL for provider and poller tests.

The fakes keep resources in dicts, hand out operations that report RUNNING
on their first poll and DONE afterwards, and record every request in
``events`` so tests can assert ordering.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace
from typing import Any

import pytest
from google.cloud import compute_v1

from gcedirector.config import GoogleConfig, PollingPolicy
from gcedirector.providers.gcp.config import GCP
from gcedirector.providers.gcp.provider import GoogleComputeProvider
from gcedirector.providers.gcp.sql import CloudSQLTemplate, GoogleCloudSQLProvider
from gcedirector.providers.gcp.template import GCEInstanceTemplate
from gcedirector.providers.gcp.types import (
    Conflict,
    NotFound,
    Ok,
    OperationError,
    PendingOperation,
    Result,
)
from gcedirector.providers.gcp.urls import disk_url, instance_url, local_name

PROJECT = "test-project"
ZONE = "us-central1-a"


@dataclass
class _Operation:
    snapshot: PendingOperation
    polls: int = 0
    on_done: Any = None


@dataclass
class _FakeOperations:
    # (method, resource name) -> result returned instead of the default behaviour
    forced: dict[tuple[str, str], Result[Any]] = field(default_factory=dict)
    # (operation type, resource name) -> errors the operation finishes with
    operation_errors: dict[tuple[str, str], tuple[OperationError, ...]] = field(default_factory=dict)
    # resource names whose operations never leave RUNNING
    stuck: set[str] = field(default_factory=set)
    events: list[tuple[str, str]] = field(default_factory=list)
    _operations: dict[str, _Operation] = field(default_factory=dict)
    _ids: itertools.count = field(default_factory=itertools.count)

    def calls(self, method: str) -> list[str]:
        return [name for m, name in self.events if m == method]

    def _operation(self, op_type: str, zone: str, target_link: str, on_done: Any) -> Ok[PendingOperation]:
        snapshot = PendingOperation(
            name=f"operation-{next(self._ids)}",
            zone=zone,
            target_link=target_link,
            operation_type=op_type,
        )
        self._operations[snapshot.name] = _Operation(snapshot, on_done=on_done)
        return Ok(snapshot)

    def _poll(self, name: str) -> Result[PendingOperation]:
        operation = self._operations[name]
        operation.polls += 1
        target = operation.snapshot.target_name

        if target in self.stuck or operation.polls == 1:
            return Ok(replace(operation.snapshot, status="RUNNING"))

        if operation.snapshot.status != "DONE":
            errors = self.operation_errors.get((operation.snapshot.operation_type, target), ())
            if not errors and operation.on_done is not None:
                operation.on_done()
            operation.snapshot = replace(operation.snapshot, status="DONE", errors=errors)
            self.events.append(("done", target))
        return Ok(operation.snapshot)


@dataclass
class FakeComputeClient(_FakeOperations):
    instances: dict[str, compute_v1.Instance] = field(default_factory=dict)
    disks: dict[str, compute_v1.Disk] = field(default_factory=dict)

    # -- ComputeClient --------------------------------------------------------

    def insert_disk(self, project: str, zone: str, disk: compute_v1.Disk) -> Result[PendingOperation]:
        self.events.append(("insert_disk", disk.name))
        if forced := self.forced.get(("insert_disk", disk.name)):
            return forced
        if disk.name in self.disks:
            return Conflict(f"The resource '{disk.name}' already exists")

        def create() -> None:
            self.disks[disk.name] = disk

        return self._operation("insert", zone, disk_url(project, zone, disk.name), create)

    def get_disk(self, project: str, zone: str, name: str) -> Result[compute_v1.Disk]:
        self.events.append(("get_disk", name))
        if forced := self.forced.get(("get_disk", name)):
            return forced
        if name not in self.disks:
            return NotFound(f"The resource '{name}' was not found")
        return Ok(self.disks[name])

    def delete_disk(self, project: str, zone: str, name: str) -> Result[PendingOperation]:
        self.events.append(("delete_disk", name))
        if forced := self.forced.get(("delete_disk", name)):
            return forced
        if name not in self.disks:
            return NotFound(f"The resource '{name}' was not found")

        def remove() -> None:
            self.disks.pop(name, None)

        return self._operation("delete", zone, disk_url(project, zone, name), remove)

    def insert_instance(
        self, project: str, zone: str, instance: compute_v1.Instance,
    ) -> Result[PendingOperation]:
        name = instance.name
        self.events.append(("insert_instance", name))
        if forced := self.forced.get(("insert_instance", name)):
            return forced
        if name in self.instances:
            return Conflict(f"The resource '{name}' already exists")

        def create() -> None:
            # the boot disk is named after the instance once it exists
            requested = next(d for d in instance.disks if d.boot)
            boot = compute_v1.AttachedDisk(
                boot=True,
                auto_delete=requested.auto_delete,
                source=disk_url(project, zone, name),
                initialize_params=requested.initialize_params,
            )
            instance.disks = [boot, *(d for d in instance.disks if not d.boot)]
            self.disks[name] = compute_v1.Disk(
                name=name, source_image=requested.initialize_params.source_image,
            )
            instance.status = "RUNNING"
            self.instances[name] = instance

        return self._operation("insert", zone, instance_url(project, zone, name), create)

    def get_instance(self, project: str, zone: str, name: str) -> Result[compute_v1.Instance]:
        self.events.append(("get_instance", name))
        if forced := self.forced.get(("get_instance", name)):
            return forced
        if name not in self.instances:
            return NotFound(f"The resource '{name}' was not found")
        return Ok(self.instances[name])

    def delete_instance(self, project: str, zone: str, name: str) -> Result[PendingOperation]:
        self.events.append(("delete_instance", name))
        if forced := self.forced.get(("delete_instance", name)):
            return forced
        if name not in self.instances:
            return NotFound(f"The resource '{name}' was not found")

        def remove() -> None:
            instance = self.instances.pop(name)
            for attached in instance.disks:
                if attached.auto_delete and attached.source:
                    self.disks.pop(local_name(attached.source), None)

        return self._operation("delete", zone, instance_url(project, zone, name), remove)

    def get_zone_operation(self, project: str, zone: str, name: str) -> Result[PendingOperation]:
        self.events.append(("get_zone_operation", name))
        if forced := self.forced.get(("get_zone_operation", name)):
            return forced
        return self._poll(name)

    def get_operation(self, project: str, operation: PendingOperation) -> Result[PendingOperation]:
        return self.get_zone_operation(project, operation.zone, operation.name)


SQL_IP = "203.0.113.10"


@dataclass
class FakeCloudSQLClient(_FakeOperations):
    instances: dict[str, dict[str, Any]] = field(default_factory=dict)
    # instance name -> user name -> password
    users: dict[str, dict[str, str]] = field(default_factory=dict)

    @staticmethod
    def _link(project: str, name: str) -> str:
        return f"https://sqladmin.googleapis.com/sql/v1beta4/projects/{project}/instances/{name}"

    # -- CloudSQLClient -------------------------------------------------------

    def insert_instance(self, project: str, body: dict[str, Any]) -> Result[PendingOperation]:
        name = body["name"]
        self.events.append(("insert_instance", name))
        if forced := self.forced.get(("insert_instance", name)):
            return forced
        if name in self.instances:
            return Conflict(f"The Cloud SQL instance '{name}' already exists.")

        def create() -> None:
            self.instances[name] = {
                **body,
                "state": "RUNNABLE",
                "ipAddresses": [{"type": "PRIMARY", "ipAddress": SQL_IP}],
            }
            self.users[name] = {}

        return self._operation("CREATE", "", self._link(project, name), create)

    def get_instance(self, project: str, name: str) -> Result[dict[str, Any]]:
        self.events.append(("get_instance", name))
        if forced := self.forced.get(("get_instance", name)):
            return forced
        if name not in self.instances:
            return NotFound(f"The Cloud SQL instance '{name}' does not exist.")
        return Ok(self.instances[name])

    def delete_instance(self, project: str, name: str) -> Result[PendingOperation]:
        self.events.append(("delete_instance", name))
        if forced := self.forced.get(("delete_instance", name)):
            return forced
        if name not in self.instances:
            return NotFound(f"The Cloud SQL instance '{name}' does not exist.")

        def remove() -> None:
            self.instances.pop(name, None)
            self.users.pop(name, None)

        return self._operation("DELETE", "", self._link(project, name), remove)

    def insert_user(
        self, project: str, instance: str, body: dict[str, Any],
    ) -> Result[PendingOperation]:
        self.events.append(("insert_user", instance))
        if forced := self.forced.get(("insert_user", instance)):
            return forced
        if instance not in self.instances:
            return NotFound(f"The Cloud SQL instance '{instance}' does not exist.")
        if body["name"] in self.users[instance]:
            return Conflict(f"User '{body['name']}' already exists.")

        def create() -> None:
            self.users[instance][body["name"]] = body["password"]

        return self._operation("CREATE_USER", "", self._link(project, instance), create)

    def get_operation(self, project: str, operation: PendingOperation) -> Result[PendingOperation]:
        self.events.append(("get_operation", operation.name))
        if forced := self.forced.get(("get_operation", operation.name)):
            return forced
        return self._poll(operation.name)


@dataclass
class SleepRecorder:
    sleeps: list[float] = field(default_factory=list)

    def __call__(self, seconds: float) -> None:
        self.sleeps.append(seconds)


@pytest.fixture
def fake_client() -> FakeComputeClient:
    return FakeComputeClient()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def google_config() -> GoogleConfig:
    return GoogleConfig.from_raw({
        "compute": {"polling_timeout_seconds": 30, "max_polling_interval_seconds": 8},
    })


@pytest.fixture
def polling() -> PollingPolicy:
    return PollingPolicy(timeout_seconds=30, max_interval_seconds=8)


@pytest.fixture
def provider(
    fake_client: FakeComputeClient, google_config: GoogleConfig, sleep: SleepRecorder,
) -> GoogleComputeProvider:
    return GoogleComputeProvider(
        GCP(project=PROJECT), fake_client, google_config, PROJECT, sleep=sleep,
    )


def _template(**overrides: Any) -> GCEInstanceTemplate:
    fields: dict[str, Any] = {
        "name": "workers",
        "image": "centos6",
        "machine_type": "n1-standard-1",
        "zone": ZONE,
        "data_disk_count": 0,
    }
    fields.update(overrides)
    return GCEInstanceTemplate(**fields)


@pytest.fixture
def make_template():
    return _template


@pytest.fixture
def fake_sql() -> FakeCloudSQLClient:
    return FakeCloudSQLClient()


@pytest.fixture
def sql_provider(
    fake_sql: FakeCloudSQLClient, google_config: GoogleConfig, sleep: SleepRecorder,
) -> GoogleCloudSQLProvider:
    return GoogleCloudSQLProvider(
        GCP(project=PROJECT), fake_sql, google_config, PROJECT, sleep=sleep,
    )


def _sql_template(**overrides: Any) -> CloudSQLTemplate:
    fields: dict[str, Any] = {
        "name": "metastore",
        "master_username": "admin",
        "master_user_password": "s3cret",
    }
    fields.update(overrides)
    return CloudSQLTemplate(**fields)


@pytest.fixture
def make_sql_template():
    return _sql_template
