"""Compute Engine provider for gcedirector.

Allocates instances (and the persistent disks they reference) from a
GCEInstanceTemplate, rolls back everything it created when fewer than the
requested minimum come up, and answers find/state/delete queries by
decorated instance name.

Every call runs on the caller's thread: requests are issued one by one and
the OperationPoller blocks between sweeps.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING, Any

from loguru import logger

from gcedirector.api.model import InstanceState, InstanceStatus, from_gce_status
from gcedirector.config import GoogleConfig
from gcedirector.core.conditions import ConditionAccumulator
from gcedirector.core.exceptions import (
    ConfigurationError,
    TransientProviderError,
    UnrecoverableProviderError,
)

from .client import ComputeClient, GoogleComputeClient
from .config import GCP
from .instance import GoogleComputeInstance
from .operations import DONE_STATE, RUNNING_OR_DONE_STATES, OperationPoller
from .template import (
    DiskType,
    GCEInstanceTemplate,
    check_prefix,
    data_disk_name,
    is_prefix_valid,
)
from .types import Conflict, Failure, NotFound, Ok, PendingOperation
from .urls import (
    disk_type_url,
    disk_url,
    local_name,
    machine_type_url,
    network_url,
    subnetwork_url,
    zone_of,
    zone_to_region,
)

if TYPE_CHECKING:
    from google.cloud import compute_v1

log = logger.bind(provider="gcp", component="provider")

MAX_LOCAL_SSD_COUNT = 4


class GoogleComputeProvider:
    """Stateless Compute Engine provider. Holds only immutable config + a client."""

    def __init__(
        self,
        config: GCP,
        client: ComputeClient,
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
    ) -> GoogleComputeProvider:
        project = config.resolve_project()
        log.info("Resolved GCP project: {project}", project=project)

        return cls(
            config=config,
            client=GoogleComputeClient.create(),
            google_config=google_config or GoogleConfig.load(),
            project=project,
        )

    @property
    def project(self) -> str:
        return self._project

    def _poller(self) -> OperationPoller:
        return OperationPoller(
            self._client, self._project, self._google_config.polling, sleep=self._sleep,
        )

    # =========================================================================
    # Allocation
    # =========================================================================

    def allocate(
        self,
        template: GCEInstanceTemplate,
        instance_ids: Iterable[str],
        min_count: int,
    ) -> None:
        """Create one instance per id, rolling everything back below ``min_count``.

        Raises:
            ValueError: ``instance_ids`` is empty or ``min_count`` is out of range.
            ConfigurationError: Invalid prefix, unknown image alias or disk layout.
            UnrecoverableProviderError: Fewer than ``min_count`` instances exist
                after the batch. Everything created by this call was torn down.
        """
        ids = list(dict.fromkeys(instance_ids))
        if not ids:
            raise ValueError("instance_ids must not be empty")
        if not 0 <= min_count <= len(ids):
            raise ValueError(f"min_count must be between 0 and {len(ids)}: {min_count}")

        self._check_template(template)
        source_image = self._resolve_image(template.image)

        accumulator = ConditionAccumulator()
        poller = self._poller()
        instance_ops: list[PendingOperation] = []
        disk_ops: list[PendingOperation] = []
        pre_existing = 0

        log.info(
            "Allocating {n} instances from template '{template}' (min_count={min_count})",
            n=len(ids), template=template.name, min_count=min_count,
        )

        for instance_id in ids:
            name = template.decorate(instance_id)
            instance_log = log.bind(zone=template.zone, instance=name)

            if not self._create_data_disks(template, name, poller, disk_ops, accumulator):
                instance_log.warning("Skipping instance: data disks unavailable")
                continue

            instance = self._build_instance(template, name, source_image)
            match self._client.insert_instance(self._project, template.zone, instance):
                case Ok(value=operation):
                    instance_ops.append(operation)
                case Conflict():
                    instance_log.info("Instance '{name}' already exists.", name=name)
                    pre_existing += 1
                case NotFound(message=message) | Failure(message=message):
                    accumulator.add_error(name, message)

        succeeded = poller.wait(instance_ops, DONE_STATE, accumulator)
        success_count = len(succeeded) + pre_existing

        if success_count < min_count:
            log.error(
                "Only {n} of the {total} instances were created, below the minimum of {min_count}. "
                "Tearing down.",
                n=success_count, total=len(ids), min_count=min_count,
            )
            self._tear_down(instance_ops, disk_ops, accumulator)
            raise UnrecoverableProviderError("Problem allocating instances.", accumulator.details())

        if success_count < len(ids):
            log.warning(
                "Allocated {n} of the {total} requested instances (min_count={min_count})",
                n=success_count, total=len(ids), min_count=min_count,
            )
            for condition in accumulator.conditions():
                log.warning("{condition}", condition=condition)
            return

        log.info("Allocated {n} instances", n=success_count)

    def _check_template(self, template: GCEInstanceTemplate) -> None:
        accumulator = ConditionAccumulator()
        check_prefix(template.instance_name_prefix, accumulator)
        if accumulator.has_error():
            raise ConfigurationError("; ".join(c.message for c in accumulator.conditions()))

        if template.data_disk_count < 0:
            raise ConfigurationError(
                f"Invalid number of data disks: '{template.data_disk_count}'."
            )
        if template.data_disk_type.is_local and template.data_disk_count > MAX_LOCAL_SSD_COUNT:
            raise ConfigurationError(
                f"Invalid number of local SSD drives: '{template.data_disk_count}'. "
                f"Must be between 0 and {MAX_LOCAL_SSD_COUNT} inclusive."
            )
        if template.boot_disk_type.is_local:
            raise ConfigurationError("Boot disk type must be SSD or Standard.")

    def _resolve_image(self, image: str) -> str:
        if image.startswith("https://"):
            return image
        try:
            return self._google_config.image_aliases[image]
        except KeyError:
            raise ConfigurationError(f"Image for alias '{image}' not found.") from None

    def _create_data_disks(
        self,
        template: GCEInstanceTemplate,
        instance_name: str,
        poller: OperationPoller,
        disk_ops: list[PendingOperation],
        accumulator: ConditionAccumulator,
    ) -> bool:
        """Create the persistent data disks of one instance and wait for them.

        Returns whether every disk now exists, either created here or found
        already present. Local SSDs are attached inline and need no request.
        """
        if template.data_disk_type.is_local or template.data_disk_count == 0:
            return True

        operations: list[PendingOperation] = []
        pre_existing = 0

        for i in range(template.data_disk_count):
            disk = self._build_data_disk(template, data_disk_name(instance_name, i))
            match self._client.insert_disk(self._project, template.zone, disk):
                case Ok(value=operation):
                    operations.append(operation)
                case Conflict():
                    log.info("Disk '{name}' already exists.", name=disk.name)
                    pre_existing += 1
                case NotFound(message=message) | Failure(message=message):
                    accumulator.add_error(disk.name, message)

        disk_ops.extend(operations)
        succeeded = poller.wait(operations, DONE_STATE, accumulator)
        return len(succeeded) + pre_existing == template.data_disk_count

    def _build_data_disk(self, template: GCEInstanceTemplate, name: str) -> compute_v1.Disk:
        from google.cloud import compute_v1

        return compute_v1.Disk(
            name=name,
            size_gb=template.data_disk_size_gb,
            type_=disk_type_url(self._project, template.zone, template.data_disk_type.api_name),
        )

    def _build_instance(
        self,
        template: GCEInstanceTemplate,
        name: str,
        source_image: str,
    ) -> compute_v1.Instance:
        from google.cloud import compute_v1

        zone = template.zone
        disks = [
            compute_v1.AttachedDisk(
                boot=True,
                auto_delete=True,
                initialize_params=compute_v1.AttachedDiskInitializeParams(
                    source_image=source_image,
                    disk_size_gb=template.boot_disk_size_gb,
                    disk_type=disk_type_url(self._project, zone, template.boot_disk_type.api_name),
                ),
            ),
        ]

        for i in range(template.data_disk_count):
            if template.data_disk_type.is_local:
                disks.append(
                    compute_v1.AttachedDisk(
                        type_="SCRATCH",
                        interface=template.local_ssd_interface_type,
                        auto_delete=True,
                        initialize_params=compute_v1.AttachedDiskInitializeParams(
                            disk_type=disk_type_url(self._project, zone, DiskType.LOCAL_SSD.api_name),
                        ),
                    ),
                )
            else:
                disks.append(
                    compute_v1.AttachedDisk(
                        type_="PERSISTENT",
                        auto_delete=True,
                        source=disk_url(self._project, zone, data_disk_name(name, i)),
                    ),
                )

        network_interface = compute_v1.NetworkInterface(
            network=network_url(
                template.network_project or self._project, template.network_name,
            ),
        )
        if template.subnetwork_name:
            network_interface.subnetwork = subnetwork_url(
                template.network_project or self._project,
                zone_to_region(zone),
                template.subnetwork_name,
            )
        if template.assign_external_ips:
            network_interface.access_configs = [
                compute_v1.AccessConfig(name="External NAT", type_="ONE_TO_ONE_NAT"),
            ]

        instance = compute_v1.Instance(
            name=name,
            machine_type=machine_type_url(self._project, zone, template.machine_type),
            disks=disks,
            network_interfaces=[network_interface],
            metadata=compute_v1.Metadata(items=self._metadata_items(template, name)),
        )
        if template.instance_tags:
            instance.tags = compute_v1.Tags(items=list(template.instance_tags))
        if template.use_preemptible_instances:
            instance.scheduling = compute_v1.Scheduling(preemptible=True)
        return instance

    def _metadata_items(self, template: GCEInstanceTemplate, name: str) -> list[Any]:
        from google.cloud import compute_v1

        items = []
        if template.ssh_username and template.ssh_public_key:
            items.append(
                compute_v1.Items(
                    key="ssh-keys",
                    value=f"{template.ssh_username}:{template.ssh_public_key}",
                ),
            )
        else:
            log.info(
                "SSH credentials not set on instance '{name}' because either "
                "the username or the public key was not provided.",
                name=name,
            )

        items.extend(compute_v1.Items(key=k, value=v) for k, v in template.tags.items())
        items.append(compute_v1.Items(key="created-by", value=self._google_config.provenance_tag()))
        return items

    # =========================================================================
    # Compensation
    # =========================================================================

    def _tear_down(
        self,
        instance_ops: Sequence[PendingOperation],
        disk_ops: Sequence[PendingOperation],
        accumulator: ConditionAccumulator,
    ) -> None:
        """Delete every instance and disk created by a failed allocation.

        Disks still attached to an instance are deleted along with it
        (auto_delete), so they are dropped from the explicit delete list.
        """
        disks_by_url: dict[str, PendingOperation] = {op.target_link: op for op in disk_ops}
        pruning_complete = True

        for operation in instance_ops:
            if not disks_by_url:
                break
            zone, name = operation.zone, operation.target_name
            match self._client.get_instance(self._project, zone, name):
                case Ok(value=instance):
                    for attached in instance.disks:
                        if disks_by_url.pop(attached.source, None) is not None:
                            log.bind(zone=zone, instance=name).debug(
                                "Disk '{disk}' is attached and goes with the instance",
                                disk=local_name(attached.source),
                            )
                case NotFound():
                    pass
                case Conflict(message=message) | Failure(message=message):
                    accumulator.add_error(name, message)
                    pruning_complete = False

        teardown_ops: list[PendingOperation] = []

        for operation in instance_ops:
            name = operation.target_name
            match self._client.delete_instance(self._project, operation.zone, name):
                case Ok(value=delete_op):
                    teardown_ops.append(delete_op)
                case NotFound():
                    log.bind(zone=operation.zone, instance=name).debug("Instance was never created")
                case Conflict(message=message) | Failure(message=message):
                    accumulator.add_error(name, message)

        if not pruning_complete:
            log.warning(
                "Leaving {n} disks in place: attached disks could not be determined",
                n=len(disks_by_url),
            )
            disks_by_url.clear()

        for url, operation in disks_by_url.items():
            name = local_name(url) or url
            zone = zone_of(url) or operation.zone
            match self._client.delete_disk(self._project, zone, name):
                case Ok(value=delete_op):
                    teardown_ops.append(delete_op)
                case NotFound():
                    log.debug("Disk '{name}' was never created", name=name)
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

    def find(
        self,
        template: GCEInstanceTemplate,
        instance_ids: Iterable[str],
    ) -> list[GoogleComputeInstance]:
        """Look up live instances; ids without an instance are omitted.

        Raises:
            TransientProviderError: A lookup failed for a reason other than 404.
        """
        if not is_prefix_valid(template.instance_name_prefix):
            return []

        found: list[GoogleComputeInstance] = []
        for instance_id in instance_ids:
            name = template.decorate(instance_id)
            match self._client.get_instance(self._project, template.zone, name):
                case Ok(value=instance):
                    found.append(
                        GoogleComputeInstance(
                            template=template,
                            instance_id=instance_id,
                            details=instance,
                            boot_disk=self._find_boot_disk(template.zone, instance),
                        ),
                    )
                case NotFound():
                    log.info("Instance '{name}' not found.", name=name)
                case Conflict(message=message) | Failure(message=message):
                    raise TransientProviderError(
                        f"Problem looking up instance '{name}': {message}"
                    )
        return found

    def _find_boot_disk(self, zone: str, instance: Any) -> Any | None:
        source = next((d.source for d in instance.disks if d.boot), None)
        if not source:
            return None
        name = local_name(source) or source
        match self._client.get_disk(self._project, zone_of(source) or zone, name):
            case Ok(value=disk):
                return disk
            case NotFound():
                log.info("Boot disk '{name}' not found.", name=name)
                return None
            case Conflict(message=message) | Failure(message=message):
                raise TransientProviderError(f"Problem looking up disk '{name}': {message}")

    def get_instance_state(
        self,
        template: GCEInstanceTemplate,
        instance_ids: Iterable[str],
    ) -> dict[str, InstanceState]:
        """Every requested id gets a state; missing instances are UNKNOWN."""
        ids = list(instance_ids)
        if not is_prefix_valid(template.instance_name_prefix):
            return {i: InstanceState(InstanceStatus.UNKNOWN) for i in ids}

        states: dict[str, InstanceState] = {}
        for instance_id in ids:
            name = template.decorate(instance_id)
            match self._client.get_instance(self._project, template.zone, name):
                case Ok(value=instance):
                    states[instance_id] = InstanceState(from_gce_status(instance.status))
                case NotFound():
                    log.info("Instance '{name}' not found.", name=name)
                    states[instance_id] = InstanceState(InstanceStatus.UNKNOWN)
                case Conflict(message=message) | Failure(message=message):
                    raise TransientProviderError(
                        f"Problem looking up instance '{name}': {message}"
                    )
        return states

    def delete(
        self,
        template: GCEInstanceTemplate,
        instance_ids: Iterable[str],
    ) -> None:
        """Delete instances by id. Persistent data disks go with them."""
        if not is_prefix_valid(template.instance_name_prefix):
            return

        accumulator = ConditionAccumulator()
        operations: list[PendingOperation] = []

        for instance_id in instance_ids:
            name = template.decorate(instance_id)
            match self._client.delete_instance(self._project, template.zone, name):
                case Ok(value=operation):
                    operations.append(operation)
                case NotFound():
                    log.info(
                        "Attempted to delete instance '{name}', but it does not exist.",
                        name=name,
                    )
                case Conflict():
                    log.info("Instance '{name}' is already being deleted.", name=name)
                case Failure(message=message):
                    accumulator.add_error(name, message)

        self._poller().wait(operations, RUNNING_OR_DONE_STATES, accumulator)

        if accumulator.has_error():
            raise UnrecoverableProviderError("Problem deleting instances.", accumulator.details())
