"""Compute Engine instance templates.

A template is the declarative description of the instances a caller wants;
it is parsed once from string configuration and then treated as immutable.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Final, Literal

from loguru import logger

from gcedirector.core.conditions import ConditionAccumulator
from gcedirector.core.exceptions import ConfigurationError

log = logger.bind(provider="gcp", component="template")

DEFAULT_INSTANCE_NAME_PREFIX: Final = "director"
MAX_PREFIX_LENGTH: Final = 26

PREFIX_MISSING_MSG: Final = "Instance name prefix must be provided."
INVALID_PREFIX_LENGTH_MSG: Final = (
    f"Instance name prefix must be between 1 and {MAX_PREFIX_LENGTH} characters."
)
INVALID_PREFIX_MSG: Final = (
    "Instance name prefix must start with a lowercase letter and contain only "
    "dashes, lowercase letters and digits."
)

_PREFIX_PATTERN = re.compile(r"[a-z][-a-z0-9]*")

type LocalSSDInterface = Literal["SCSI", "NVME"]


class DiskType(StrEnum):
    LOCAL_SSD = "LocalSSD"
    SSD = "SSD"
    STANDARD = "Standard"

    @property
    def api_name(self) -> str:
        match self:
            case DiskType.LOCAL_SSD:
                return "local-ssd"
            case DiskType.SSD:
                return "pd-ssd"
            case _:
                return "pd-standard"

    @property
    def is_local(self) -> bool:
        """Local disks are attached inline and never created separately."""
        return self is DiskType.LOCAL_SSD


@dataclass(frozen=True, slots=True)
class GCEInstanceTemplate:
    """Declarative description of the instances to allocate.

    Args:
        name: Template name, used only for logging.
        image: Image alias from configuration, or a full image URL.
        machine_type: Machine type name (e.g. n1-standard-1).
        zone: Zone to create instances and disks in.
        instance_name_prefix: Prefix of every decorated resource name.
        network_name: VPC network name.
        network_project: Project owning the network. Defaults to the provider project.
        subnetwork_name: Subnetwork in the zone's region, if any.
        assign_external_ips: Whether to add a one-to-one NAT access config.
        instance_tags: Network tags applied to instances.
        boot_disk_type: SSD or Standard.
        boot_disk_size_gb: Boot disk size.
        data_disk_count: Number of data disks per instance.
        data_disk_type: LocalSSD disks are attached inline; SSD and Standard
            disks are created before the instance.
        data_disk_size_gb: Size of persistent data disks. Ignored for LocalSSD.
        local_ssd_interface_type: SCSI or NVME. Only used for LocalSSD.
        use_preemptible_instances: Whether instances are preemptible.
        ssh_username: Login user for the injected SSH key.
        ssh_public_key: Public key material injected into instance metadata.
        tags: User tags, written to instance metadata.
    """

    name: str
    image: str
    machine_type: str
    zone: str
    instance_name_prefix: str = DEFAULT_INSTANCE_NAME_PREFIX
    network_name: str = "default"
    network_project: str | None = None
    subnetwork_name: str | None = None
    assign_external_ips: bool = True
    instance_tags: tuple[str, ...] = ()
    boot_disk_type: DiskType = DiskType.SSD
    boot_disk_size_gb: int = 60
    data_disk_count: int = 2
    data_disk_type: DiskType = DiskType.LOCAL_SSD
    data_disk_size_gb: int = 375
    local_ssd_interface_type: LocalSSDInterface = "SCSI"
    use_preemptible_instances: bool = False
    ssh_username: str | None = None
    ssh_public_key: str | None = None
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_config(
        cls,
        name: str,
        config: Mapping[str, str],
        tags: Mapping[str, str] | None = None,
    ) -> GCEInstanceTemplate:
        """Build a template from string configuration, rejecting malformed values."""
        try:
            image = config["image"]
            machine_type = config["type"]
            zone = config["zone"]
        except KeyError as e:
            raise ConfigurationError(f"Template '{name}' is missing required key {e}") from None

        interface = config.get("localSSDInterfaceType", "SCSI").upper()
        if interface not in ("SCSI", "NVME"):
            raise ConfigurationError(f"Invalid local SSD interface type '{interface}'")

        return cls(
            name=name,
            image=image,
            machine_type=machine_type,
            zone=zone,
            instance_name_prefix=config.get("instanceNamePrefix", DEFAULT_INSTANCE_NAME_PREFIX),
            network_name=config.get("networkName", "default"),
            network_project=config.get("networkProject") or None,
            subnetwork_name=config.get("subnetworkName") or None,
            assign_external_ips=_parse_bool(config, "assignExternalIPs", True),
            instance_tags=tuple(
                t.strip() for t in config.get("instanceTags", "").split(",") if t.strip()
            ),
            boot_disk_type=_parse_disk_type(config, "bootDiskType", DiskType.SSD),
            boot_disk_size_gb=_parse_int(config, "bootDiskSizeGb", 60),
            data_disk_count=_parse_int(config, "dataDiskCount", 2),
            data_disk_type=_parse_disk_type(config, "dataDiskType", DiskType.LOCAL_SSD),
            data_disk_size_gb=_parse_int(config, "dataDiskSizeGb", 375),
            local_ssd_interface_type=interface,  # type: ignore[arg-type]
            use_preemptible_instances=_parse_bool(config, "usePreemptibleInstances", False),
            ssh_username=config.get("sshUsername") or None,
            ssh_public_key=config.get("sshPublicKey") or None,
            tags=MappingProxyType(dict(tags or {})),
        )

    def decorate(self, instance_id: str) -> str:
        return decorate_name(self.instance_name_prefix, instance_id)


def decorate_name(prefix: str, instance_id: str) -> str:
    """Externally visible resource name; stable so re-allocation is idempotent."""
    return f"{prefix}-{instance_id}"


def data_disk_name(decorated_instance_name: str, index: int) -> str:
    return f"{decorated_instance_name}-pd-{index}"


def check_prefix(prefix: str | None, accumulator: ConditionAccumulator) -> None:
    """Record why ``prefix`` could not have produced valid resource names."""
    if prefix is None:
        accumulator.add_error("instanceNamePrefix", PREFIX_MISSING_MSG)
    elif not 1 <= len(prefix) <= MAX_PREFIX_LENGTH:
        accumulator.add_error("instanceNamePrefix", INVALID_PREFIX_LENGTH_MSG)
    elif not _PREFIX_PATTERN.fullmatch(prefix):
        accumulator.add_error("instanceNamePrefix", INVALID_PREFIX_MSG)


def is_prefix_valid(prefix: str | None) -> bool:
    accumulator = ConditionAccumulator()
    check_prefix(prefix, accumulator)
    if accumulator.has_error():
        log.info("Instance name prefix '{prefix}' is invalid.", prefix=prefix)
        return False
    return True


# =============================================================================
# Parsing helpers
# =============================================================================


def _parse_int(config: Mapping[str, str], key: str, default: int) -> int:
    raw = config.get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"'{key}' must be an integer: '{raw}'.") from None


def _parse_bool(config: Mapping[str, str], key: str, default: bool) -> bool:
    raw = config.get(key)
    if raw is None:
        return default
    match raw.strip().lower():
        case "true":
            return True
        case "false":
            return False
        case _:
            raise ConfigurationError(f"'{key}' must be true or false: '{raw}'.")


def _parse_disk_type(config: Mapping[str, str], key: str, default: DiskType) -> DiskType:
    raw = config.get(key)
    if raw is None:
        return default
    try:
        return DiskType(raw)
    except ValueError:
        options = ", ".join(t.value for t in DiskType)
        raise ConfigurationError(
            f"Invalid {key} '{raw}'. Available options: {options}"
        ) from None
