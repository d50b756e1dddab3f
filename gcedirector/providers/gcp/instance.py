"""Discovered Compute Engine instances and their display properties."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Final

from loguru import logger

from .urls import local_name

if TYPE_CHECKING:
    from .template import GCEInstanceTemplate

log = logger.bind(provider="gcp", component="instance")

type PropertyGetter = Callable[[Any, Any | None], str | None]


def _first_interface(instance: Any) -> Any | None:
    interfaces = getattr(instance, "network_interfaces", None)
    return interfaces[0] if interfaces else None


def _image_id(instance: Any, boot_disk: Any | None) -> str | None:
    if boot_disk is None:
        return None
    return local_name(getattr(boot_disk, "source_image", None))


def _instance_id(instance: Any, boot_disk: Any | None) -> str | None:
    return instance.name or None


def _instance_type(instance: Any, boot_disk: Any | None) -> str | None:
    return local_name(instance.machine_type)


def _launch_time(instance: Any, boot_disk: Any | None) -> str | None:
    raw = getattr(instance, "creation_timestamp", None)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw).isoformat()
    except ValueError as e:
        log.info(
            "Problem parsing creation timestamp '{raw}' of instance '{name}': {err}",
            raw=raw, name=instance.name, err=e,
        )
        return None


def _private_ip_address(instance: Any, boot_disk: Any | None) -> str | None:
    interface = _first_interface(instance)
    if interface is None:
        return None
    return getattr(interface, "network_i_p", None) or None


def _public_ip_address(instance: Any, boot_disk: Any | None) -> str | None:
    interface = _first_interface(instance)
    if interface is None:
        return None
    access_configs = getattr(interface, "access_configs", None)
    if not access_configs:
        return None
    return getattr(access_configs[0], "nat_i_p", None) or None


DISPLAY_PROPERTIES: Final[dict[str, PropertyGetter]] = {
    "imageId": _image_id,
    "instanceId": _instance_id,
    "instanceType": _instance_type,
    "launchTime": _launch_time,
    "privateIpAddress": _private_ip_address,
    "publicIpAddress": _public_ip_address,
}


@dataclass(frozen=True, slots=True)
class GoogleComputeInstance:
    """A live instance found for one of the caller's instance ids.

    Attributes:
        template: Template the instance was looked up with.
        instance_id: Caller-side id (undecorated).
        details: The compute_v1 Instance as returned by the API.
        boot_disk: The compute_v1 Disk backing the boot disk, when it could be read.
    """

    template: GCEInstanceTemplate
    instance_id: str
    details: Any
    boot_disk: Any | None = None

    @property
    def private_ip(self) -> str | None:
        return _private_ip_address(self.details, self.boot_disk)

    @property
    def public_ip(self) -> str | None:
        return _public_ip_address(self.details, self.boot_disk)

    def properties(self) -> dict[str, str | None]:
        return {key: getter(self.details, self.boot_disk) for key, getter in DISPLAY_PROPERTIES.items()}
