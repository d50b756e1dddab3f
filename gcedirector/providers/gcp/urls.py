"""Compute Engine resource URL helpers."""

from __future__ import annotations

from urllib.parse import urlparse

COMPUTE_API_BASE = "https://www.googleapis.com/compute/v1/projects"


def global_url(project: str, *parts: str) -> str:
    return "/".join((COMPUTE_API_BASE, project, "global", *parts))


def regional_url(project: str, region: str, *parts: str) -> str:
    return "/".join((COMPUTE_API_BASE, project, "regions", region, *parts))


def zonal_url(project: str, zone: str, *parts: str) -> str:
    return "/".join((COMPUTE_API_BASE, project, "zones", zone, *parts))


def disk_url(project: str, zone: str, disk_name: str) -> str:
    return zonal_url(project, zone, "disks", disk_name)


def instance_url(project: str, zone: str, instance_name: str) -> str:
    return zonal_url(project, zone, "instances", instance_name)


def machine_type_url(project: str, zone: str, machine_type: str) -> str:
    return zonal_url(project, zone, "machineTypes", machine_type)


def disk_type_url(project: str, zone: str, disk_type: str) -> str:
    return zonal_url(project, zone, "diskTypes", disk_type)


def network_url(project: str, network: str) -> str:
    return global_url(project, "networks", network)


def subnetwork_url(project: str, region: str, subnetwork: str) -> str:
    return regional_url(project, region, "subnetworks", subnetwork)


def local_name(url: str | None) -> str | None:
    """Last path segment of a resource URL ('.../disks/foo' -> 'foo')."""
    if not url:
        return None
    return urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]


def zone_of(url: str | None) -> str | None:
    """Zone segment of a zonal resource URL, or None for non-zonal URLs."""
    if not url:
        return None
    parts = urlparse(url).path.split("/")
    try:
        return parts[parts.index("zones") + 1]
    except (ValueError, IndexError):
        return None


def zone_to_region(zone: str) -> str:
    """Extract region from zone (e.g., 'us-central1-a' -> 'us-central1')."""
    return zone.rsplit("-", 1)[0]
