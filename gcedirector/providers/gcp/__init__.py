"""Google Cloud providers for gcedirector.

Allocates Compute Engine instances (and their persistent data disks) from
a GCEInstanceTemplate, and Cloud SQL database instances from a
CloudSQLTemplate, with rollback when fewer than a minimum come up.

NOTE: Only config and template classes are imported at package level.
For the provider implementations, import explicitly:

    from gcedirector.providers.gcp.provider import GoogleComputeProvider
    from gcedirector.providers.gcp.sql import GoogleCloudSQLProvider

Environment Variables:
    GOOGLE_CLOUD_PROJECT: GCP project ID (required if not passed directly)
    GOOGLE_APPLICATION_CREDENTIALS: Path to service account key (optional)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .provider import GoogleComputeProvider
    from .sql import CloudSQLTemplate, GoogleCloudSQLProvider

from .config import GCP
from .template import DiskType, GCEInstanceTemplate

__all__ = [
    "GCP",
    "CloudSQLTemplate",
    "DiskType",
    "GCEInstanceTemplate",
    "GoogleCloudSQLProvider",
    "GoogleComputeProvider",
]


def __getattr__(name: str):
    if name == "GoogleComputeProvider":
        from .provider import GoogleComputeProvider

        return GoogleComputeProvider
    if name in ("CloudSQLTemplate", "GoogleCloudSQLProvider"):
        from . import sql

        return getattr(sql, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
