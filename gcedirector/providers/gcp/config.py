"""GCP provider configuration.

Immutable configuration dataclass for the Compute Engine provider.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from loguru import logger

from gcedirector.core.exceptions import ConfigurationError

log = logger.bind(provider="gcp")


@dataclass(frozen=True, slots=True)
class GCP:
    """Compute Engine provider configuration.

    The project is auto-detected from the GOOGLE_CLOUD_PROJECT environment
    variable or Application Default Credentials if not specified.

    Example:
        >>> from gcedirector.providers.gcp import GCP
        >>> config = GCP(project="my-project")

    Args:
        project: GCP project ID. Auto-detected from env or ADC.
    """

    project: str | None = None

    def resolve_project(self) -> str:
        return _resolve_project(self.project)


def _resolve_project(explicit: str | None) -> str:
    """Resolve GCP project: explicit > env > ADC."""
    if explicit:
        return explicit

    if env_project := os.environ.get("GOOGLE_CLOUD_PROJECT"):
        return env_project

    if env_project := os.environ.get("GCLOUD_PROJECT"):
        return env_project

    import google.auth
    from google.auth.exceptions import DefaultCredentialsError

    try:
        _, project = google.auth.default()
    except DefaultCredentialsError as e:
        log.debug("Application Default Credentials unavailable: {err}", err=e)
    else:
        if project:
            return project

    raise ConfigurationError(
        "No GCP project found. Set GOOGLE_CLOUD_PROJECT env var, "
        "pass project= to GCP(), or configure Application Default Credentials."
    )
