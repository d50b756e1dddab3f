"""Cloud providers for gcedirector."""

from gcedirector.providers.gcp import GCP

__all__ = [
    "GCP",
]
