"""gcedirector - Provision Google Compute Engine instances from templates.

Example:

    from gcedirector import GCP, GCEInstanceTemplate, GoogleConfig
    from gcedirector.providers.gcp.provider import GoogleComputeProvider

    provider = GoogleComputeProvider.create(GCP(project="my-project"), GoogleConfig.load())
    template = GCEInstanceTemplate.from_config(
        "workers",
        {"image": "centos6", "type": "n1-standard-4", "zone": "us-central1-a"},
    )

    provider.allocate(template, ["a1", "a2", "a3"], min_count=2)
    states = provider.get_instance_state(template, ["a1", "a2", "a3"])
"""

# Status taxonomy
from gcedirector.api import InstanceState, InstanceStatus

# Configuration
from gcedirector.config import GoogleConfig, PollingPolicy, load_config

# Errors
from gcedirector.core import (
    ConfigurationError,
    GceDirectorError,
    TransientProviderError,
    UnrecoverableProviderError,
)

# Logging
from gcedirector.observability import LogConfig, setup_logging, teardown_logging

# Providers
from gcedirector.providers.gcp import GCP, DiskType, GCEInstanceTemplate

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "DiskType",
    "GCEInstanceTemplate",
    "GCP",
    "GceDirectorError",
    "GoogleConfig",
    "InstanceState",
    "InstanceStatus",
    "LogConfig",
    "PollingPolicy",
    "TransientProviderError",
    "UnrecoverableProviderError",
    "load_config",
    "setup_logging",
    "teardown_logging",
]
