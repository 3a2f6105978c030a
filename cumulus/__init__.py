"""Cumulus - virtual machine lifecycle on CloudStack-style clouds.

Example:

    from cumulus import CloudStack

    vms = CloudStack(endpoint=url, region="zone-1").create_provider()
    small = vms.get_product("small")
    vm = vms.launch("tpl-1", small, name="web", tags={"role": "web"})
"""

# Configuration
from cumulus.config import load_config, resolve_endpoint

# Exceptions
from cumulus.core.exceptions import (
    ConfigurationError,
    CumulusError,
    InstanceNotFoundError,
    InstanceParseError,
    JobFailedError,
    NoViableNetworkError,
    OperationCancelledError,
    OperationNotSupportedError,
    ProvisioningError,
)
from cumulus.infra.http import ProviderError

# Logging
from cumulus.logging import LogConfig, setup_logging, teardown_logging

# Providers
from cumulus.providers.cloudstack import CloudStack, CloudStackContext, VirtualMachines

# Types
from cumulus.types import (
    Architecture,
    Platform,
    ProductOffering,
    VirtualMachineRecord,
    VmState,
    VmStatistics,
)

__all__ = [
    "Architecture",
    "CloudStack",
    "CloudStackContext",
    "ConfigurationError",
    "CumulusError",
    "InstanceNotFoundError",
    "InstanceParseError",
    "JobFailedError",
    "LogConfig",
    "NoViableNetworkError",
    "OperationCancelledError",
    "OperationNotSupportedError",
    "Platform",
    "ProductOffering",
    "ProviderError",
    "ProvisioningError",
    "VirtualMachineRecord",
    "VirtualMachines",
    "VmState",
    "VmStatistics",
    "load_config",
    "resolve_endpoint",
    "setup_logging",
    "teardown_logging",
]
