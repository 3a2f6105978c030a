"""Type definitions for cumulus."""

from cumulus.types.instance import (
    Architecture,
    Platform,
    VirtualMachineRecord,
    VmState,
    VmStatistics,
)
from cumulus.types.product import (
    NOMINAL_DISK_GB,
    ProductOffering,
)
from cumulus.types.protocols import (
    CapabilityQueries,
    Clock,
    DataCenter,
    Document,
    FirewallService,
    JobWaiter,
    NetworkService,
    Region,
    RegionDirectory,
    Transport,
)

__all__ = [
    "Architecture",
    "CapabilityQueries",
    "Clock",
    "DataCenter",
    "Document",
    "FirewallService",
    "JobWaiter",
    "NOMINAL_DISK_GB",
    "NetworkService",
    "Platform",
    "ProductOffering",
    "Region",
    "RegionDirectory",
    "Transport",
    "VirtualMachineRecord",
    "VmState",
    "VmStatistics",
]
