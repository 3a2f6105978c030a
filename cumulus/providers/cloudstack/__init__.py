"""CloudStack provider for Cumulus.

Example:
    from cumulus.providers.cloudstack import CloudStack

    vms = CloudStack(endpoint="https://cloud.example.com/client/api", region="zone-1").create_provider()
    for vm in vms.list_virtual_machines():
        print(vm.id, vm.state)
"""

from cumulus.providers.cloudstack.config import CloudStack, CloudStackContext, CloudStackVersion
from cumulus.providers.cloudstack.provider import VirtualMachines

__all__ = [
    "CloudStack",
    "CloudStackContext",
    "CloudStackVersion",
    "VirtualMachines",
]
