"""Cloud providers for Cumulus."""

from cumulus.providers.cloudstack import CloudStack

__all__ = [
    "CloudStack",
]
