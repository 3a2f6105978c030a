"""Zone-backed placement services.

CloudStack has no separate region/datacenter hierarchy: every zone is
exposed as a region owning exactly one datacenter of the same id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final
from xml.etree.ElementTree import Element

from loguru import logger

from cumulus.infra.http import ProviderError
from cumulus.providers.cloudstack.client import LIST_NETWORKS, CloudStackClient
from cumulus.types.protocols import DataCenter, Region

# Status codes meaning "credentials valid for another service, not this one".
NOT_SUBSCRIBED_STATUSES: Final = frozenset({401, 403, 531})


@dataclass(frozen=True, slots=True)
class Zone:
    id: str
    name: str
    network_type: str = "Basic"
    security_groups_enabled: bool = False

    @property
    def is_advanced(self) -> bool:
        return self.network_type.lower() == "advanced"

    @classmethod
    def from_element(cls, node: Element) -> Zone:
        zone_id = (node.findtext("id") or "").strip()
        return cls(
            id=zone_id,
            name=(node.findtext("name") or zone_id).strip(),
            network_type=(node.findtext("networktype") or "Basic").strip(),
            security_groups_enabled=(node.findtext("securitygroupsenabled") or "").strip().lower() == "true",
        )


class ZoneDirectory:
    """RegionDirectory and CapabilityQueries over ``listZones``.

    Every query lists the zones afresh.
    """

    def __init__(self, client: CloudStackClient) -> None:
        self._client = client
        self._log = logger.bind(provider="cloudstack", component="zones")

    def _all(self) -> dict[str, Zone]:
        zones = [Zone.from_element(z) for z in self._client.list_zones(available=True)]
        self._log.debug("Listed {n} zones", n=len(zones))
        return {z.id: z for z in zones if z.id}

    def list_regions(self) -> list[Region]:
        return [Region(id=z.id, name=z.name) for z in self._all().values()]

    def list_datacenters(self, region_id: str) -> list[DataCenter]:
        zone = self._all().get(region_id)
        if zone is None:
            return []
        return [DataCenter(id=zone.id, name=zone.name, region_id=zone.id)]

    def requires_network(self, zone_id: str) -> bool:
        zone = self._all().get(zone_id)
        return zone is not None and zone.is_advanced

    def supports_security_groups(self, zone_id: str, without_network: bool) -> bool:
        zone = self._all().get(zone_id)
        if zone is None or not zone.security_groups_enabled:
            return False
        # Basic zones only apply security groups to instances without a network.
        return zone.is_advanced or without_network


class CloudStackNetworks:
    """NetworkService over ``listNetworks``."""

    def __init__(self, client: CloudStackClient) -> None:
        self._client = client

    def is_subscribed(self) -> bool:
        try:
            self._client.invoke(LIST_NETWORKS)
        except ProviderError as e:
            if e.status in NOT_SUBSCRIBED_STATUSES:
                return False
            raise
        return True

    def find_free_networks(self, zone_id: str) -> list[str]:
        return [
            network_id
            for node in self._client.list_networks(zone_id)
            if (network_id := (node.findtext("id") or "").strip())
        ]


class CloudStackSecurityGroups:
    """FirewallService over ``listSecurityGroups``."""

    def __init__(self, client: CloudStackClient) -> None:
        self._client = client

    def list_firewalls_for_vm(self, vm_id: str) -> list[str]:
        return [
            group_id
            for node in self._client.list_security_groups(vm_id)
            if (group_id := (node.findtext("id") or "").strip())
        ]
