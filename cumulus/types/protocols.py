"""Collaborator contracts consumed by the provisioning core.

The core never talks to the network directly: every remote capability is
reached through one of these protocols, so tests can swap in fakes and
other backends can supply their own implementations.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from xml.etree.ElementTree import Element

__all__ = [
    "CapabilityQueries",
    "Clock",
    "DataCenter",
    "Document",
    "FirewallService",
    "JobWaiter",
    "NetworkService",
    "Region",
    "RegionDirectory",
    "Transport",
]

type Document = Element
type Params = Mapping[str, str]


@dataclass(frozen=True, slots=True)
class Region:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class DataCenter:
    id: str
    name: str
    region_id: str


@runtime_checkable
class Transport(Protocol):
    """Issues one API action and returns the parsed response document.

    Raises ProviderError (carrying the HTTP status) on failure.
    """

    def invoke(self, action: str, params: Params | None = None) -> Document: ...


class JobWaiter(Protocol):
    """Blocks until the asynchronous job referenced by a response completes."""

    def await_completion(self, document: Document, label: str) -> None: ...


class RegionDirectory(Protocol):
    def list_regions(self) -> Sequence[Region]: ...

    def list_datacenters(self, region_id: str) -> Sequence[DataCenter]: ...


class CapabilityQueries(Protocol):
    def requires_network(self, zone_id: str) -> bool:
        """True if instances in this zone must be placed on a network."""
        ...

    def supports_security_groups(self, zone_id: str, without_network: bool) -> bool:
        """True if the zone accepts security groups for this placement."""
        ...


class NetworkService(Protocol):
    def is_subscribed(self) -> bool: ...

    def find_free_networks(self, zone_id: str) -> Sequence[str]:
        """Ordered ids of networks currently able to host a new instance."""
        ...


class FirewallService(Protocol):
    def list_firewalls_for_vm(self, vm_id: str) -> Sequence[str]: ...


class Clock(Protocol):
    """Monotonic time source plus sleep, injectable for tests."""

    def now(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...
