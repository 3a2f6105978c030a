"""Static override tables for network and offering selection.

Three tables ship with the deployment, each optional:

* ``cloud_mappings.cfg``: ``<endpoint>=<cloud id>``
* ``network_mappings.cfg``: ``<cloud id>,<product id>=<network id>``
* ``service_mappings.cfg``: ``<cloud id>,<region id>=<product id>[,<product id>...]``

Loading is best-effort: a missing or malformed file leaves its table unset,
and an unset table is retried on the next lookup.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from importlib import resources
from pathlib import Path
from typing import Final

from loguru import logger

CLOUD_MAPPINGS: Final = "cloud_mappings.cfg"
NETWORK_MAPPINGS: Final = "network_mappings.cfg"
SERVICE_MAPPINGS: Final = "service_mappings.cfg"

type CloudTable = dict[str, str]
type NetworkTable = dict[str, dict[str, str]]
type ServiceTable = dict[str, dict[str, frozenset[str]]]


def _entries(lines: list[str]) -> Iterator[tuple[str, str]]:
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith(("#", "!")):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        yield key.strip(), value.strip()


def _pair(key: str) -> tuple[str, str]:
    cloud_id, sep, second = key.partition(",")
    if not sep or not cloud_id or not second:
        raise ValueError(f"Expected '<cloud id>,<key>', got {key!r}")
    return cloud_id.strip(), second.strip()


def parse_cloud_mappings(lines: list[str]) -> CloudTable:
    # Endpoints are URLs, so only the first '=' separates; blank values are skipped.
    return {key: value for key, value in _entries(lines) if value}


def parse_network_mappings(lines: list[str]) -> NetworkTable:
    table: NetworkTable = {}
    for key, value in _entries(lines):
        cloud_id, product_id = _pair(key)
        table.setdefault(cloud_id, {})[product_id] = value
    return table


def parse_service_mappings(lines: list[str]) -> ServiceTable:
    table: ServiceTable = {}
    for key, value in _entries(lines):
        cloud_id, region_id = _pair(key)
        ids = frozenset(p.strip() for p in value.split(",") if p.strip())
        table.setdefault(cloud_id, {})[region_id] = ids
    return table


class MappingOverrides:
    """Lazily loaded, read-only override tables.

    Example:
        overrides = MappingOverrides()
        network_id = overrides.network_for(endpoint, product_id)
    """

    def __init__(self, directory: Path | None = None) -> None:
        self._directory = directory
        self.cloud_ids: CloudTable | None = None
        self.networks: NetworkTable | None = None
        self.services: ServiceTable | None = None
        self._log = logger.bind(provider="cloudstack", component="mappings")

    def _read(self, name: str) -> list[str]:
        if self._directory is not None:
            return (self._directory / name).read_text().splitlines()
        return (resources.files(__package__) / "data" / name).read_text().splitlines()

    def _load_table[T](self, name: str, parse: Callable[[list[str]], T]) -> T | None:
        try:
            table = parse(self._read(name))
        except (OSError, ValueError) as e:
            self._log.debug("Override table {name} unavailable: {error}", name=name, error=e)
            return None
        self._log.debug("Loaded override table {name}", name=name)
        return table

    def load(self) -> None:
        """Load every table that is not loaded yet. Never raises."""
        if self.cloud_ids is None:
            self.cloud_ids = self._load_table(CLOUD_MAPPINGS, parse_cloud_mappings)
        if self.networks is None:
            self.networks = self._load_table(NETWORK_MAPPINGS, parse_network_mappings)
        if self.services is None:
            self.services = self._load_table(SERVICE_MAPPINGS, parse_service_mappings)

    def cloud_id(self, endpoint: str) -> str | None:
        if self.cloud_ids is None:
            self.load()
        return (self.cloud_ids or {}).get(endpoint)

    def network_for(self, endpoint: str, product_id: str) -> str | None:
        """Network forced for this product on this endpoint, if any."""
        if self.networks is None:
            self.load()
        cloud_id = self.cloud_id(endpoint)
        if cloud_id is None or self.networks is None:
            return None
        return self.networks.get(cloud_id, {}).get(product_id) or None

    def allowed_products(self, endpoint: str, region_id: str) -> frozenset[str] | None:
        """Offering ids exposed in this region, or None when unrestricted."""
        if self.services is None:
            self.load()
        cloud_id = self.cloud_id(endpoint)
        if cloud_id is None or self.services is None:
            return None
        return self.services.get(cloud_id, {}).get(region_id)
