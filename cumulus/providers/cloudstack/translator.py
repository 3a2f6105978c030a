"""Translation of ``virtualmachine`` response nodes into canonical records.

Parsing happens in two steps. ``decode`` walks the node once and sorts every
recognized field into a typed intermediate record; anything it does not
recognize lands in ``extras`` untouched. ``InstanceTranslator.translate``
then applies state mapping, address classification and defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Final
from xml.etree.ElementTree import Element

from loguru import logger

from cumulus.core.exceptions import InstanceParseError
from cumulus.providers.cloudstack.catalog import ProductCatalog
from cumulus.providers.cloudstack.config import CloudStackContext
from cumulus.types.instance import Architecture, Platform, VirtualMachineRecord, VmState

# =============================================================================
# Constants
# =============================================================================

CREATED_FORMAT: Final = "%Y-%m-%dT%H:%M:%S%z"

EPOCH: Final = datetime.fromtimestamp(0, tz=UTC)

# Remote state -> canonical state. None marks states whose records are dropped.
STATE_MAP: Final[dict[str, VmState | None]] = {
    "stopped": VmState.PAUSED,
    "running": VmState.RUNNING,
    "stopping": VmState.REBOOTING,
    "starting": VmState.PENDING,
    "creating": VmState.PENDING,
    "migrating": VmState.REBOOTING,
    "destroyed": VmState.TERMINATED,
    "expunging": VmState.TERMINATED,
    "ha": VmState.REBOOTING,
    "error": None,
}


def is_public_address(address: str) -> bool:
    """Classify an IPv4 address by prefix.

    10/8 and 192.168/16 are private; 172.x is private only for a second
    octet in 16-31. Anything else, including malformed 172 addresses, is
    public.
    """
    if address.startswith(("10.", "192.168.")):
        return False
    if not address.startswith("172."):
        return True
    octets = address.split(".")
    if len(octets) != 4:
        return True
    try:
        second = int(octets[1])
    except ValueError:
        return True
    return not 16 <= second <= 31


def map_state(value: str) -> VmState | None:
    try:
        return STATE_MAP[value.strip().lower()]
    except KeyError:
        raise InstanceParseError(f"Unexpected server state: {value}") from None


# =============================================================================
# Decode
# =============================================================================


@dataclass(frozen=True, slots=True)
class NetworkInterface:
    address: str | None = None
    network_id: str | None = None


@dataclass(slots=True)
class DecodedInstance:
    """Typed view of one response node before normalization."""

    id: str | None = None
    name: str | None = None
    display_name: str | None = None
    legacy_address: str | None = None
    password: str | None = None
    nics: list[NetworkInterface] = field(default_factory=list)
    architecture: str | None = None
    created: str | None = None
    state: str | None = None
    zone_id: str | None = None
    template_id: str | None = None
    template_name: str | None = None
    offering_id: str | None = None
    extras: dict[str, str] = field(default_factory=dict)


def _text(node: Element) -> str | None:
    return node.text.strip() if node.text is not None else None


def _decode_nic(node: Element) -> NetworkInterface:
    address = network_id = None
    for part in node:
        match part.tag.lower():
            case "ipaddress":
                address = _text(part) or None
            case "networkid":
                network_id = _text(part) or None
    return NetworkInterface(address=address, network_id=network_id)


def decode(node: Element) -> DecodedInstance:
    decoded = DecodedInstance()
    for child in node:
        name = child.tag.lower()
        match name:
            case "virtualmachineid" | "id":
                decoded.id = _text(child)
            case "name":
                decoded.name = _text(child)
            case "displayname":
                decoded.display_name = _text(child)
            case "ipaddress":
                decoded.legacy_address = _text(child)
            case "password":
                decoded.password = _text(child)
            case "nic":
                decoded.nics.append(_decode_nic(child))
            case "osarchitecture":
                decoded.architecture = _text(child)
            case "created":
                decoded.created = _text(child)
            case "state":
                decoded.state = _text(child)
            case "zoneid":
                decoded.zone_id = _text(child)
            case "templateid":
                decoded.template_id = _text(child)
            case "templatename":
                decoded.template_name = _text(child)
            case "serviceofferingid":
                decoded.offering_id = _text(child)
            case _ if child.text is not None and len(child) == 0:
                decoded.extras[name] = child.text
    return decoded


# =============================================================================
# Translate
# =============================================================================


@dataclass(slots=True)
class _Addresses:
    public: list[str] = field(default_factory=list)
    private: list[str] = field(default_factory=list)
    public_dns: str | None = None
    private_dns: str | None = None
    network_id: str | None = None

    def add(self, address: str) -> None:
        if is_public_address(address):
            self.public.append(address)
            self.public_dns = self.public_dns or address
        else:
            self.private.append(address)
            self.private_dns = self.private_dns or address


def _addresses(decoded: DecodedInstance) -> _Addresses:
    result = _Addresses()
    if decoded.legacy_address:
        result.private.append(decoded.legacy_address)
        result.private_dns = decoded.legacy_address
    for nic in decoded.nics:
        result.network_id = result.network_id or nic.network_id
        if nic.address:
            result.add(nic.address)
    return result


class InstanceTranslator:
    """Builds VirtualMachineRecords for one provider context.

    The result depends only on the node, the product catalog and the context,
    so parsing the same node twice yields equal records.
    """

    def __init__(self, context: CloudStackContext, catalog: ProductCatalog) -> None:
        self._context = context
        self._catalog = catalog
        self._log = logger.bind(provider="cloudstack", component="translator")

    def _created(self, value: str) -> tuple[datetime | None, datetime | None]:
        try:
            return datetime.strptime(value, CREATED_FORMAT), None
        except ValueError:
            self._log.warning("Invalid date: {value}", value=value)
            return None, EPOCH

    def translate(self, node: Element) -> VirtualMachineRecord | None:
        """Parse one node; returns None for instances in the remote error state."""
        decoded = decode(node)

        state = None
        if decoded.state is not None:
            state = map_state(decoded.state)
            if state is None:
                self._log.warning("VM {vm_id} is in an error state", vm_id=decoded.id)
                return None

        if not decoded.id:
            raise InstanceParseError("Response node carries no instance id")

        architecture = Architecture.I32 if decoded.architecture == "32" else Architecture.I64
        created_at, last_boot_at = (
            self._created(decoded.created) if decoded.created is not None else (None, None)
        )
        addresses = _addresses(decoded)
        region_id = decoded.zone_id or self._context.require_region()
        name = decoded.display_name or decoded.id

        product = None
        if decoded.offering_id:
            product = next(
                (p for p in self._catalog.list_products(architecture) if p.id == decoded.offering_id),
                None,
            )

        return VirtualMachineRecord(
            id=decoded.id,
            name=name,
            description=decoded.name or name,
            region_id=region_id,
            datacenter_id=region_id,
            architecture=architecture,
            state=state,
            network_id=addresses.network_id,
            public_ips=tuple(addresses.public),
            private_ips=tuple(addresses.private),
            public_dns=addresses.public_dns,
            private_dns=addresses.private_dns,
            root_password=decoded.password,
            image_id=decoded.template_id,
            platform=Platform.guess(decoded.template_name),
            product=product,
            owner_id=self._context.account_number,
            created_at=created_at,
            last_boot_at=last_boot_at,
            tags=decoded.extras,
            imagable=state is VmState.PAUSED,
        )
