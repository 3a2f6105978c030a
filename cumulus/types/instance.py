"""Canonical virtual machine record shared by every backend."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cumulus.types.product import ProductOffering

__all__ = [
    "Architecture",
    "Platform",
    "VirtualMachineRecord",
    "VmState",
]


class Architecture(StrEnum):
    """Instruction set width of an instance or offering."""

    I32 = "i32"
    I64 = "i64"


class VmState(StrEnum):
    """Canonical lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    REBOOTING = "rebooting"
    PAUSED = "paused"
    TERMINATED = "terminated"


class Platform(StrEnum):
    """Operating system family, guessed from image names."""

    WINDOWS = "windows"
    UBUNTU = "ubuntu"
    DEBIAN = "debian"
    CENTOS = "centos"
    RHEL = "rhel"
    FEDORA = "fedora"
    SUSE = "suse"
    FREEBSD = "freebsd"
    SOLARIS = "solaris"
    UNIX = "unix"
    UNKNOWN = "unknown"

    @classmethod
    def guess(cls, name: str | None) -> Platform:
        """Best-effort platform from a free-form image or template name."""
        if not name:
            return cls.UNKNOWN
        lowered = name.lower()
        match lowered:
            case s if "windows" in s or "win2k" in s:
                return cls.WINDOWS
            case s if "ubuntu" in s:
                return cls.UBUNTU
            case s if "debian" in s:
                return cls.DEBIAN
            case s if "centos" in s:
                return cls.CENTOS
            case s if "rhel" in s or "red hat" in s or "redhat" in s:
                return cls.RHEL
            case s if "fedora" in s:
                return cls.FEDORA
            case s if "suse" in s:
                return cls.SUSE
            case s if "freebsd" in s:
                return cls.FREEBSD
            case s if "solaris" in s:
                return cls.SOLARIS
            case s if "linux" in s or "unix" in s:
                return cls.UNIX
            case _:
                return cls.UNKNOWN


def _frozen_tags(tags: Mapping[str, str] | None = None) -> Mapping[str, str]:
    return MappingProxyType(dict(tags or {}))


@dataclass(frozen=True, slots=True)
class VirtualMachineRecord:
    """Represents a provisioned virtual machine.

    Records are built fresh from one response node and never mutated
    afterwards. ``name`` and ``description`` are always non-empty, and
    ``region_id``/``datacenter_id`` always carry a value.

    The capability flags (clonable, imagable, pausable, persistent) are
    behaviour hints, not facts verified against the provider.
    """

    id: str
    name: str
    description: str
    region_id: str
    datacenter_id: str
    architecture: Architecture = Architecture.I64
    state: VmState | None = None
    network_id: str | None = None
    public_ips: tuple[str, ...] = ()
    private_ips: tuple[str, ...] = ()
    public_dns: str | None = None
    private_dns: str | None = None
    root_password: str | None = field(default=None, repr=False)
    image_id: str | None = None
    platform: Platform = Platform.UNKNOWN
    product: ProductOffering | None = None
    owner_id: str | None = None
    created_at: datetime | None = None
    last_boot_at: datetime | None = None
    tags: Mapping[str, str] = field(default_factory=_frozen_tags)

    clonable: bool = False
    imagable: bool = False
    pausable: bool = True
    persistent: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.tags, MappingProxyType):
            object.__setattr__(self, "tags", _frozen_tags(self.tags))

    def get_tag(self, key: str, default: str | None = None) -> str | None:
        """Get an unrecognized response field by name."""
        return self.tags.get(key, default)


@dataclass(frozen=True, slots=True)
class VmStatistics:
    """Usage sample for one instance over a time window; unset fields were not reported."""

    vm_id: str
    start: datetime | None = None
    end: datetime | None = None
    cpu_utilization: float | None = None
    network_in: int | None = None
    network_out: int | None = None
    disk_read_bytes: int | None = None
    disk_write_bytes: int | None = None
