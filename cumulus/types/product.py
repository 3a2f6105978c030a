"""Compute offerings selectable at provisioning time."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

__all__ = [
    "NOMINAL_DISK_GB",
    "ProductOffering",
]

# Offerings do not report disk; every product advertises the same nominal size.
NOMINAL_DISK_GB: Final = 1


@dataclass(frozen=True, slots=True)
class ProductOffering:
    """A fixed CPU/RAM bundle."""

    id: str
    name: str
    description: str
    ram_mb: int
    cpu_count: int
    disk_gb: int = NOMINAL_DISK_GB

    @classmethod
    def from_offering(cls, offering_id: str, name: str | None, cpu: int, ram_mb: int) -> ProductOffering:
        label = f"{name} ({cpu} CPU/{ram_mb}MB RAM)"
        return cls(
            id=offering_id,
            name=label,
            description=label,
            ram_mb=ram_mb,
            cpu_count=cpu,
        )
