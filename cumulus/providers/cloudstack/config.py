"""CloudStack provider configuration.

Immutable configuration dataclass for CloudStack-style endpoints.
"""

from __future__ import annotations

import os
import typing
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from cumulus.core.exceptions import ConfigurationError

if typing.TYPE_CHECKING:
    from cumulus.providers.cloudstack.provider import VirtualMachines

# =============================================================================
# API Version
# =============================================================================


class CloudStackVersion(IntEnum):
    """API generations with distinct deploy request shapes."""

    CS21 = 21
    CS22 = 22
    CS30 = 30
    CS40 = 40

    @classmethod
    def parse(cls, value: str) -> CloudStackVersion:
        """Map an API version string onto the newest generation it reaches.

        Only major and minor are significant: "4.2" and "3.0.2" take the
        CS40 and CS30 request shapes, anything below 2.2 the CS21 one.
        """
        parts = value.strip().split(".")[:2]
        try:
            major, minor = int(parts[0]), int(parts[1]) if len(parts) > 1 else 0
        except ValueError:
            raise ConfigurationError(f"Unsupported CloudStack API version: {value!r}") from None
        for generation in sorted(cls, reverse=True):
            if (major, minor) >= divmod(generation.value, 10):
                return generation
        return cls.CS21


# =============================================================================
# Context
# =============================================================================


@dataclass(frozen=True, slots=True)
class CloudStackContext:
    """Per-caller provider context.

    ``endpoint`` keys the product cache and override tables; ``region_id`` is
    the default placement and the default region of parsed records.
    """

    endpoint: str
    region_id: str | None = None
    account_number: str | None = None
    version: CloudStackVersion = CloudStackVersion.CS22

    def require_region(self) -> str:
        if not self.region_id:
            raise ConfigurationError("No region is established for this request")
        return self.region_id


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class CloudStack:
    """CloudStack compute provider configuration.

    Example:
        >>> from cumulus.providers.cloudstack import CloudStack
        >>> config = CloudStack(endpoint="https://cloud.example.com/client/api", region="zone-1")
        >>> vms = config.create_provider()

    Args:
        endpoint: API endpoint URL.
        api_key: API key. Falls back to CLOUDSTACK_API_KEY env var.
        secret_key: Secret key. Falls back to CLOUDSTACK_SECRET_KEY env var.
        region: Default region (zone) id.
        account: Account number reported as owner of parsed instances.
        version: API version, e.g. "2.2". Default: "2.2".
        request_timeout: HTTP timeout in seconds. Default: 30.
        launch_timeout: Ceiling for instance materialization in seconds. Default: 1200.
        poll_interval: Delay between visibility polls in seconds. Default: 0.2.
        error_backoff: Extra delay after a failed poll in seconds. Default: 1.0.
        job_timeout: Ceiling for asynchronous job waits in seconds. Default: 1200.
        mappings_dir: Directory with override tables. Default: the shipped tables.
    """

    endpoint: str
    api_key: str | None = None
    secret_key: str | None = None
    region: str | None = None
    account: str | None = None
    version: str = "2.2"
    request_timeout: float = 30.0
    launch_timeout: float = 1200.0
    poll_interval: float = 0.2
    error_backoff: float = 1.0
    job_timeout: float = 1200.0
    mappings_dir: str | None = None

    def create_provider(self) -> VirtualMachines:
        from cumulus.providers.cloudstack.provider import VirtualMachines
        return VirtualMachines.create(self)

    @property
    def type(self) -> str: return "cloudstack"

    @property
    def context(self) -> CloudStackContext:
        return CloudStackContext(
            endpoint=self.endpoint,
            region_id=self.region,
            account_number=self.account,
            version=CloudStackVersion.parse(self.version),
        )

    @property
    def mappings_path(self) -> Path | None:
        return Path(self.mappings_dir).expanduser() if self.mappings_dir else None


# =============================================================================
# Utility Functions
# =============================================================================


def get_credentials(
    api_key: str | None = None,
    secret_key: str | None = None,
) -> tuple[str, str]:
    """Get API credentials from config or environment.

    Precedence:
        1. Explicit arguments
        2. CLOUDSTACK_API_KEY / CLOUDSTACK_SECRET_KEY environment variables

    Raises:
        ConfigurationError: If either credential is missing.
    """
    api_key = api_key or os.environ.get("CLOUDSTACK_API_KEY")
    secret_key = secret_key or os.environ.get("CLOUDSTACK_SECRET_KEY")
    if not api_key or not secret_key:
        raise ConfigurationError(
            "CloudStack credentials not found. Set CLOUDSTACK_API_KEY and "
            "CLOUDSTACK_SECRET_KEY environment variables, or pass api_key and "
            "secret_key to the CloudStack config."
        )
    return api_key, secret_key
