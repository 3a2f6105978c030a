"""Custom exception hierarchy for Cumulus.

All cumulus-specific exceptions inherit from CumulusError, enabling
users to catch all cumulus exceptions with a single except clause.
"""

from __future__ import annotations

from collections.abc import Sequence


class CumulusError(Exception):
    """Base exception for all Cumulus errors."""


class ConfigurationError(CumulusError):
    """Raised for invalid configuration or missing required settings."""


class ProvisioningError(CumulusError):
    """Raised when instance provisioning fails."""


class NoViableNetworkError(ProvisioningError):
    """Raised when every network candidate was rejected for address capacity."""

    def __init__(self, candidates: Sequence[str]) -> None:
        self.candidates = tuple(candidates)
        super().__init__(
            "Unable to identify a network into which a VM can be launched "
            f"(tried: {', '.join(self.candidates)})"
        )


class InstanceNotFoundError(ProvisioningError):
    """Raised when a launched instance never became visible."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Instance not found after provisioning: {instance_id}")


class InstanceParseError(CumulusError):
    """Raised when a response node cannot be turned into a record."""


class JobFailedError(CumulusError):
    """Raised when an asynchronous job finishes in a failure state."""

    def __init__(self, job_id: str, label: str, reason: str = "unknown") -> None:
        self.job_id = job_id
        self.label = label
        self.reason = reason
        super().__init__(f"{label} failed (job {job_id}): {reason}")


class OperationCancelledError(CumulusError):
    """Raised when the caller cancels a blocking operation."""


class OperationNotSupportedError(CumulusError):
    """Raised for operations the provider does not offer."""
