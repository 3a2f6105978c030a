"""Typed wrappers around the CloudStack XML API actions."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Final
from xml.etree.ElementTree import Element

from loguru import logger

from cumulus.core.exceptions import JobFailedError
from cumulus.infra.http import ProviderError
from cumulus.providers.wait import SystemClock, poll_until
from cumulus.types.protocols import Clock, Document, Transport

# =============================================================================
# Actions
# =============================================================================

DEPLOY_VIRTUAL_MACHINE: Final = "deployVirtualMachine"
DESTROY_VIRTUAL_MACHINE: Final = "destroyVirtualMachine"
LIST_VIRTUAL_MACHINES: Final = "listVirtualMachines"
LIST_SERVICE_OFFERINGS: Final = "listServiceOfferings"
REBOOT_VIRTUAL_MACHINE: Final = "rebootVirtualMachine"
START_VIRTUAL_MACHINE: Final = "startVirtualMachine"
STOP_VIRTUAL_MACHINE: Final = "stopVirtualMachine"
LIST_ZONES: Final = "listZones"
LIST_NETWORKS: Final = "listNetworks"
LIST_SECURITY_GROUPS: Final = "listSecurityGroups"
QUERY_ASYNC_JOB_RESULT: Final = "queryAsyncJobResult"

# Message the API uses when a network has no free addresses left.
ADDRESS_CAPACITY_MESSAGE: Final = "sufficient address capacity"

JOB_PENDING: Final = 0
JOB_FAILED: Final = 2


# =============================================================================
# Deploy outcome
# =============================================================================


class FailureKind(StrEnum):
    CAPACITY_EXHAUSTED = "capacity-exhausted"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class DeployFailure:
    kind: FailureKind
    error: ProviderError


@dataclass(frozen=True, slots=True)
class DeployOutcome:
    """Result of one create call: either a response document or a tagged failure."""

    document: Document | None = None
    failure: DeployFailure | None = None


def classify_failure(error: ProviderError) -> FailureKind:
    if ADDRESS_CAPACITY_MESSAGE in error.message.lower():
        return FailureKind.CAPACITY_EXHAUSTED
    return FailureKind.OTHER


# =============================================================================
# Client
# =============================================================================


class CloudStackClient:
    """Action-level client on top of a Transport.

    Example:
        client = CloudStackClient(transport)
        offerings = client.list_service_offerings("zone-1")
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._log = logger.bind(provider="cloudstack", component="client")

    def invoke(self, action: str, params: Mapping[str, str] | None = None) -> Document:
        return self._transport.invoke(action, params)

    # -------------------------------------------------------------------------
    # Virtual machines
    # -------------------------------------------------------------------------

    def deploy_virtual_machine(self, params: Mapping[str, str]) -> DeployOutcome:
        try:
            return DeployOutcome(document=self.invoke(DEPLOY_VIRTUAL_MACHINE, params))
        except ProviderError as e:
            kind = classify_failure(e)
            self._log.debug("Deploy failed ({kind}): {error}", kind=kind, error=e)
            return DeployOutcome(failure=DeployFailure(kind=kind, error=e))

    def list_virtual_machines(self, zone_id: str) -> list[Element]:
        doc = self.invoke(LIST_VIRTUAL_MACHINES, {"zoneId": zone_id})
        return list(doc.iter("virtualmachine"))

    def start_virtual_machine(self, vm_id: str) -> Document:
        return self.invoke(START_VIRTUAL_MACHINE, {"id": vm_id})

    def stop_virtual_machine(self, vm_id: str) -> Document:
        return self.invoke(STOP_VIRTUAL_MACHINE, {"id": vm_id})

    def reboot_virtual_machine(self, vm_id: str) -> Document:
        return self.invoke(REBOOT_VIRTUAL_MACHINE, {"id": vm_id})

    def destroy_virtual_machine(self, vm_id: str) -> Document:
        return self.invoke(DESTROY_VIRTUAL_MACHINE, {"id": vm_id})

    # -------------------------------------------------------------------------
    # Catalog and placement
    # -------------------------------------------------------------------------

    def list_service_offerings(self, zone_id: str) -> list[Element]:
        doc = self.invoke(LIST_SERVICE_OFFERINGS, {"zoneId": zone_id})
        return list(doc.iter("serviceoffering"))

    def list_zones(self, *, available: bool = True) -> list[Element]:
        doc = self.invoke(LIST_ZONES, {"available": str(available).lower()})
        return list(doc.iter("zone"))

    def list_networks(self, zone_id: str) -> list[Element]:
        doc = self.invoke(LIST_NETWORKS, {"zoneId": zone_id, "canusefordeploy": "true"})
        return list(doc.iter("network"))

    def list_security_groups(self, vm_id: str) -> list[Element]:
        doc = self.invoke(LIST_SECURITY_GROUPS, {"virtualmachineid": vm_id})
        return list(doc.iter("securitygroup"))

    def query_async_job(self, job_id: str) -> Document:
        return self.invoke(QUERY_ASYNC_JOB_RESULT, {"jobId": job_id})


# =============================================================================
# Job waiter
# =============================================================================


class AsyncJobWaiter:
    """Waits on the asynchronous job referenced by a response document."""

    def __init__(
        self,
        client: CloudStackClient,
        *,
        timeout: float = 1200.0,
        interval: float = 2.0,
        clock: Clock | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._interval = interval
        self._clock = clock or SystemClock()
        self._cancel = cancel
        self._log = logger.bind(provider="cloudstack", component="jobs")

    def await_completion(self, document: Document, label: str) -> None:
        job_id = document.findtext(".//jobid")
        if not job_id:
            self._log.debug("{label}: response carries no job", label=label)
            return
        job_id = job_id.strip()

        self._log.debug("{label}: waiting on job {job_id}", label=label, job_id=job_id)
        result = poll_until(
            lambda: self._finished(job_id),
            deadline=self._clock.now() + self._timeout,
            clock=self._clock,
            interval=self._interval,
            error_backoff=self._interval,
            retry_on=(ProviderError,),
            cancel=self._cancel,
        )
        if result is None:
            raise JobFailedError(job_id, label, f"timed out after {self._timeout:.0f}s")

        if int(result.findtext(".//jobstatus") or JOB_PENDING) == JOB_FAILED:
            reason = result.findtext(".//errortext") or "unknown"
            raise JobFailedError(job_id, label, reason)

    def _finished(self, job_id: str) -> Document | None:
        doc = self._client.query_async_job(job_id)
        status = int(doc.findtext(".//jobstatus") or JOB_PENDING)
        return None if status == JOB_PENDING else doc
