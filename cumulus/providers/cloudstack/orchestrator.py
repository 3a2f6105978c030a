"""Provisioning: request assembly, network candidate retry and materialization."""

from __future__ import annotations

import base64
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final

from loguru import logger

from cumulus.core.exceptions import (
    ConfigurationError,
    InstanceNotFoundError,
    NoViableNetworkError,
    ProvisioningError,
)
from cumulus.infra.http import ProviderError
from cumulus.providers.cloudstack.client import (
    CloudStackClient,
    DeployFailure,
    DeployOutcome,
    FailureKind,
)
from cumulus.providers.cloudstack.config import CloudStackContext, CloudStackVersion
from cumulus.providers.cloudstack.mappings import MappingOverrides
from cumulus.providers.wait import SystemClock, poll_until
from cumulus.types.instance import VirtualMachineRecord
from cumulus.types.product import ProductOffering
from cumulus.types.protocols import (
    CapabilityQueries,
    Clock,
    Document,
    JobWaiter,
    NetworkService,
    RegionDirectory,
)

type Lookup = Callable[[str], VirtualMachineRecord | None]

DEFAULT_USER_DATA: Final = "created=Cumulus\n"
LAUNCH_JOB_LABEL: Final = "Launch Server"


# =============================================================================
# Request
# =============================================================================


@dataclass(frozen=True, slots=True)
class LaunchRequest:
    """Everything a caller specifies for one new instance.

    ``tags`` are flattened into user data; ``network_id`` is a hint that a
    network override for the product replaces.
    """

    image_id: str
    product: ProductOffering
    name: str
    description: str | None = None
    zone_id: str | None = None
    key_pair: str | None = None
    network_id: str | None = None
    firewall_ids: tuple[str, ...] = ()
    tags: Mapping[str, str] = field(default_factory=dict)


def encode_user_data(tags: Mapping[str, str]) -> str:
    """Flatten tags to ``key=value`` lines and base64 them; "" if encoding fails."""
    text = "".join(f"{k}={v}\n" for k, v in tags.items()) if tags else DEFAULT_USER_DATA
    try:
        return base64.b64encode(text.encode("utf-8")).decode("ascii")
    except UnicodeEncodeError as e:
        logger.bind(provider="cloudstack", component="orchestrator").warning(
            "Unable to encode user data, launching without it: {error}", error=e,
        )
        return ""


def join_firewalls(firewall_ids: Iterable[str]) -> str | None:
    ids = [fw.strip() for fw in firewall_ids if fw.strip()]
    return ",".join(ids) or None


def extract_instance_id(document: Document) -> str:
    """Id of the new instance from a deploy response (``virtualmachineid`` or ``id``)."""
    for response in document.iter("deployvirtualmachineresponse"):
        for child in response:
            if child.tag.lower() in ("virtualmachineid", "id") and child.text and child.text.strip():
                return child.text.strip()
    raise ProvisioningError("Could not launch server: no instance id in deploy response")


# =============================================================================
# Materialization
# =============================================================================


class Phase(StrEnum):
    POLLING = "polling"
    AWAITING_JOB = "awaiting-job"
    FINAL_CHECK = "final-check"


class Materializer:
    """Turns a deploy response into a visible instance record.

    Polls the instance directly until the deadline; if it never shows up,
    waits on the deploy job and checks one last time.
    """

    def __init__(
        self,
        lookup: Lookup,
        job_waiter: JobWaiter,
        *,
        clock: Clock,
        interval: float = 0.2,
        error_backoff: float = 1.0,
    ) -> None:
        self._lookup = lookup
        self._job_waiter = job_waiter
        self._clock = clock
        self._interval = interval
        self._error_backoff = error_backoff
        self._log = logger.bind(provider="cloudstack", component="materializer")

    def run(
        self,
        document: Document,
        instance_id: str,
        *,
        deadline: float,
        cancel: threading.Event | None = None,
    ) -> VirtualMachineRecord:
        phase = Phase.POLLING
        while True:
            self._log.debug("{vm_id}: {phase}", vm_id=instance_id, phase=phase)
            match phase:
                case Phase.POLLING:
                    vm = poll_until(
                        lambda: self._lookup(instance_id),
                        deadline=deadline,
                        clock=self._clock,
                        interval=self._interval,
                        error_backoff=self._error_backoff,
                        retry_on=(ProviderError,),
                        cancel=cancel,
                    )
                    if vm is not None:
                        return vm
                    self._log.warning(
                        "{vm_id} not visible before deadline, waiting on launch job",
                        vm_id=instance_id,
                    )
                    phase = Phase.AWAITING_JOB
                case Phase.AWAITING_JOB:
                    self._job_waiter.await_completion(document, LAUNCH_JOB_LABEL)
                    phase = Phase.FINAL_CHECK
                case Phase.FINAL_CHECK:
                    vm = self._lookup(instance_id)
                    if vm is None:
                        raise InstanceNotFoundError(instance_id)
                    return vm


# =============================================================================
# Orchestrator
# =============================================================================


class Orchestrator:
    """Launches instances.

    Example:
        orchestrator = Orchestrator(client, context, overrides, zones, zones,
                                    networks, waiter, lookup=vms.get_virtual_machine)
        vm = orchestrator.launch(LaunchRequest(image_id="tpl-1", product=small, name="web"))
    """

    def __init__(
        self,
        client: CloudStackClient,
        context: CloudStackContext | None,
        overrides: MappingOverrides,
        regions: RegionDirectory,
        capabilities: CapabilityQueries,
        networks: NetworkService | None,
        job_waiter: JobWaiter,
        *,
        lookup: Lookup,
        clock: Clock | None = None,
        timeout: float = 1200.0,
        interval: float = 0.2,
        error_backoff: float = 1.0,
    ) -> None:
        self._client = client
        self._context = context
        self._overrides = overrides
        self._regions = regions
        self._capabilities = capabilities
        self._networks = networks
        self._clock = clock or SystemClock()
        self._timeout = timeout
        self._materializer = Materializer(
            lookup, job_waiter, clock=self._clock,
            interval=interval, error_backoff=error_backoff,
        )
        self._log = logger.bind(provider="cloudstack", component="orchestrator")

    def resolve_zone(self, zone_id: str | None) -> str:
        """Map a datacenter id to its owning region; default to the first region."""
        regions = self._regions.list_regions()
        if zone_id is None:
            if not regions:
                raise ConfigurationError("No regions are available for this request")
            return regions[0].id
        for region in regions:
            if any(dc.id == zone_id for dc in self._regions.list_datacenters(region.id)):
                return region.id
        return zone_id

    def _network_candidates(self, zone_id: str, network_id: str | None) -> list[str]:
        if network_id:
            return [network_id]
        if self._networks is None or not self._networks.is_subscribed():
            return []
        if not self._capabilities.requires_network(zone_id):
            return []
        return list(self._networks.find_free_networks(zone_id))

    def launch(
        self,
        request: LaunchRequest,
        *,
        cancel: threading.Event | None = None,
    ) -> VirtualMachineRecord:
        if self._context is None:
            raise ConfigurationError("No context was provided for this request")
        context = self._context
        context.require_region()
        zone_id = self.resolve_zone(request.zone_id)

        self._log.info(
            "Launching {name} ({product}) in {zone}",
            name=request.name, product=request.product.id, zone=zone_id,
        )
        if context.version <= CloudStackVersion.CS21:
            document = self._deploy_basic(request, zone_id)
        else:
            document = self._deploy(request, zone_id, context)

        instance_id = extract_instance_id(document)
        self._log.debug("Deploy accepted: {vm_id}", vm_id=instance_id)
        return self._materializer.run(
            document,
            instance_id,
            deadline=self._clock.now() + self._timeout,
            cancel=cancel,
        )

    def _core_params(self, request: LaunchRequest, zone_id: str) -> dict[str, str]:
        return {
            "zoneId": zone_id,
            "serviceOfferingId": request.product.id,
            "templateId": request.image_id,
            "displayName": request.name,
        }

    def _deploy_basic(self, request: LaunchRequest, zone_id: str) -> Document:
        return self._submit(self._core_params(request, zone_id))

    def _deploy(self, request: LaunchRequest, zone_id: str, context: CloudStackContext) -> Document:
        network_id = self._overrides.network_for(context.endpoint, request.product.id) or request.network_id or None
        candidates = self._network_candidates(zone_id, network_id)

        security_groups = join_firewalls(request.firewall_ids)
        if security_groups and not self._capabilities.supports_security_groups(
            zone_id, without_network=not candidates,
        ):
            self._log.debug("Zone {zone} does not take security groups here, dropping them", zone=zone_id)
            security_groups = None

        params = self._core_params(request, zone_id)
        params["userdata"] = encode_user_data(request.tags)
        if request.key_pair is not None:
            params["keypair"] = request.key_pair
        if security_groups:
            params["securitygroupids"] = security_groups

        if not candidates:
            return self._submit(params)

        for candidate in candidates:
            outcome = self._client.deploy_virtual_machine({**params, "networkIds": candidate})
            match outcome:
                case DeployOutcome(document=document) if document is not None:
                    return document
                case DeployOutcome(failure=DeployFailure(kind=FailureKind.CAPACITY_EXHAUSTED)):
                    self._log.warning("Network {network} is out of addresses, trying next", network=candidate)
                case DeployOutcome(failure=DeployFailure(error=error)):
                    raise error
        raise NoViableNetworkError(candidates)

    def _submit(self, params: Mapping[str, str]) -> Document:
        outcome = self._client.deploy_virtual_machine(params)
        if outcome.failure is not None:
            raise outcome.failure.error
        assert outcome.document is not None
        return outcome.document
