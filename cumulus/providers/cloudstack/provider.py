"""Virtual machine lifecycle for CloudStack endpoints.

``VirtualMachines`` is the entry point callers hold. It wires the transport,
catalog, translator and orchestrator together and exposes the lifecycle
operations: launch, lookup, listing, start/stop/reboot/destroy and the
capability queries.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Final

from loguru import logger

from cumulus.core.exceptions import ConfigurationError, OperationNotSupportedError
from cumulus.infra.http import ApiKeyAuth, CloudStackTransport, ProviderError
from cumulus.providers.cloudstack.catalog import ProductCache, ProductCatalog, Products
from cumulus.providers.cloudstack.client import AsyncJobWaiter, CloudStackClient
from cumulus.providers.cloudstack.config import CloudStack, CloudStackContext, get_credentials
from cumulus.providers.cloudstack.datacenters import (
    NOT_SUBSCRIBED_STATUSES,
    CloudStackNetworks,
    CloudStackSecurityGroups,
    ZoneDirectory,
)
from cumulus.providers.cloudstack.mappings import MappingOverrides
from cumulus.providers.cloudstack.orchestrator import LaunchRequest, Orchestrator
from cumulus.providers.cloudstack.translator import InstanceTranslator, decode
from cumulus.providers.wait import SystemClock
from cumulus.types.instance import Architecture, VirtualMachineRecord, VmStatistics
from cumulus.types.product import ProductOffering
from cumulus.types.protocols import (
    CapabilityQueries,
    Clock,
    FirewallService,
    JobWaiter,
    NetworkService,
    RegionDirectory,
)

PROVIDER_TERM: Final = "virtual machine"
PAUSE_JOB_LABEL: Final = "Pause Server"


class VirtualMachines:
    """Lifecycle operations on the instances of one endpoint and region.

    Every collaborator is injectable; ``create`` builds the default wiring
    from a ``CloudStack`` config.

    Example:
        vms = CloudStack(endpoint=url, region="zone-1").create_provider()
        small = vms.get_product("small")
        vm = vms.launch("tpl-1", small, name="web", tags={"role": "web"})
        vms.stop(vm.id)
    """

    def __init__(
        self,
        client: CloudStackClient,
        context: CloudStackContext | None,
        *,
        overrides: MappingOverrides | None = None,
        catalog: ProductCatalog | None = None,
        regions: RegionDirectory | None = None,
        capabilities: CapabilityQueries | None = None,
        networks: NetworkService | None = None,
        firewalls: FirewallService | None = None,
        job_waiter: JobWaiter | None = None,
        clock: Clock | None = None,
        launch_timeout: float = 1200.0,
        poll_interval: float = 0.2,
        error_backoff: float = 1.0,
    ) -> None:
        self._client = client
        self._context = context
        self._overrides = overrides or MappingOverrides()
        self._catalog = catalog or ProductCatalog(client, context, self._overrides)
        if regions is None or capabilities is None:
            zones = ZoneDirectory(client)
            regions = regions or zones
            capabilities = capabilities or zones
        self._regions = regions
        self._capabilities = capabilities
        self._networks = networks
        self._firewalls = firewalls
        self._clock = clock or SystemClock()
        self._job_waiter = job_waiter or AsyncJobWaiter(client, clock=self._clock)
        self._orchestrator = Orchestrator(
            client,
            context,
            self._overrides,
            self._regions,
            self._capabilities,
            networks,
            self._job_waiter,
            lookup=self.get_virtual_machine,
            clock=self._clock,
            timeout=launch_timeout,
            interval=poll_interval,
            error_backoff=error_backoff,
        )
        self._log = logger.bind(provider="cloudstack", component="vms")

    @classmethod
    def create(
        cls,
        config: CloudStack,
        *,
        cache: ProductCache | None = None,
        clock: Clock | None = None,
    ) -> VirtualMachines:
        api_key, secret_key = get_credentials(config.api_key, config.secret_key)
        transport = CloudStackTransport(
            config.endpoint,
            ApiKeyAuth(api_key, secret_key),
            timeout=config.request_timeout,
        )
        client = CloudStackClient(transport)
        context = config.context
        clock = clock or SystemClock()
        overrides = MappingOverrides(config.mappings_path)
        zones = ZoneDirectory(client)
        return cls(
            client,
            context,
            overrides=overrides,
            catalog=ProductCatalog(client, context, overrides, cache),
            regions=zones,
            capabilities=zones,
            networks=CloudStackNetworks(client),
            firewalls=CloudStackSecurityGroups(client),
            job_waiter=AsyncJobWaiter(client, timeout=config.job_timeout, clock=clock),
            clock=clock,
            launch_timeout=config.launch_timeout,
            poll_interval=config.poll_interval,
            error_backoff=config.error_backoff,
        )

    @property
    def provider_term(self) -> str:
        return PROVIDER_TERM

    @property
    def context(self) -> CloudStackContext | None:
        return self._context

    def _translator(self) -> InstanceTranslator:
        if self._context is None:
            raise ConfigurationError("No context was established for this request")
        return InstanceTranslator(self._context, self._catalog)

    def _region(self) -> str:
        if self._context is None:
            raise ConfigurationError("No context was established for this request")
        return self._context.require_region()

    # =========================================================================
    # Launch
    # =========================================================================

    def launch(
        self,
        image_id: str,
        product: ProductOffering,
        *,
        name: str,
        description: str | None = None,
        zone_id: str | None = None,
        key_pair: str | None = None,
        network_id: str | None = None,
        firewall_ids: Sequence[str] = (),
        tags: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> VirtualMachineRecord:
        """Create an instance and block until it is visible.

        Raises:
            ConfigurationError: No context or region is established.
            NoViableNetworkError: Every candidate network is out of addresses.
            ProviderError: The endpoint rejected the create call.
            InstanceNotFoundError: The instance never became visible.
            OperationCancelledError: ``cancel`` was set while waiting.
        """
        request = LaunchRequest(
            image_id=image_id,
            product=product,
            name=name,
            description=description,
            zone_id=zone_id,
            key_pair=key_pair,
            network_id=network_id,
            firewall_ids=tuple(firewall_ids),
            tags=dict(tags or {}),
        )
        vm = self._orchestrator.launch(request, cancel=cancel)
        self._log.info("Launched {vm_id} ({name})", vm_id=vm.id, name=vm.name)
        return vm

    # =========================================================================
    # Queries
    # =========================================================================

    def get_virtual_machine(self, vm_id: str) -> VirtualMachineRecord | None:
        """Look up one instance in the context region; None if absent or in error."""
        translator = self._translator()
        for node in self._client.list_virtual_machines(self._region()):
            if decode(node).id == vm_id:
                return translator.translate(node)
        return None

    def list_virtual_machines(self) -> list[VirtualMachineRecord]:
        translator = self._translator()
        return [
            vm
            for node in self._client.list_virtual_machines(self._region())
            if (vm := translator.translate(node)) is not None
        ]

    def list_products(self, architecture: Architecture = Architecture.I64) -> Products:
        return self._catalog.list_products(architecture)

    def get_product(self, product_id: str) -> ProductOffering | None:
        return self._catalog.get_product(product_id)

    def invalidate(self) -> None:
        """Forget cached offerings for this endpoint."""
        self._catalog.invalidate()

    def list_firewalls(self, vm_id: str) -> list[str]:
        if self._firewalls is None:
            return []
        return list(self._firewalls.list_firewalls_for_vm(vm_id))

    def is_subscribed(self) -> bool:
        """Whether the credentials may use the compute service at all."""
        try:
            self._client.list_zones(available=True)
        except ProviderError as e:
            if e.status in NOT_SUBSCRIBED_STATUSES:
                self._log.debug("Not subscribed: {error}", error=e)
                return False
            raise
        return True

    def get_console_output(self, vm_id: str) -> str:
        return ""

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, vm_id: str) -> None:
        self._log.info("Starting {vm_id}", vm_id=vm_id)
        self._client.start_virtual_machine(vm_id)

    def stop(self, vm_id: str) -> None:
        """Stop an instance and wait for the stop job to finish."""
        self._log.info("Stopping {vm_id}", vm_id=vm_id)
        document = self._client.stop_virtual_machine(vm_id)
        self._job_waiter.await_completion(document, PAUSE_JOB_LABEL)

    def reboot(self, vm_id: str) -> None:
        self._log.info("Rebooting {vm_id}", vm_id=vm_id)
        self._client.reboot_virtual_machine(vm_id)

    def destroy(self, vm_id: str) -> None:
        self._log.info("Destroying {vm_id}", vm_id=vm_id)
        self._client.destroy_virtual_machine(vm_id)

    def clone(self, vm_id: str, name: str, *, power_on: bool = False) -> VirtualMachineRecord:
        raise OperationNotSupportedError("Instances cannot be cloned")

    # =========================================================================
    # Analytics
    # =========================================================================

    def supports_analytics(self) -> bool:
        return False

    def enable_analytics(self, vm_id: str) -> None:
        pass

    def disable_analytics(self, vm_id: str) -> None:
        pass

    def get_statistics(self, vm_id: str, start: datetime, end: datetime) -> VmStatistics:
        """Usage for one instance; the API reports none, so every figure is unset."""
        return VmStatistics(vm_id=vm_id, start=start, end=end)

    def get_statistics_for_period(self, vm_id: str, start: datetime, end: datetime) -> list[VmStatistics]:
        return []

    # =========================================================================
    # Access control
    # =========================================================================

    def map_service_action(self, action: str) -> list[str]:
        """Provider permission names for a service action; none are defined."""
        return []
