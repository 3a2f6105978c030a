from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from cumulus.core.exceptions import ConfigurationError, InstanceParseError, OperationNotSupportedError
from cumulus.infra.http import ProviderError
from cumulus.providers.cloudstack import CloudStack, VirtualMachines
from cumulus.providers.cloudstack.catalog import ProductCache, ProductCatalog
from cumulus.providers.cloudstack.client import (
    DEPLOY_VIRTUAL_MACHINE,
    DESTROY_VIRTUAL_MACHINE,
    LIST_SERVICE_OFFERINGS,
    LIST_VIRTUAL_MACHINES,
    LIST_ZONES,
    REBOOT_VIRTUAL_MACHINE,
    START_VIRTUAL_MACHINE,
    STOP_VIRTUAL_MACHINE,
    CloudStackClient,
)
from cumulus.providers.cloudstack.config import CloudStackContext
from cumulus.providers.cloudstack.mappings import MappingOverrides
from cumulus.types.instance import Architecture, VmState, VmStatistics
from cumulus.types.product import ProductOffering
from tests.conftest import (
    ENDPOINT,
    FakeClock,
    FakeZones,
    RecordingJobWaiter,
    ScriptedTransport,
    deploy_response,
    offering_list,
    vm_list,
    vm_node,
)

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]

SMALL = ProductOffering.from_offering("small", "Small", cpu=1, ram_mb=512)


class FakeFirewalls:
    def list_firewalls_for_vm(self, vm_id: str) -> list[str]:
        return [f"{vm_id}-sg"]


@pytest.fixture
def waiter() -> RecordingJobWaiter:
    return RecordingJobWaiter()


@pytest.fixture
def vms(
    client: CloudStackClient,
    context: CloudStackContext,
    overrides: MappingOverrides,
    cache: ProductCache,
    clock: FakeClock,
    waiter: RecordingJobWaiter,
) -> VirtualMachines:
    zones = FakeZones()
    return VirtualMachines(
        client,
        context,
        overrides=overrides,
        catalog=ProductCatalog(client, context, overrides, cache),
        regions=zones,
        capabilities=zones,
        job_waiter=waiter,
        clock=clock,
        launch_timeout=1.0,
        poll_interval=0.25,
    )


class TestQueries:
    def test_list_skips_error_state(self, transport: ScriptedTransport, vms: VirtualMachines):
        transport.reply(
            LIST_VIRTUAL_MACHINES,
            vm_list(vm_node("a", state="Running"), vm_node("b", state="Error"), vm_node("c", state="Stopped")),
        )

        result = vms.list_virtual_machines()

        assert [(vm.id, vm.state) for vm in result] == [("a", VmState.RUNNING), ("c", VmState.PAUSED)]
        assert transport.calls == [(LIST_VIRTUAL_MACHINES, {"zoneId": "zone-1"})]

    def test_list_unknown_state_raises(self, transport: ScriptedTransport, vms: VirtualMachines):
        transport.reply(LIST_VIRTUAL_MACHINES, vm_list(vm_node("a", state="Sleeping")))
        with pytest.raises(InstanceParseError, match="Unexpected server state"):
            vms.list_virtual_machines()

    def test_get_by_id(self, transport: ScriptedTransport, vms: VirtualMachines):
        transport.reply(
            LIST_VIRTUAL_MACHINES,
            vm_list(vm_node("a", state="Sleeping"), vm_node("b", displayname="db", state="Running")),
        )

        vm = vms.get_virtual_machine("b")

        assert vm is not None
        assert vm.name == "db"

    def test_get_missing(self, transport: ScriptedTransport, vms: VirtualMachines):
        transport.reply(LIST_VIRTUAL_MACHINES, vm_list(vm_node("a")))
        assert vms.get_virtual_machine("zzz") is None

    def test_get_error_state(self, transport: ScriptedTransport, vms: VirtualMachines):
        transport.reply(LIST_VIRTUAL_MACHINES, vm_list(vm_node("a", state="Error")))
        assert vms.get_virtual_machine("a") is None

    def test_no_context(self, client: CloudStackClient, overrides: MappingOverrides):
        vms = VirtualMachines(client, None, overrides=overrides, regions=FakeZones(), capabilities=FakeZones())
        with pytest.raises(ConfigurationError):
            vms.list_virtual_machines()

    def test_products(self, transport: ScriptedTransport, vms: VirtualMachines):
        transport.reply(LIST_SERVICE_OFFERINGS, offering_list(("small", "Small", 1, 512)))

        assert [p.id for p in vms.list_products(Architecture.I64)] == ["small"]
        assert vms.get_product("small") is not None
        assert vms.get_product("nope") is None

        fetches = len(transport.params_for(LIST_SERVICE_OFFERINGS))
        vms.invalidate()
        vms.list_products(Architecture.I64)
        assert len(transport.params_for(LIST_SERVICE_OFFERINGS)) == fetches + 1

    def test_firewalls(self, client: CloudStackClient, context: CloudStackContext, vms: VirtualMachines):
        assert vms.list_firewalls("vm-1") == []
        with_fw = VirtualMachines(
            client, context, firewalls=FakeFirewalls(), regions=FakeZones(), capabilities=FakeZones(),
        )
        assert with_fw.list_firewalls("vm-1") == ["vm-1-sg"]


class TestSubscription:
    def test_subscribed(self, transport: ScriptedTransport, vms: VirtualMachines):
        transport.reply(LIST_ZONES, "<listzonesresponse/>")
        assert vms.is_subscribed() is True
        assert transport.calls == [(LIST_ZONES, {"available": "true"})]

    @pytest.mark.parametrize("status", [401, 403, 531])
    def test_not_subscribed(self, transport: ScriptedTransport, vms: VirtualMachines, status: int):
        transport.reply(LIST_ZONES, ProviderError(status, "denied"))
        assert vms.is_subscribed() is False

    def test_other_error(self, transport: ScriptedTransport, vms: VirtualMachines):
        transport.reply(LIST_ZONES, ProviderError(500, "boom"))
        with pytest.raises(ProviderError):
            vms.is_subscribed()


class TestLifecycle:
    @pytest.mark.parametrize(
        ("method", "action"),
        [
            ("start", START_VIRTUAL_MACHINE),
            ("reboot", REBOOT_VIRTUAL_MACHINE),
            ("destroy", DESTROY_VIRTUAL_MACHINE),
        ],
    )
    def test_single_round_trip(self, transport: ScriptedTransport, vms: VirtualMachines, method: str, action: str):
        transport.reply(action, "<response><jobid>j1</jobid></response>")
        getattr(vms, method)("vm-1")
        assert transport.calls == [(action, {"id": "vm-1"})]

    def test_stop_waits_on_job(self, transport: ScriptedTransport, vms: VirtualMachines, waiter: RecordingJobWaiter):
        transport.reply(STOP_VIRTUAL_MACHINE, "<stopvirtualmachineresponse><jobid>j2</jobid></stopvirtualmachineresponse>")

        vms.stop("vm-1")

        assert transport.calls == [(STOP_VIRTUAL_MACHINE, {"id": "vm-1"})]
        ((document, label),) = waiter.waits
        assert label == "Pause Server"
        assert document.findtext("jobid") == "j2"

    def test_launch_end_to_end(self, transport: ScriptedTransport, clock: FakeClock, vms: VirtualMachines):
        transport.reply(DEPLOY_VIRTUAL_MACHINE, deploy_response("vm-new"))
        transport.reply(
            LIST_VIRTUAL_MACHINES,
            vm_list(),
            vm_list(vm_node("vm-new", displayname="web", state="Starting")),
        )

        vm = vms.launch("tpl-1", SMALL, name="web", tags={"role": "web"})

        assert vm.id == "vm-new"
        assert vm.state is VmState.PENDING
        assert clock.sleeps == [0.25]


class TestUnsupported:
    def test_clone(self, vms: VirtualMachines):
        with pytest.raises(OperationNotSupportedError):
            vms.clone("vm-1", "copy")

    def test_best_effort_features(self, vms: VirtualMachines):
        assert vms.get_console_output("vm-1") == ""
        assert vms.supports_analytics() is False
        vms.enable_analytics("vm-1")
        vms.disable_analytics("vm-1")
        assert vms.provider_term == "virtual machine"

    def test_statistics_are_empty(self, vms: VirtualMachines):
        start = datetime(2024, 1, 1, tzinfo=UTC)
        end = datetime(2024, 1, 2, tzinfo=UTC)
        assert vms.get_statistics("vm-1", start, end) == VmStatistics(vm_id="vm-1", start=start, end=end)
        assert vms.get_statistics_for_period("vm-1", start, end) == []

    def test_no_service_action_mapping(self, vms: VirtualMachines):
        assert vms.map_service_action("compute:launch") == []


class TestCreate:
    def test_from_config(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        monkeypatch.setenv("CLOUDSTACK_API_KEY", "k")
        monkeypatch.setenv("CLOUDSTACK_SECRET_KEY", "s")
        config = CloudStack(endpoint=ENDPOINT, region="zone-1", account="acct", mappings_dir=str(tmp_path))

        vms = config.create_provider()

        assert isinstance(vms, VirtualMachines)
        assert vms.context == CloudStackContext(endpoint=ENDPOINT, region_id="zone-1", account_number="acct")

    def test_missing_credentials(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("CLOUDSTACK_API_KEY", raising=False)
        monkeypatch.delenv("CLOUDSTACK_SECRET_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            CloudStack(endpoint=ENDPOINT).create_provider()




class TestWiring:
    def test_injected_placement_skips_zone_directory(
        self, monkeypatch: pytest.MonkeyPatch, client: CloudStackClient, context: CloudStackContext
    ):
        built: list[CloudStackClient] = []
        monkeypatch.setattr(
            "cumulus.providers.cloudstack.provider.ZoneDirectory", lambda c: built.append(c) or FakeZones()
        )
        zones = FakeZones()
        VirtualMachines(client, context, regions=zones, capabilities=zones)
        assert built == []

        VirtualMachines(client, context, regions=zones)
        assert built == [client]
