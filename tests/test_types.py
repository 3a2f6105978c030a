from __future__ import annotations

import pytest

from cumulus.types import Platform, ProductOffering, VirtualMachineRecord

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestPlatformGuess:
    @pytest.mark.parametrize(
        ("name", "platform"),
        [
            ("Windows Server 2008 R2", Platform.WINDOWS),
            ("CentOS 5.5 (64-bit) no GUI", Platform.CENTOS),
            ("ubuntu-22.04-server", Platform.UBUNTU),
            ("Red Hat Enterprise 6", Platform.RHEL),
            ("Generic Linux", Platform.UNIX),
            ("my-appliance", Platform.UNKNOWN),
            (None, Platform.UNKNOWN),
        ],
    )
    def test_guess(self, name: str | None, platform: Platform):
        assert Platform.guess(name) is platform


class TestProductOffering:
    def test_label(self):
        product = ProductOffering.from_offering("m1", "Medium", cpu=2, ram_mb=4096)
        assert product.name == "Medium (2 CPU/4096MB RAM)"
        assert product.description == product.name
        assert product.disk_gb == 1


class TestVirtualMachineRecord:
    def test_tags_are_copied_and_frozen(self):
        source = {"hypervisor": "KVM"}
        vm = VirtualMachineRecord(
            id="vm-1", name="vm-1", description="vm-1",
            region_id="z", datacenter_id="z", tags=source,
        )
        source["hypervisor"] = "Xen"
        assert vm.get_tag("hypervisor") == "KVM"
        assert vm.get_tag("missing", "default") == "default"
        with pytest.raises(TypeError):
            vm.tags["x"] = "y"  # type: ignore[index]

    def test_default_flags(self):
        vm = VirtualMachineRecord(id="a", name="a", description="a", region_id="z", datacenter_id="z")
        assert (vm.clonable, vm.imagable, vm.pausable, vm.persistent) == (False, False, True, True)
