from conftest import make_config
from nestedesxi.config.models import VmParameter
from nestedesxi.vsphere.backend import KeyAllocator
from nestedesxi.vsphere.devices import (
    DeviceSpecBuilder,
    DiskSpec,
    NicSpec,
    ScsiControllerSpec,
    build_vm_config_spec,
)


def _vm(storages=2, networks=("pg-final", "pg-second"), firmware="efi", secure_boot=False):
    return VmParameter.model_validate({
        "cpu": {"core": 4, "coreperscket": 2},
        "memory": {"memoryGB": 16},
        "networks": list(networks),
        "storages": [{"datastore": f"ds{i}", "capacityGB": 10 + i} for i in range(storages)],
        "bootoption": {"firmware": firmware, "secureboot": secure_boot},
    })


def _build(vm, name="esxi01.lab.local"):
    return DeviceSpecBuilder(KeyAllocator()).build(
        vm_name=name,
        vm=vm,
        boot_backing="boot",
        backing_for=lambda net: f"backing:{net}",
    )


def test_device_order_and_keys():
    devices = _build(_vm())

    assert isinstance(devices[0], ScsiControllerSpec)
    assert devices[0].bus_number == 0
    assert devices[0].shared_bus == "noSharing"
    assert [type(d) for d in devices[1:]] == [DiskSpec, DiskSpec, NicSpec, NicSpec]

    keys = [d.key for d in devices]
    assert len(set(keys)) == len(keys)


def test_eight_disks_skip_unit_seven():
    disks = [d for d in _build(_vm(storages=8)) if isinstance(d, DiskSpec)]
    assert [d.unit_number for d in disks] == [0, 1, 2, 3, 4, 5, 6, 8]


def test_disk_paths_capacity_and_controller():
    devices = _build(_vm(storages=3), name="esxi01")
    ctl = devices[0]
    disks = [d for d in devices if isinstance(d, DiskSpec)]

    assert [d.file_name for d in disks] == [
        "[ds0] esxi01/esxi01.vmdk",
        "[ds1] esxi01/esxi01_1.vmdk",
        "[ds2] esxi01/esxi01_2.vmdk",
    ]
    assert disks[0].capacity_kb == 10 * 1024 * 1024
    assert all(d.controller_key == ctl.key for d in disks)
    assert all(d.thin_provisioned for d in disks)


def test_first_adapter_is_forced_to_boot_network():
    nics = [d for d in _build(_vm(networks=("pg-final", "pg-second", "pg-third"))) if isinstance(d, NicSpec)]
    assert [n.backing for n in nics] == ["boot", "backing:pg-second", "backing:pg-third"]
    assert all(n.mac_address is None for n in nics)


def test_config_spec_from_template():
    cfg = make_config()
    spec = build_vm_config_spec(
        name="esxi01.lab.local",
        guest_id="vmkernel7Guest",
        vm=cfg.vm_parameter,
        devices=[],
    )
    assert spec.num_cpus == 4
    assert spec.cores_per_socket == 2
    assert spec.memory_mb == 16 * 1024
    assert spec.vm_path == "[ds1]"
    assert spec.nested_hv is True
    assert spec.firmware == "efi"
    assert spec.extra_config() == {}


def test_firmware_variants():
    bios = build_vm_config_spec(name="x", guest_id="g", vm=_vm(firmware="bios", secure_boot=True), devices=[])
    assert (bios.firmware, bios.secure_boot, bios.http_boot) == ("bios", False, False)

    efi = build_vm_config_spec(name="x", guest_id="g", vm=_vm(firmware="efi", secure_boot=True), devices=[])
    assert (efi.firmware, efi.secure_boot, efi.http_boot) == ("efi", True, False)

    http = build_vm_config_spec(name="x", guest_id="g", vm=_vm(firmware="http-efi"), devices=[])
    assert (http.firmware, http.secure_boot, http.http_boot) == ("efi", False, True)
    assert http.extra_config() == {"networkBootProtocol": "httpv4"}


def test_key_allocator_counts_down():
    keys = KeyAllocator()
    assert [keys(), keys(), keys()] == [-200, -201, -202]
