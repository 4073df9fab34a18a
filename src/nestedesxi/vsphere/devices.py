# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/vsphere/devices.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from nestedesxi.config.models import VmParameter

# SCSI unit 7 belongs to the controller itself
SCSI_CONTROLLER_UNIT = 7


@dataclass(frozen=True)
class ScsiControllerSpec:
    key: int
    bus_number: int = 0
    shared_bus: str = "noSharing"


@dataclass(frozen=True)
class DiskSpec:
    key: int
    controller_key: int
    unit_number: int
    capacity_kb: int
    file_name: str
    thin_provisioned: bool = True
    disk_mode: str = "persistent"


@dataclass(frozen=True)
class NicSpec:
    """
    vmxnet3 adapter. ``backing`` is whatever the backend returned from
    network_backing(); ``mac_address=None`` lets vCenter generate one.
    """
    key: int
    backing: Any = None
    mac_address: Optional[str] = None
    label: Optional[str] = None


DeviceSpec = Union[ScsiControllerSpec, DiskSpec, NicSpec]


@dataclass(frozen=True)
class DeviceChange:
    operation: Literal["add", "remove", "edit"]
    device: DeviceSpec


@dataclass
class VMConfigSpec:
    name: str
    guest_id: str
    num_cpus: int
    cores_per_socket: int
    memory_mb: int
    vm_path: str                      # "[datastore]"
    firmware: Literal["bios", "efi"] = "efi"
    secure_boot: bool = False
    http_boot: bool = False           # networkBootProtocol=httpv4
    nested_hv: bool = True
    devices: List[DeviceSpec] = field(default_factory=list)

    def extra_config(self) -> Dict[str, str]:
        if self.http_boot:
            return {"networkBootProtocol": "httpv4"}
        return {}


def disk_unit_number(index: int) -> int:
    if index >= SCSI_CONTROLLER_UNIT:
        return index + 1
    return index


def disk_file_name(datastore: str, vm_name: str, index: int) -> str:
    if index == 0:
        return f"[{datastore}] {vm_name}/{vm_name}.vmdk"
    return f"[{datastore}] {vm_name}/{vm_name}_{index}.vmdk"


class DeviceSpecBuilder:
    """
    Assembles the virtual hardware of a nested ESXi VM:
    one paravirtual SCSI controller, one thin disk per storage entry and
    one vmxnet3 adapter per network. Adapter 0 is always wired to the
    boot portgroup, whatever the template lists first.
    """

    def __init__(self, new_key: Callable[[], int]):
        self._new_key = new_key

    def scsi_controller(self) -> ScsiControllerSpec:
        return ScsiControllerSpec(key=self._new_key())

    def disk(
        self,
        index: int,
        *,
        controller: ScsiControllerSpec,
        datastore: str,
        capacity_gb: int,
        vm_name: str,
    ) -> DiskSpec:
        return DiskSpec(
            key=self._new_key(),
            controller_key=controller.key,
            unit_number=disk_unit_number(index),
            capacity_kb=capacity_gb * 1024 * 1024,
            file_name=disk_file_name(datastore, vm_name, index),
        )

    def nic(self, backing: Any) -> NicSpec:
        return NicSpec(key=self._new_key(), backing=backing)

    def build(
        self,
        *,
        vm_name: str,
        vm: VmParameter,
        boot_backing: Any,
        backing_for: Callable[[str], Any],
    ) -> List[DeviceSpec]:
        devices: List[DeviceSpec] = []

        ctl = self.scsi_controller()
        devices.append(ctl)

        for i, storage in enumerate(vm.storages):
            devices.append(
                self.disk(
                    i,
                    controller=ctl,
                    datastore=storage.datastore,
                    capacity_gb=storage.capacity_gb,
                    vm_name=vm_name,
                )
            )

        for i, network in enumerate(vm.networks):
            backing = boot_backing if i == 0 else backing_for(network)
            devices.append(self.nic(backing))

        return devices


def build_vm_config_spec(
    *,
    name: str,
    guest_id: str,
    vm: VmParameter,
    devices: List[DeviceSpec],
) -> VMConfigSpec:
    boot = vm.boot_option
    spec = VMConfigSpec(
        name=name,
        guest_id=guest_id,
        num_cpus=vm.cpu.core,
        cores_per_socket=vm.cpu.cores_per_socket,
        memory_mb=vm.memory.memory_gb * 1024,
        vm_path=f"[{vm.storages[0].datastore}]",
        devices=devices,
    )

    if boot.firmware == "bios":
        spec.firmware = "bios"
    elif boot.firmware == "efi":
        spec.firmware = "efi"
        spec.secure_boot = boot.secure_boot
    elif boot.firmware == "http-efi":
        # http boot needs the parent vSphere at 7.0u2 or later
        spec.firmware = "efi"
        spec.secure_boot = boot.secure_boot
        spec.http_boot = True
    else:
        raise ValueError(f"unsupported firmware {boot.firmware!r}")

    return spec
