# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/vsphere/client.py

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Any, Iterator, List, Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from nestedesxi.config.models import VCenter
from nestedesxi.errors import BackendError, CancellationError, NotFoundError

from .backend import KeyAllocator, NetworkAdapter
from .devices import (
    DeviceChange,
    DiskSpec,
    NicSpec,
    ScsiControllerSpec,
    VMConfigSpec,
)

log = logging.getLogger("nestedesxi")


@contextlib.contextmanager
def _vim_call(what: str) -> Iterator[None]:
    """Turn pyVmomi faults into BackendError."""
    try:
        yield
    except (vmodl.MethodFault, vmodl.RuntimeFault) as exc:
        msg = getattr(exc, "msg", None) or str(exc)
        raise BackendError(f"{what}: {msg}") from exc


# ----------------------------------------------------------------------
# Descriptor -> vim data objects
# ----------------------------------------------------------------------

def to_vim_device(dev) -> vim.vm.device.VirtualDevice:
    if isinstance(dev, ScsiControllerSpec):
        ctl = vim.vm.device.ParaVirtualSCSIController()
        ctl.key = dev.key
        ctl.busNumber = dev.bus_number
        ctl.sharedBus = dev.shared_bus
        return ctl

    if isinstance(dev, DiskSpec):
        disk = vim.vm.device.VirtualDisk()
        disk.key = dev.key
        disk.controllerKey = dev.controller_key
        disk.unitNumber = dev.unit_number
        disk.capacityInKB = dev.capacity_kb
        disk.backing = vim.vm.device.VirtualDisk.FlatVer2BackingInfo(
            fileName=dev.file_name,
            diskMode=dev.disk_mode,
            thinProvisioned=dev.thin_provisioned,
        )
        return disk

    if isinstance(dev, NicSpec):
        nic = vim.vm.device.VirtualVmxnet3()
        nic.key = dev.key
        nic.backing = dev.backing
        if dev.mac_address:
            nic.addressType = "manual"
            nic.macAddress = dev.mac_address
        else:
            nic.addressType = "generated"
        nic.connectable = vim.vm.device.VirtualDevice.ConnectInfo(
            startConnected=True,
            allowGuestControl=True,
            connected=True,
        )
        return nic

    raise TypeError(f"unsupported device descriptor {type(dev).__name__}")


def to_device_spec(change: DeviceChange, existing=None) -> vim.vm.device.VirtualDeviceSpec:
    """
    ``existing`` is the device currently on the VM, required for
    remove and edit.
    """
    op = vim.vm.device.VirtualDeviceSpec.Operation
    spec = vim.vm.device.VirtualDeviceSpec()

    if change.operation == "add":
        spec.operation = op.add
        spec.device = to_vim_device(change.device)
        if isinstance(change.device, DiskSpec):
            spec.fileOperation = vim.vm.device.VirtualDeviceSpec.FileOperation.create
    elif change.operation == "remove":
        if existing is None:
            raise BackendError(f"device {change.device.key} not found for removal")
        spec.operation = op.remove
        spec.device = existing
    elif change.operation == "edit":
        if existing is None:
            raise BackendError(f"device {change.device.key} not found for edit")
        if not isinstance(change.device, NicSpec):
            raise TypeError("only network adapters can be edited")
        existing.backing = change.device.backing
        spec.operation = op.edit
        spec.device = existing
    else:
        raise ValueError(f"unknown device operation {change.operation!r}")

    return spec


def to_config_spec(spec: VMConfigSpec) -> vim.vm.ConfigSpec:
    cs = vim.vm.ConfigSpec()
    cs.name = spec.name
    cs.guestId = spec.guest_id
    cs.numCPUs = spec.num_cpus
    cs.numCoresPerSocket = spec.cores_per_socket
    cs.memoryMB = spec.memory_mb
    cs.nestedHVEnabled = spec.nested_hv
    cs.files = vim.vm.FileInfo(vmPathName=spec.vm_path)
    cs.firmware = spec.firmware

    if spec.secure_boot:
        cs.bootOptions = vim.vm.BootOptions(efiSecureBootEnabled=True)

    extra = spec.extra_config()
    if extra:
        cs.extraConfig = [vim.option.OptionValue(key=k, value=v) for k, v in extra.items()]

    cs.deviceChange = [to_device_spec(DeviceChange("add", d)) for d in spec.devices]
    return cs


# ----------------------------------------------------------------------
# Backend
# ----------------------------------------------------------------------

class VSphereBackend:
    """
    VirtualizationBackend on top of pyVmomi. One instance per worker:
    each holds its own vCenter session.
    """

    def __init__(
        self,
        *,
        host: str,
        username: str,
        password: str,
        insecure: bool = True,
        port: int = 443,
        task_poll_interval: float = 1.0,
    ):
        self.host = host
        self.username = username
        self.password = password
        self.insecure = insecure
        self.port = port
        self.task_poll_interval = task_poll_interval
        self._si = None
        self.new_key = KeyAllocator()

    @classmethod
    def from_config(cls, vcenter: VCenter, **kwargs) -> "VSphereBackend":
        return cls(
            host=vcenter.hostname,
            username=vcenter.username,
            password=vcenter.password,
            insecure=vcenter.insecure,
            **kwargs,
        )

    # ------------------ session ------------------

    def connect(self) -> None:
        try:
            self._si = SmartConnect(
                host=self.host,
                user=self.username,
                pwd=self.password,
                port=self.port,
                disableSslCertValidation=self.insecure,
            )
        except (vmodl.MethodFault, OSError) as exc:
            raise BackendError(f"Error connecting to vCenter {self.host}: {exc}") from exc
        log.debug("connected to vCenter %s", self.host)

    def close(self) -> None:
        if self._si is not None:
            try:
                Disconnect(self._si)
            except (vmodl.MethodFault, OSError):
                log.debug("disconnect from %s failed", self.host, exc_info=True)
            self._si = None

    @property
    def content(self):
        if self._si is None:
            raise BackendError("not connected to vCenter")
        return self._si.RetrieveContent()

    # ------------------ lookup helpers ------------------

    def _find_in(self, root, vimtype, name: str):
        with _vim_call(f"search {vimtype.__name__} {name}"):
            view = self.content.viewManager.CreateContainerView(root, [vimtype], True)
            try:
                for obj in view.view:
                    if obj.name == name:
                        return obj
            finally:
                view.Destroy()
        return None

    def _by_path(self, path: str):
        with _vim_call(f"lookup {path}"):
            return self.content.searchIndex.FindByInventoryPath(path)

    @staticmethod
    def _inventory_path(obj) -> str:
        # stops below the root folder, which has no parent
        parts = []
        while obj is not None and obj.parent is not None:
            parts.append(obj.name)
            obj = obj.parent
        return "/".join(reversed(parts))

    def find_datacenter(self, name: str):
        dc = self._by_path(name)
        if not isinstance(dc, vim.Datacenter):
            dc = self._find_in(self.content.rootFolder, vim.Datacenter, name)
        if dc is None:
            raise NotFoundError(f"datacenter {name!r} not found")
        return dc

    def find_folder(self, datacenter, path: str):
        path = path.strip("/")
        if not path:
            return datacenter.vmFolder
        full = f"{self._inventory_path(datacenter)}/vm/{path}"
        folder = self._by_path(full)
        if not isinstance(folder, vim.Folder):
            raise NotFoundError(f"folder {full!r} not found")
        return folder

    def find_resource_pool(self, datacenter, path: str):
        path = path.strip("/")
        obj = self._by_path(f"{self._inventory_path(datacenter)}/host/{path}")
        if obj is None and "/" not in path:
            obj = self._find_in(datacenter.hostFolder, vim.ResourcePool, path)
            if obj is None:
                obj = self._find_in(datacenter.hostFolder, vim.ComputeResource, path)
        if isinstance(obj, vim.ComputeResource):
            obj = obj.resourcePool
        if not isinstance(obj, vim.ResourcePool):
            raise NotFoundError(f"resource pool {path!r} not found")
        return obj

    def find_network(self, datacenter, name: str):
        net = self._find_in(datacenter.networkFolder, vim.Network, name)
        if net is None:
            raise NotFoundError(f"network {name!r} not found")
        return net

    def network_backing(self, network):
        with _vim_call(f"backing info for {network.name}"):
            if isinstance(network, vim.dvs.DistributedVirtualPortgroup):
                port = vim.dvs.PortConnection(
                    portgroupKey=network.key,
                    switchUuid=network.config.distributedVirtualSwitch.uuid,
                )
                return vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo(port=port)
            if isinstance(network, vim.OpaqueNetwork):
                return vim.vm.device.VirtualEthernetCard.OpaqueNetworkBackingInfo(
                    opaqueNetworkId=network.summary.opaqueNetworkId,
                    opaqueNetworkType=network.summary.opaqueNetworkType,
                )
            return vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(
                network=network,
                deviceName=network.name,
            )

    def find_vm(self, datacenter, name: str) -> Optional[Any]:
        return self._find_in(datacenter.vmFolder, vim.VirtualMachine, name)

    # ------------------ operations ------------------

    def create_vm(self, folder, pool, spec: VMConfigSpec):
        with _vim_call(f"Failed to create VM {spec.name}"):
            return folder.CreateVM_Task(config=to_config_spec(spec), pool=pool)

    def power_on(self, vm):
        with _vim_call(f"Failed to start VM {vm.name}"):
            return vm.PowerOnVM_Task()

    def shutdown_guest(self, vm) -> None:
        with _vim_call(f"Failed to shut down guest {vm.name}"):
            vm.ShutdownGuest()

    def _device_by_key(self, vm, key: int):
        with _vim_call(f"read devices of {vm.name}"):
            for dev in vm.config.hardware.device:
                if dev.key == key:
                    return dev
        return None

    def reconfigure(self, vm, changes: List[DeviceChange]):
        specs = []
        for change in changes:
            existing = None
            if change.operation in ("remove", "edit"):
                existing = self._device_by_key(vm, change.device.key)
            specs.append(to_device_spec(change, existing))
        with _vim_call(f"Failed to reconfigure {vm.name}"):
            return vm.ReconfigVM_Task(spec=vim.vm.ConfigSpec(deviceChange=specs))

    # ------------------ properties ------------------

    def network_adapters(self, vm) -> List[NetworkAdapter]:
        adapters = []
        with _vim_call(f"Failed to read hardware of {vm.name}"):
            for dev in vm.config.hardware.device:
                if not isinstance(dev, vim.vm.device.VirtualEthernetCard):
                    continue
                kind = "vmxnet3" if isinstance(dev, vim.vm.device.VirtualVmxnet3) else type(dev).__name__
                adapters.append(
                    NetworkAdapter(
                        key=dev.key,
                        label=dev.deviceInfo.label if dev.deviceInfo else "",
                        mac_address=dev.macAddress or None,
                        kind=kind,
                    )
                )
        return adapters

    def guest_ip(self, vm) -> Optional[str]:
        with _vim_call(f"Failed to retrieve guest info of {vm.name}"):
            return vm.guest.ipAddress or None

    def power_state(self, vm) -> str:
        with _vim_call(f"Failed to retrieve power state of {vm.name}"):
            return str(vm.runtime.powerState)

    # ------------------ tasks ------------------

    def wait_for_task(self, task, cancel: threading.Event):
        """
        Poll a vCenter task until it finishes. The cancel event is checked
        between polls.
        """
        state = vim.TaskInfo.State
        while True:
            with _vim_call("Failed to read task state"):
                info = task.info
            if info.state == state.success:
                return info.result
            if info.state == state.error:
                msg = info.error.msg if info.error else "unknown error"
                raise BackendError(f"task {info.descriptionId} failed: {msg}")
            if cancel.wait(self.task_poll_interval):
                raise CancellationError(f"cancelled while waiting for task {info.descriptionId}")
