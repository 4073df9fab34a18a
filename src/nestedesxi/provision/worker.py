# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/provision/worker.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from nestedesxi.config.models import FleetConfig
from nestedesxi.errors import BackendError, CancellationError, ProvisionError
from nestedesxi.fleet.planner import HostIdentity
from nestedesxi.installer.client import InstallerClient, RequestPayload
from nestedesxi.observers.dispatcher import EventBus
from nestedesxi.observers.events import (
    GuestIPChecked,
    HostFinished,
    HostStarted,
    HostStateChanged,
    InstallRegistered,
    new_ctx,
    now,
)
from nestedesxi.vsphere.backend import NetworkAdapter, VirtualizationBackend
from nestedesxi.vsphere.devices import (
    DeviceChange,
    DeviceSpecBuilder,
    NicSpec,
    build_vm_config_spec,
)

from .waiters import GUEST_IP_INTERVAL, POWER_OFF_INTERVAL, GuestIPWaiter, PowerOffWaiter

# Lifecycle states
INIT = "init"
SKIPPED = "skipped"
CREATING = "creating"
CREATED = "created"
REQUESTING_GUEST_INSTALL = "requesting_guest_install"
POWERING_ON = "powering_on"
AWAITING_GUEST_IP = "awaiting_guest_ip"
NETWORK_RECONFIGURING = "network_reconfiguring"
SHUTTING_DOWN = "shutting_down"
REMOVING_BOOT_ADAPTER = "removing_boot_adapter"
ADDING_FINAL_ADAPTER = "adding_final_adapter"
POWERING_ON_AGAIN = "powering_on_again"
RECONFIGURING_ADAPTER_IN_PLACE = "reconfiguring_adapter_in_place"
NOTIFY_INSTALL_COMPLETE = "notify_install_complete"
DONE = "done"
FAILED = "failed"
CANCELLED = "cancelled"

# entered even after a cancel: terminal markers, and the deregistration
# that cleans up a finished install
_UNCHECKED = (SKIPPED, NOTIFY_INSTALL_COMPLETE, DONE, FAILED, CANCELLED)

# vCenter labels adapters in creation order; the first one is on the boot portgroup
BOOT_ADAPTER_LABEL = "Network adapter 1"


@dataclass
class HostOutcome:
    hostname: str
    ip: str
    status: str                 # "OK" | "SKIPPED" | "FAILED" | "CANCELLED"
    state: str                  # last lifecycle state reached
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in ("OK", "SKIPPED")


@dataclass
class WorkerOptions:
    change_mac: bool = False
    guest_ip_interval: float = GUEST_IP_INTERVAL
    power_off_interval: float = POWER_OFF_INTERVAL


class HostProvisioningWorker:
    """
    Drives one nested ESXi from "absent" to "installed and running":

      init -> creating -> created -> requesting_guest_install -> powering_on
           -> awaiting_guest_ip -> network_reconfiguring
           -> (shutting_down -> removing_boot_adapter -> adding_final_adapter
               -> powering_on_again -> awaiting_guest_ip)      [change_mac]
              | reconfiguring_adapter_in_place                  [default]
           -> notify_install_complete -> done

    An existing VM short-circuits to ``skipped``. run() never raises,
    failures come back as a HostOutcome.
    """

    def __init__(
        self,
        identity: HostIdentity,
        cfg: FleetConfig,
        *,
        backend_factory: Callable[[], VirtualizationBackend],
        installer: InstallerClient,
        cancel: threading.Event,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        log: Optional[logging.Logger] = None,
        options: Optional[WorkerOptions] = None,
    ):
        self.identity = identity
        self.cfg = cfg
        self.backend_factory = backend_factory
        self.installer = installer
        self.cancel = cancel
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or new_ctx(
            vcenter=cfg.environment.vcenter.hostname,
            datacenter=cfg.environment.vcenter.datacenter,
        )
        self.log = log or logging.getLogger("nestedesxi")
        self.options = options or WorkerOptions()

        self.state = INIT
        self.history: List[str] = [INIT]
        self.payload: Optional[RequestPayload] = None

    # ------------------ helpers ------------------

    def _ctx(self) -> dict:
        return {**self.run_ctx, "ts": now()}

    def _enter(self, state: str) -> None:
        # nothing new is started on vCenter or the kickstart server once cancelled
        if state not in _UNCHECKED and self.cancel.is_set():
            raise CancellationError(f"cancelled before {state} on {self.identity.fqdn}")
        previous = self.state
        self.state = state
        self.history.append(state)
        self.log.debug("[%s] %s -> %s", self.identity.fqdn, previous, state)
        self.bus.emit(
            HostStateChanged(hostname=self.identity.fqdn, state=state, previous=previous, **self._ctx())
        )

    def _finish(
        self,
        status: str,
        error: Optional[BaseException] = None,
        state: Optional[str] = None,
    ) -> HostOutcome:
        outcome = HostOutcome(
            hostname=self.identity.fqdn,
            ip=self.identity.ip,
            status=status,
            state=state or self.state,
            error_kind=type(error).__name__ if error else None,
            error=str(error) if error else None,
        )
        self.bus.emit(
            HostFinished(
                hostname=outcome.hostname,
                status=outcome.status,
                state=outcome.state,
                error=outcome.error,
                **self._ctx(),
            )
        )
        return outcome

    # ------------------ entry point ------------------

    def run(self) -> HostOutcome:
        name = self.identity.fqdn
        self.bus.emit(HostStarted(hostname=name, ip=self.identity.ip, **self._ctx()))

        try:
            backend = self.backend_factory()
            backend.connect()
            try:
                status = self._provision(backend)
            finally:
                backend.close()
            return self._finish(status)

        except CancellationError as exc:
            self.log.warning("[%s] cancelled in state %s", name, self.state)
            return self._abort(CANCELLED, "CANCELLED", exc)

        except ProvisionError as exc:
            self.log.error("[%s] failed in state %s: %s", name, self.state, exc)
            return self._abort(FAILED, "FAILED", exc)

        except Exception as exc:
            self.log.exception("[%s] unexpected error in state %s", name, self.state)
            return self._abort(FAILED, "FAILED", exc)

    def _abort(self, terminal: str, status: str, exc: BaseException) -> HostOutcome:
        # the outcome reports where the host stopped, not the terminal marker
        stopped_in = self.state
        self._enter(terminal)
        return self._finish(status, exc, state=stopped_in)

    # ------------------ state machine ------------------

    def _provision(self, backend: VirtualizationBackend) -> str:
        env = self.cfg.environment
        vc = env.vcenter
        name = self.identity.fqdn

        dc = backend.find_datacenter(vc.datacenter)

        # init
        if backend.find_vm(dc, name) is not None:
            self.log.info("%s is existing. The create tasks will be skipped.", name)
            self._enter(SKIPPED)
            return "SKIPPED"
        self.log.info("%s is not existing. The create tasks will be started.", name)

        vm = self._create(backend, dc)
        boot_nic = self._boot_adapter(backend, vm)
        self.payload = self._build_payload(boot_nic.mac_address)

        self._enter(REQUESTING_GUEST_INSTALL)
        self.installer.register(self.payload)
        self.bus.emit(InstallRegistered(hostname=name, macaddress=self.payload.macaddress, **self._ctx()))

        self._enter(POWERING_ON)
        backend.wait_for_task(backend.power_on(vm), self.cancel)
        self.log.info("VM %s powered on.", name)

        self._await_guest_ip(backend, vm)

        self._enter(NETWORK_RECONFIGURING)
        final_net = backend.find_network(dc, self.cfg.vm_parameter.networks[0])
        final_backing = backend.network_backing(final_net)

        if self.options.change_mac:
            self._separate_mac(backend, vm, boot_nic, final_backing)
        else:
            self._enter(RECONFIGURING_ADAPTER_IN_PLACE)
            edit = DeviceChange(
                "edit",
                NicSpec(key=boot_nic.key, backing=final_backing, mac_address=boot_nic.mac_address),
            )
            backend.wait_for_task(backend.reconfigure(vm, [edit]), self.cancel)
            self.log.info("The network adapter port group for %s has been changed successfully.", name)

        # the registration is keyed by the MAC used for the install
        self._enter(NOTIFY_INSTALL_COMPLETE)
        self.installer.deregister(self.payload)

        self._enter(DONE)
        self.log.info("Installation for %s has been completed.", name)
        return "OK"

    def _create(self, backend: VirtualizationBackend, dc: Any) -> Any:
        self._enter(CREATING)
        env = self.cfg.environment
        vc = env.vcenter
        vmp = self.cfg.vm_parameter
        name = self.identity.fqdn

        folder = backend.find_folder(dc, vc.folder)
        pool = backend.find_resource_pool(dc, vc.resource_pool)
        boot_net = backend.find_network(dc, env.boot_portgroup)
        boot_backing = backend.network_backing(boot_net)

        guest_id = self.installer.guest_id(self.cfg.esxi_info.isofilename)

        def backing_for(network: str) -> Any:
            return backend.network_backing(backend.find_network(dc, network))

        devices = DeviceSpecBuilder(backend.new_key).build(
            vm_name=name,
            vm=vmp,
            boot_backing=boot_backing,
            backing_for=backing_for,
        )
        spec = build_vm_config_spec(name=name, guest_id=guest_id, vm=vmp, devices=devices)

        vm = backend.wait_for_task(backend.create_vm(folder, pool, spec), self.cancel)
        self._enter(CREATED)
        self.log.info("VM %s Created.", name)
        return vm

    def _boot_adapter(self, backend: VirtualizationBackend, vm: Any) -> NetworkAdapter:
        for nic in backend.network_adapters(vm):
            if nic.kind == "vmxnet3" and nic.label == BOOT_ADAPTER_LABEL and nic.mac_address:
                return nic
        raise BackendError(f"Could not find the mac address of the boot network on {self.identity.fqdn}")

    def _build_payload(self, macaddress: str) -> RequestPayload:
        esxi = self.cfg.esxi_info
        return RequestPayload(
            macaddress=macaddress,
            password=esxi.password,
            hostname=self.identity.fqdn,
            ip=self.identity.ip,
            netmask=esxi.netmask,
            gateway=esxi.gateway,
            nameserver=esxi.nameserver,
            vlanid=esxi.vlanid,
            keyboard=esxi.keyboard,
            isofilename=esxi.isofilename,
            cli=list(esxi.cli),
            notvmpgcreate=esxi.not_vm_pg_create,
        )

    def _await_guest_ip(self, backend: VirtualizationBackend, vm: Any) -> None:
        self._enter(AWAITING_GUEST_IP)
        name = self.identity.fqdn

        def on_check(current: Optional[str]) -> None:
            self.bus.emit(GuestIPChecked(hostname=name, expected=self.identity.ip, current=current, **self._ctx()))

        GuestIPWaiter(
            backend,
            cancel=self.cancel,
            interval=self.options.guest_ip_interval,
            log=self.log,
            on_check=on_check,
        ).wait(vm, self.identity.ip, name)

    def _separate_mac(
        self,
        backend: VirtualizationBackend,
        vm: Any,
        boot_nic: NetworkAdapter,
        final_backing: Any,
    ) -> None:
        """
        Swap the install-time adapter for a fresh one on the final
        network so vmk0 and vmnic0 end up with different MACs.
        """
        name = self.identity.fqdn
        self.log.info("Change mac task for %s is started.", name)

        self._enter(SHUTTING_DOWN)
        self.log.info("Shutting down %s.", name)
        backend.shutdown_guest(vm)
        PowerOffWaiter(
            backend,
            cancel=self.cancel,
            interval=self.options.power_off_interval,
            log=self.log,
        ).wait(vm, name)

        self._enter(REMOVING_BOOT_ADAPTER)
        self.log.info("Remove boot vnic for %s.", name)
        remove = DeviceChange("remove", NicSpec(key=boot_nic.key, mac_address=boot_nic.mac_address))
        backend.wait_for_task(backend.reconfigure(vm, [remove]), self.cancel)

        self._enter(ADDING_FINAL_ADAPTER)
        self.log.info("Add new vnic for %s.", name)
        add = DeviceChange("add", NicSpec(key=backend.new_key(), backing=final_backing, mac_address=None))
        backend.wait_for_task(backend.reconfigure(vm, [add]), self.cancel)

        self._enter(POWERING_ON_AGAIN)
        self.log.info("Powering on %s.", name)
        backend.wait_for_task(backend.power_on(vm), self.cancel)

        self._await_guest_ip(backend, vm)
