# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/vsphere/backend.py

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from .devices import DeviceChange, VMConfigSpec

POWERED_ON = "poweredOn"
POWERED_OFF = "poweredOff"


@dataclass(frozen=True)
class NetworkAdapter:
    """Network adapter as read back from a VM's hardware."""
    key: int
    label: str
    mac_address: Optional[str]
    kind: str = "vmxnet3"


class KeyAllocator:
    """
    Hands out temporary device keys for a new config spec: -200, -201, ...
    vCenter replaces them with real keys when the spec is applied.
    """

    def __init__(self, start: int = -200):
        self._next = start

    def __call__(self) -> int:
        key = self._next
        self._next -= 1
        return key


class VirtualizationBackend(Protocol):
    """
    Management-plane operations one provisioning worker needs.

    Object handles (datacenter, folder, pool, network, vm, task) are
    opaque to callers. find_vm() returns None for a missing VM; every
    other failure raises BackendError or NotFoundError.
    """

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def find_datacenter(self, name: str) -> Any: ...

    def find_folder(self, datacenter: Any, path: str) -> Any: ...

    def find_resource_pool(self, datacenter: Any, path: str) -> Any: ...

    def find_network(self, datacenter: Any, name: str) -> Any: ...

    def network_backing(self, network: Any) -> Any: ...

    def find_vm(self, datacenter: Any, name: str) -> Optional[Any]: ...

    def new_key(self) -> int: ...

    def create_vm(self, folder: Any, pool: Any, spec: VMConfigSpec) -> Any: ...

    def power_on(self, vm: Any) -> Any: ...

    def shutdown_guest(self, vm: Any) -> None: ...

    def reconfigure(self, vm: Any, changes: List[DeviceChange]) -> Any: ...

    def network_adapters(self, vm: Any) -> List[NetworkAdapter]: ...

    def guest_ip(self, vm: Any) -> Optional[str]: ...

    def power_state(self, vm: Any) -> str: ...

    def wait_for_task(self, task: Any, cancel: threading.Event) -> Any: ...
