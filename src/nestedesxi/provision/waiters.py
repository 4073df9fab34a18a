# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/provision/waiters.py

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from nestedesxi.errors import CancellationError
from nestedesxi.vsphere.backend import POWERED_OFF, VirtualizationBackend

GUEST_IP_INTERVAL = 60.0
POWER_OFF_INTERVAL = 10.0


class GuestIPWaiter:
    """
    Polls the guest IP reported by VMware Tools until it equals the
    address handed to the installer. The ESXi installer reboots into the
    configured IP, so a match means the install has finished.

    Unbounded on purpose: there is no timeout, only cancellation.
    """

    def __init__(
        self,
        backend: VirtualizationBackend,
        *,
        cancel: threading.Event,
        interval: float = GUEST_IP_INTERVAL,
        log: Optional[logging.Logger] = None,
        on_check: Optional[Callable[[Optional[str]], None]] = None,
    ):
        self.backend = backend
        self.cancel = cancel
        self.interval = interval
        self.log = log or logging.getLogger("nestedesxi")
        self.on_check = on_check

    def wait(self, vm: Any, target_ip: str, hostname: str) -> None:
        while True:
            if self.cancel.wait(self.interval):
                raise CancellationError(f"cancelled while waiting for the IP of {hostname}")

            current = self.backend.guest_ip(vm)
            if self.on_check:
                self.on_check(current)

            if current == target_ip:
                self.log.info("IP address for %s is expected %s.", hostname, current)
                return

            self.log.info(
                "Check to install status for %s. Current ip address is %s.",
                hostname, current or "null",
            )


class PowerOffWaiter:
    """Polls the power state after a guest shutdown request."""

    def __init__(
        self,
        backend: VirtualizationBackend,
        *,
        cancel: threading.Event,
        interval: float = POWER_OFF_INTERVAL,
        log: Optional[logging.Logger] = None,
    ):
        self.backend = backend
        self.cancel = cancel
        self.interval = interval
        self.log = log or logging.getLogger("nestedesxi")

    def wait(self, vm: Any, hostname: str) -> None:
        while self.backend.power_state(vm) != POWERED_OFF:
            if self.cancel.wait(self.interval):
                raise CancellationError(f"cancelled while waiting for {hostname} to power off")
        self.log.info("%s is powered off.", hostname)
