# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/fleet/addressing.py

from __future__ import annotations

import ipaddress
from typing import List

from nestedesxi.errors import ConfigError, ValidationError


def _ip(value: str, field: str) -> ipaddress.IPv4Address:
    try:
        return ipaddress.IPv4Address(value.strip())
    except ValueError:
        raise ConfigError(f"{field} {value!r} is not a valid IPv4 address") from None


class AddressAllocator:
    """
    Hands out one IPv4 address per fleet member, starting at ``start_ip``.

    Only the last octet is incremented. Running past .255 is rejected
    up front instead of wrapping around.
    """

    def __init__(self, *, start_ip: str, netmask: str, gateway: str):
        self.start = _ip(start_ip, "start_ip")
        self.gateway = _ip(gateway, "gateway")
        mask = _ip(netmask, "netmask")
        try:
            ipaddress.IPv4Network(f"0.0.0.0/{mask}")
        except ValueError:
            raise ConfigError(f"netmask {netmask!r} is not a valid netmask") from None
        self.netmask = mask

    def _network_of(self, addr: ipaddress.IPv4Address) -> int:
        return int(addr) & int(self.netmask)

    def validate(self) -> None:
        if self._network_of(self.gateway) != self._network_of(self.start):
            raise ValidationError(
                f"gateway {self.gateway} and start_ip {self.start} are not on the same "
                f"subnet (netmask {self.netmask})"
            )

    def address(self, index: int) -> str:
        last = int(self.start) & 0xFF
        if index < 0 or last + index > 255:
            raise ConfigError(
                f"address #{index} from {self.start} runs past the last octet (.255)"
            )
        return str(self.start + index)

    def addresses(self, replica: int) -> List[str]:
        last = int(self.start) & 0xFF
        if last + replica - 1 > 255:
            raise ConfigError(
                f"replica={replica} from start_ip {self.start} needs last octet up to "
                f"{last + replica - 1}, incrementing past .255 is not supported"
            )
        return [self.address(i) for i in range(replica)]
