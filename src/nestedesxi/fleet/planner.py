# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/fleet/planner.py

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from nestedesxi.config.models import EsxiInfo
from nestedesxi.observers.dispatcher import EventBus
from nestedesxi.observers.events import PlanComputed, PlanFailed, new_ctx

from .addressing import AddressAllocator
from .naming import fqdn, parse_name_template


@dataclass(frozen=True)
class HostIdentity:
    hostname: str     # short name from the template, e.g. esxi01
    fqdn: str         # VM name in vCenter and hostname sent to the kickstart server
    ip: str
    index: int        # 0-based position in the fleet


def plan(
    esxi: EsxiInfo,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> List[HostIdentity]:
    """
    Compute hostname and address for every replica.

    Validates the subnet and the last-octet range before anything is
    created, so a bad template never reaches vCenter.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx(vcenter="-", datacenter=None)
    try:
        template = parse_name_template(esxi.name_prefix)
        allocator = AddressAllocator(
            start_ip=esxi.start_ip,
            netmask=esxi.netmask,
            gateway=esxi.gateway,
        )
        allocator.validate()
        addresses = allocator.addresses(esxi.replica)

        identities = [
            HostIdentity(
                hostname=name,
                fqdn=fqdn(name, esxi.domain),
                ip=addresses[i],
                index=i,
            )
            for i, name in enumerate(template.hostnames(esxi.replica))
        ]

        if bus:
            bus.emit(PlanComputed(hosts=[f"{h.fqdn}={h.ip}" for h in identities], **ctx))
        return identities

    except Exception as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), **ctx))
        raise
