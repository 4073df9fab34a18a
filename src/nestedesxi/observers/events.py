# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single deploy invocation
    vcenter: str      # vcenter hostname
    datacenter: Optional[str]

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(vcenter: str, datacenter: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": now(),
        "run_id": run_id or str(uuid.uuid4()),
        "vcenter": vcenter,
        "datacenter": datacenter,
    }


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    hosts: List[str]      # "fqdn=ip"

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str


# ---------------------------------------------------------------------
# Fleet lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class FleetStarted(BaseEvent):
    replica: int
    change_mac: bool
    fail_fast: bool

@dataclass(frozen=True)
class FleetCancelled(BaseEvent):
    reason: str
    pending: List[str]

@dataclass(frozen=True)
class FleetSummary(BaseEvent):
    ok: int
    skipped: int
    failed: int
    cancelled: int


# ---------------------------------------------------------------------
# Per-host lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostStarted(BaseEvent):
    hostname: str
    ip: str

@dataclass(frozen=True)
class HostStateChanged(BaseEvent):
    hostname: str
    state: str
    previous: Optional[str] = None

@dataclass(frozen=True)
class GuestIPChecked(BaseEvent):
    hostname: str
    expected: str
    current: Optional[str]

@dataclass(frozen=True)
class InstallRegistered(BaseEvent):
    hostname: str
    macaddress: str

@dataclass(frozen=True)
class HostFinished(BaseEvent):
    hostname: str
    status: str       # "OK" | "SKIPPED" | "FAILED" | "CANCELLED"
    state: str
    error: Optional[str] = None
