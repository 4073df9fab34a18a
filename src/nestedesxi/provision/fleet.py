# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/provision/fleet.py

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from nestedesxi.config.models import FleetConfig
from nestedesxi.fleet.planner import HostIdentity, plan
from nestedesxi.installer.client import InstallerClient
from nestedesxi.observers.dispatcher import EventBus
from nestedesxi.observers.events import (
    FleetCancelled,
    FleetStarted,
    FleetSummary,
    new_ctx,
    now,
)
from nestedesxi.vsphere.backend import VirtualizationBackend

from .worker import HostOutcome, HostProvisioningWorker, WorkerOptions

# why a run stopped early
CANCEL_FAIL_FAST = "fail-fast"
CANCEL_INTERRUPTED = "interrupted"


@dataclass
class FleetReport:
    outcomes: List[HostOutcome] = field(default_factory=list)
    cancelled: bool = False
    cancel_reason: Optional[str] = None     # CANCEL_FAIL_FAST | CANCEL_INTERRUPTED

    def add(self, outcome: HostOutcome) -> None:
        self.outcomes.append(outcome)

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def ok(self) -> bool:
        return not self.cancelled and all(o.succeeded for o in self.outcomes)

    def summary(self) -> str:
        return (
            f"OK={self.count('OK')} SKIPPED={self.count('SKIPPED')} "
            f"FAILED={self.count('FAILED')} CANCELLED={self.count('CANCELLED')}"
        )


@dataclass
class FleetOptions:
    change_mac: bool = False
    fail_fast: bool = False
    worker: WorkerOptions = field(default_factory=WorkerOptions)
    # how often the join loop wakes up to look at the cancel signal
    join_interval: float = 0.5


class FleetController:
    """
    Starts one HostProvisioningWorker per replica, all at once, and joins
    on either "every worker finished" or "cancel signal set".

    Every worker gets its own backend from ``backend_factory``; the cancel
    event is shared, so a cancellation reaches every worker wherever it
    is waiting. With ``fail_fast`` the first failed host cancels the rest.
    """

    def __init__(
        self,
        cfg: FleetConfig,
        *,
        backend_factory: Callable[[], VirtualizationBackend],
        installer: InstallerClient,
        bus: Optional[EventBus] = None,
        log: Optional[logging.Logger] = None,
        options: Optional[FleetOptions] = None,
        run_id: Optional[str] = None,
    ):
        self.cfg = cfg
        self.backend_factory = backend_factory
        self.installer = installer
        self.bus = bus or EventBus()
        self.log = log or logging.getLogger("nestedesxi")
        self.options = options or FleetOptions()
        self.run_ctx = new_ctx(
            vcenter=cfg.environment.vcenter.hostname,
            datacenter=cfg.environment.vcenter.datacenter,
            run_id=run_id,
        )

    def _ctx(self) -> dict:
        return {**self.run_ctx, "ts": now()}

    def identities(self) -> List[HostIdentity]:
        return plan(self.cfg.esxi_info, bus=self.bus, run_ctx=self._ctx())

    def _worker(self, identity: HostIdentity, cancel: threading.Event) -> HostProvisioningWorker:
        worker_opts = WorkerOptions(
            change_mac=self.options.change_mac,
            guest_ip_interval=self.options.worker.guest_ip_interval,
            power_off_interval=self.options.worker.power_off_interval,
        )
        return HostProvisioningWorker(
            identity,
            self.cfg,
            backend_factory=self.backend_factory,
            installer=self.installer,
            cancel=cancel,
            bus=self.bus,
            run_ctx=self.run_ctx,
            log=self.log,
            options=worker_opts,
        )

    def run(self, cancel: Optional[threading.Event] = None) -> FleetReport:
        cancel = cancel or threading.Event()
        hosts = self.identities()
        report = FleetReport()

        self.bus.emit(
            FleetStarted(
                replica=len(hosts),
                change_mac=self.options.change_mac,
                fail_fast=self.options.fail_fast,
                **self._ctx(),
            )
        )
        for h in hosts:
            self.log.info("Scheduling %s (%s)", h.fqdn, h.ip)

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=len(hosts),
            thread_name_prefix="esxi",
        )
        pending: Dict[concurrent.futures.Future, HostIdentity] = {}
        try:
            for h in hosts:
                pending[executor.submit(self._worker(h, cancel).run)] = h

            while pending:
                if cancel.is_set():
                    break
                done, _ = concurrent.futures.wait(
                    pending,
                    timeout=self.options.join_interval,
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for fut in done:
                    pending.pop(fut)
                    outcome = fut.result()
                    report.add(outcome)
                    if (
                        self.options.fail_fast
                        and outcome.status == "FAILED"
                        and not cancel.is_set()
                    ):
                        self.log.error(
                            "%s failed and fail-fast is set, cancelling the remaining hosts",
                            outcome.hostname,
                        )
                        report.cancel_reason = CANCEL_FAIL_FAST
                        cancel.set()

            if cancel.is_set():
                report.cancelled = True
                report.cancel_reason = report.cancel_reason or CANCEL_INTERRUPTED

            if pending:
                names = sorted(h.fqdn for h in pending.values())
                self.log.warning("Received a cancel signal. All tasks canceled.")
                self.bus.emit(FleetCancelled(reason=report.cancel_reason, pending=names, **self._ctx()))
                for fut, h in pending.items():
                    report.add(
                        HostOutcome(
                            hostname=h.fqdn,
                            ip=h.ip,
                            status="CANCELLED",
                            state="unknown",
                            error_kind="CancellationError",
                            error="worker still running when the run was cancelled",
                        )
                    )
            else:
                self.log.info("All installation tasks have been completed.")
        finally:
            # never block on in-flight workers; they stop at their next poll
            executor.shutdown(wait=not pending, cancel_futures=True)

        self.bus.emit(
            FleetSummary(
                ok=report.count("OK"),
                skipped=report.count("SKIPPED"),
                failed=report.count("FAILED"),
                cancelled=report.count("CANCELLED"),
                **self._ctx(),
            )
        )
        return report
