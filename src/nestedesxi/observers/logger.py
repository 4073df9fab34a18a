# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/observers/logger.py
from __future__ import annotations

import logging

from .events import BaseEvent, HostFinished, PlanFailed


class LoggerObserver:
    """
    Mirrors events into the run log file. Failures are raised to WARNING
    so they also reach the console handler.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts", "vcenter", "datacenter"))

        level = logging.DEBUG
        if isinstance(event, PlanFailed):
            level = logging.WARNING
        elif isinstance(event, HostFinished) and event.status == "FAILED":
            level = logging.WARNING
        self.logger.log(level, "[EVENT] %s: %s", etype, msg)
