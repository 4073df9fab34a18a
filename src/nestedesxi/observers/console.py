# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/observers/console.py
import typer

from .events import BaseEvent

_BASE = ("ts", "run_id", "vcenter", "datacenter")


class ConsoleObserver:
    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in _BASE)
        typer.echo(f"[{d['ts']}] {k} {data}")
