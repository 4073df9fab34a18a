# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/cli/app.py
from __future__ import annotations

import signal
import threading
from pathlib import Path

import typer

from nestedesxi.config.loader import load_config
from nestedesxi.config.models import FleetConfig
from nestedesxi.errors import ProvisionError
from nestedesxi.fleet.planner import plan
from nestedesxi.installer.client import InstallerClient
from nestedesxi.logging.log import DEFAULT_LOG_DIR, init_logging
from nestedesxi.observers.console import ConsoleObserver
from nestedesxi.observers.dispatcher import EventBus
from nestedesxi.observers.jsonfile import JsonFileObserver
from nestedesxi.observers.logger import LoggerObserver
from nestedesxi.provision.fleet import CANCEL_INTERRUPTED, FleetController, FleetOptions, FleetReport
from nestedesxi.provision.waiters import GUEST_IP_INTERVAL, POWER_OFF_INTERVAL
from nestedesxi.provision.worker import WorkerOptions
from nestedesxi.vsphere.client import VSphereBackend


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Nested ESXi provisioning CLI")

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def _load(config: Path) -> FleetConfig:
    try:
        return load_config(config)
    except ProvisionError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_CONFIG)


def print_report(report: FleetReport) -> None:
    typer.echo("")
    typer.secho("Summary", bold=True)
    for o in sorted(report.outcomes, key=lambda o: o.hostname):
        color = typer.colors.GREEN if o.succeeded else typer.colors.RED
        line = f"  {o.hostname:<32} {o.ip:<16} {o.status:<10} {o.state}"
        if o.error:
            line += f"  ({o.error_kind}: {o.error})"
        typer.secho(line, fg=color)
    typer.echo(f"  {report.summary()}")


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command("plan")
def plan_cmd(
    config: Path = typer.Argument(Path("template.yaml"), help="Fleet definition YAML"),
):
    """
    Validate the config and print the hostname / IP of every nested ESXi.
    Nothing is created.
    """
    cfg = _load(config)
    try:
        hosts = plan(cfg.esxi_info)
    except ProvisionError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_CONFIG)

    for h in hosts:
        typer.echo(f"{h.index:>3}  {h.fqdn:<32} {h.ip}")


@app.command()
def deploy(
    config: Path = typer.Argument(Path("template.yaml"), help="Fleet definition YAML"),
    changemac: bool = typer.Option(
        False,
        "--changemac",
        help="Separate the mac address of vmk0 and vmnic0 after install",
    ),
    fail_fast: bool = typer.Option(
        False,
        "--fail-fast",
        help="Cancel every host as soon as one host fails",
    ),
    poll_interval: float = typer.Option(
        GUEST_IP_INTERVAL,
        "--poll-interval",
        min=0.1,
        help="Seconds between guest IP checks",
    ),
    log_dir: Path = typer.Option(DEFAULT_LOG_DIR, "--log-dir"),
    debug: bool = typer.Option(False, "--debug"),
):
    """
    Create the nested ESXi VMs and drive each through a kickstart install.
    """
    cfg = _load(config)

    logger, run_id, log_path = init_logging(base_dir=log_dir, verbose=debug)

    typer.echo("")
    typer.secho("Nested ESXi Deployment Started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo(f"  vCenter  : {cfg.environment.vcenter.hostname}")
    typer.echo(f"  Replicas : {cfg.esxi_info.replica}")
    typer.echo("")

    observers = [
        ConsoleObserver(),
        LoggerObserver(logger),
        JsonFileObserver(log_dir / f"{run_id}.jsonl"),
    ]
    bus = EventBus(observers=observers)

    vcenter = cfg.environment.vcenter
    controller = FleetController(
        cfg,
        backend_factory=lambda: VSphereBackend.from_config(vcenter),
        installer=InstallerClient(cfg.environment.kickstart_url),
        bus=bus,
        log=logger,
        options=FleetOptions(
            change_mac=changemac,
            fail_fast=fail_fast,
            worker=WorkerOptions(
                guest_ip_interval=poll_interval,
                power_off_interval=POWER_OFF_INTERVAL,
            ),
        ),
        run_id=run_id,
    )

    cancel = threading.Event()

    def _on_interrupt(signum, frame):
        logger.warning("Received an interrupt signal, cancelling.")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        report = controller.run(cancel)
    except ProvisionError as exc:
        logger.error("Error: %s", exc)
        raise typer.Exit(EXIT_CONFIG)
    finally:
        signal.signal(signal.SIGINT, previous)

    print_report(report)

    if report.cancel_reason == CANCEL_INTERRUPTED:
        raise typer.Exit(EXIT_CANCELLED)
    if not report.ok:
        raise typer.Exit(EXIT_FAILED)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
