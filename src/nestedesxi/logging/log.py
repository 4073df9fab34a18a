# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/logging/log.py

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

DEFAULT_LOG_DIR = Path.home() / ".nestedesxi" / "logs"

# worker threads are named esxi_0, esxi_1, ... by the fleet executor
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)-10s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _handlers(log_path: Path, verbose: bool) -> list[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    trace = logging.FileHandler(log_path)
    trace.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)

    for h in (trace, console):
        h.setFormatter(formatter)
    return [trace, console]


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "nestedesxi",
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    Set up the logger for one deploy run.

    Every host worker logs through the same logger, so each line carries
    the thread name. The run log always gets DEBUG; the console follows
    ``verbose``. Returns the logger, the run id shared with the event
    observers, and the log file path.
    """
    run_id = str(uuid.uuid4())
    base_dir = base_dir or DEFAULT_LOG_DIR
    base_dir.mkdir(parents=True, exist_ok=True)

    started = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{started}-{run_id}.log"

    logger = logging.getLogger(name)
    for old in list(logger.handlers):
        old.close()
        logger.removeHandler(old)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for h in _handlers(log_path, verbose):
        logger.addHandler(h)

    logger.info("nestedesxi run %s, trace in %s", run_id, log_path)
    return logger, run_id, log_path
