# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/logging/log.py

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

LOGGER_NAME = "settled"

# thread name tells servers apart when configure runs with --workers
FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(message)s"
CONSOLE_FORMAT = "%(levelname)-7s %(message)s"


def default_log_dir() -> Path:
    return Path.home() / ".settled" / "logs"


def init_logging(
    *,
    base_dir: Optional[Path] = None,
    verbose: bool = False,
) -> Tuple[logging.Logger, str, Path]:
    """
    Route the ``settled`` logger to a per-run DEBUG file and to the console
    (INFO, or DEBUG when ``verbose``). Handlers from an earlier call are
    closed and replaced.

    Returns the logger, the run id and the log file path.
    """
    run_id = uuid.uuid4().hex[:12]
    base_dir = base_dir or default_log_dir()
    base_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{LOGGER_NAME}-{ts}-{run_id}.log"

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = False

    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.debug("run_id=%s log_file=%s", run_id, log_path)
    return logger, run_id, log_path
