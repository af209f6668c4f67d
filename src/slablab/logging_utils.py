"""Run log for SlabLab.

Each run appends to ``slablab.log`` in its output directory. The logger stops
propagating while a run owns it, so CLI output stays clean; closing it
restores propagation for library and test use.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Tuple

LOG_FILENAME = "slablab.log"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def _drop_file_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


def setup_run_logger(
    output_dir: str,
    name: str = "slablab",
    level: int = logging.INFO,
) -> Tuple[logging.Logger, str]:
    os.makedirs(output_dir, exist_ok=True)
    log_path = os.path.join(output_dir, LOG_FILENAME)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    # A second run in the same process must not write to the previous run's file.
    _drop_file_handlers(logger)

    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)

    logger.info("=== SlabLab run started %s (output %s) ===", datetime.now().isoformat(), output_dir)
    return logger, log_path


def close_run_logger(name: str = "slablab") -> None:
    logger = logging.getLogger(name)
    _drop_file_handlers(logger)
    logger.propagate = True
