"""Logging configuration for the diagnosis engine.

Sets up standard logging to stderr with a consistent format.
Modules either import the ``logger`` instance from here or create a
child logger with ``logging.getLogger(__name__)``.

Call :func:`configure_file_logging` to keep a timestamped copy of a run
under ``data/logs/`` (refinement token usage and cost are logged at INFO).
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path

logger = logging.getLogger("diagnosis-engine")
logger.setLevel(logging.INFO)

handler = logging.StreamHandler(sys.stderr)
handler.setLevel(logging.INFO)

# Shared between stderr and file handlers
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT)
handler.setFormatter(formatter)
logger.addHandler(handler)

# ``diagnosis_engine.*`` module loggers propagate to the package logger
_package_logger = logging.getLogger("diagnosis_engine")
_package_logger.setLevel(logging.INFO)
_package_logger.addHandler(handler)

DEFAULT_LOG_DIR = "data/logs"


def configure_file_logging(
    log_dir: str = DEFAULT_LOG_DIR,
    *,
    level: int = logging.INFO,
) -> logging.FileHandler:
    """Add a timestamped file handler to the engine loggers.

    Creates ``log_dir`` if it does not exist.  Returns the handler so
    callers (or tests) can remove it later.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    filename = log_path / f"diagnosis-engine_{timestamp}.log"

    file_handler = logging.FileHandler(str(filename), encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))

    for target in (logger, _package_logger):
        if level < target.level:
            target.setLevel(level)
        target.addHandler(file_handler)
    return file_handler


__all__ = ["configure_file_logging", "logger"]
