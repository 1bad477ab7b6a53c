"""Central logging configuration for the emission factor matcher.

This module handles FILE LOGGING ONLY - for console output, use utils.console.

Usage:
    from emission_matcher.utils.logging import get_logger, init_logging
    init_logging("match")  # once at app start (e.g., in main.py)
    logger = get_logger(__name__)
    logger.info("Batch 3/10: response in 2100ms")  # Goes to file only

Features:
    * One log file per run: ./logs/{name}_YYYYmmdd_HHMMSS.log
    * Format: timestamp | level | module:function:line | message
    * File level from LOG_LEVEL (default DEBUG)
"""
from __future__ import annotations

import datetime
import logging
import os
from pathlib import Path
from typing import Optional

_INITIALIZED = False
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
# Updated by init_logging
LOG_FILE: Optional[Path] = None

FILE_FORMAT = (
    "%(asctime)s.%(msecs)03d | %(levelname)-8s | "
    "%(name)s:%(funcName)s:%(lineno)d | %(message)s"
)
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "requests")


def _level_from_env(default: int = logging.DEBUG) -> int:
    name = os.getenv("LOG_LEVEL", "").upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def init_logging(name: str = "match", file_level: Optional[int] = None) -> Path:
    """Initialize file logging once. Safe to call multiple times.

    Args:
        name: Base name for the log file; a timestamp is appended.
        file_level: Minimum level written to the file. Defaults to LOG_LEVEL
            or DEBUG.

    Returns:
        Path of the active log file.
    """
    global _INITIALIZED, LOG_FILE
    if _INITIALIZED and LOG_FILE is not None:
        return LOG_FILE
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    LOG_FILE = LOG_DIR / f"{name}_{timestamp}.log"

    file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
    file_handler.setLevel(file_level if file_level is not None else _level_from_env())
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(file_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _INITIALIZED = True
    return LOG_FILE


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name (usually __name__)."""
    return logging.getLogger(name)


__all__ = ["init_logging", "get_logger", "LOG_FILE"]
