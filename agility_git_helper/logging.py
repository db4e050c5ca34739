"""Logging setup for ag.

The TUI owns the terminal, so log records go to a rotating file rather than
stderr. User-facing output stays on click.echo.
"""

from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import LOG_FILE

DEFAULT_MAX_BYTES = 2 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 3
DEFAULT_LOG_LEVEL = "WARNING"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER = "agility_git_helper"


def setup_logging(level: str | None = None, log_file: str | Path | None = None) -> logging.Logger:
    """Attach a rotating file handler to the package logger.

    Level resolution: explicit argument, then AG_LOG_LEVEL, then WARNING.
    Calling it again replaces the previous handler.
    """
    if level is None:
        level = os.environ.get("AG_LOG_LEVEL", DEFAULT_LOG_LEVEL)
    log_level = getattr(logging, level.upper(), logging.WARNING)

    log_path = Path(log_file) if log_file else LOG_FILE
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = RotatingFileHandler(
        log_path,
        maxBytes=DEFAULT_MAX_BYTES,
        backupCount=DEFAULT_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    logger.debug("logging initialized (level=%s, file=%s)", level, log_path)
    return logger


def sanitize_for_log(text: str) -> str:
    """Redact bearer tokens from text before it is logged."""
    return re.sub(r"Bearer [A-Za-z0-9._:+/=-]+", "Bearer [REDACTED]", text)
