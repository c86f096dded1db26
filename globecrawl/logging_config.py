"""Logging setup: one console and one rotating file handler on the package logger."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

PACKAGE_LOGGER = "globecrawl"
LOG_FILE_NAME = "globecrawl.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
MAX_BYTES = 1_000_000
BACKUP_COUNT = 3


def get_logger(name: str) -> logging.Logger:
    """Return a module logger under the package logger.

    Module loggers carry no handlers of their own; records propagate to the
    ``globecrawl`` logger configured by :func:`configure_logging`.
    """

    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def configure_logging(log_dir: str | os.PathLike[str] | None = None, level: str | None = None) -> Path:
    """Attach the console and rotating file handlers to the package logger.

    ``log_dir`` and ``level`` fall back to ``GLOBECRAWL_LOG_DIR`` and
    ``LOG_LEVEL``. Calling this again replaces the handlers, so there is only
    ever one writer on the log file. Returns the log file path.
    """

    log_dir = Path(log_dir or os.getenv("GLOBECRAWL_LOG_DIR", "logs"))
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return log_file
