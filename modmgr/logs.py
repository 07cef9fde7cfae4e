from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

LOGGER_NAME = "modmgr"
LOG_LEVEL_ENV_VAR = "MODMGR_LOG_LEVEL"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
FILE_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3

logger = logging.getLogger(LOGGER_NAME)

_file_handler: Optional[RotatingFileHandler] = None


def _resolve_level(level_name: Optional[str]) -> int:
    name = (level_name or os.environ.get(LOG_LEVEL_ENV_VAR) or "INFO").upper()
    resolved = getattr(logging, name, None)
    if not isinstance(resolved, int):
        logger.warning(f"Invalid log level name: {name}. Defaulting to INFO.")
        return logging.INFO
    return resolved


def setup_logging(level_name: Optional[str] = None) -> None:
    """Attach a rich console handler to the package logger.

    Safe to call more than once; previously attached console handlers are
    replaced so repeated CLI invocations in one interpreter do not duplicate
    output.
    """
    level = _resolve_level(level_name)
    logger.propagate = False
    for handler in logger.handlers[:]:
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        log_time_format=LOG_DATE_FORMAT,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    console_handler.setLevel(level)
    logger.addHandler(console_handler)
    logger.setLevel(level)


def add_file_logging(log_dir: Path, level_name: str = "INFO") -> Path:
    """Write the package log to ``log_dir/modmgr.log`` as well."""
    global _file_handler
    if _file_handler and _file_handler in logger.handlers:
        logger.removeHandler(_file_handler)
        _file_handler.close()

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "modmgr.log"
    _file_handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    _file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    _file_handler.setLevel(_resolve_level(level_name))
    logger.addHandler(_file_handler)
    return log_file
