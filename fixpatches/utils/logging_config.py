"""
Logging Setup
=============
Root logger wiring shared by the API server and the CLI.

Handlers:
    console  — stderr, one colour per level
    file     — LOG_DIR/fix_patches_YYYYMMDD.log, plain text (skipped when
               LOG_DIR is empty)
"""
import logging
import os
import sys
from datetime import datetime

from fixpatches.core.config import LOG_DIR

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that must follow the configured level instead of their own defaults
_FOLLOWING_LOGGERS = ("fixpatches", "uvicorn", "uvicorn.error", "uvicorn.access")


class ColoredFormatter(logging.Formatter):
    """LOG_FORMAT wrapped in an ANSI colour chosen by level."""

    COLORS = {
        logging.DEBUG: "\x1b[36m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self):
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record):
        text = super().format(record)
        color = self.COLORS.get(record.levelno)
        return f"{color}{text}{self.RESET}" if color else text


def verbosity_to_level(verbosity: int) -> int:
    """CLI verbosity: 0 = warnings only, 1 = info, 2+ = debug."""
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level=logging.INFO, log_dir=LOG_DIR):
    """Replace the root handlers with console (+ daily file) handlers at ``level``."""
    level = _resolve_level(level)
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter())
    root_logger.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"fix_patches_{datetime.now().strftime('%Y%m%d')}.log")
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name in _FOLLOWING_LOGGERS:
        following = logging.getLogger(name)
        following.setLevel(level)
        following.propagate = True
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    root_logger.debug("Logging at %s (console%s)", logging.getLevelName(level), " + file" if log_dir else "")
