from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_COLORS = {
    logging.DEBUG: "\033[0;34m",
    logging.INFO: "\033[0;32m",
    logging.WARNING: "\033[1;33m",
    logging.ERROR: "\033[0;31m",
    logging.CRITICAL: "\033[0;31m",
}
_RESET = "\033[0m"


class ColorFormatter(logging.Formatter):
    """Colour console records by level."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = _COLORS.get(record.levelno)
        return f"{color}{text}{_RESET}" if color else text


def configure_logging(level: int = logging.INFO, also_console: bool = True) -> None:
    """Configure the root logger for console output.

    The workspace log file is attached separately with attach_log_file() once
    the workspace exists, so nothing is written to disk before that point.
    """

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    existing = getattr(logger, "_zori_console", None)
    if existing is not None:
        existing.setLevel(level)
        return

    if not also_console:
        return

    console = logging.StreamHandler()
    console.setLevel(level)
    if sys.stderr.isatty():
        console.setFormatter(ColorFormatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    else:
        console.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console)
    setattr(logger, "_zori_console", console)


def attach_log_file(log_path: Path, level: int = logging.DEBUG) -> logging.Handler:
    """Append all records to ``log_path``. Returns the handler for detach_log_file()."""

    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root = logging.getLogger()
    if root.level > level:
        root.setLevel(level)
    root.addHandler(handler)
    logging.getLogger(__name__).info("Logging to %s", log_path)
    return handler


def detach_log_file(handler: Optional[logging.Handler]) -> None:
    if handler is None:
        return
    handler.flush()
    logging.getLogger().removeHandler(handler)
    handler.close()
