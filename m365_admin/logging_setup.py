"""Loguru sink configuration shared by the command-line tools."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"


def configure_logging(level: str = "INFO", *, log_file: Path | None = None) -> int | None:
    """Replace loguru's default sink with one at ``level``.

    When ``log_file`` is given an append-mode file sink is added as well and
    its handler id is returned so callers can remove it again.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=CONSOLE_FORMAT)

    if log_file is None:
        return None

    log_file.parent.mkdir(parents=True, exist_ok=True)
    return logger.add(
        str(log_file),
        level="DEBUG",
        format=FILE_FORMAT,
        mode="a",
        encoding="utf-8",
        enqueue=False,
    )
