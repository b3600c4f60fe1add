"""
Logging configuration for DOORLOCK.

Uses loguru; library modules log through ``from loguru import logger`` and
only the CLI installs sinks.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", log_file: Optional[Union[str, Path]] = None) -> None:
    """
    Replace loguru's default handler with DOORLOCK's sinks.

    Args:
        level: Minimum level for the console sink.
        log_file: Optional file that receives DEBUG and above, rotated daily.
    """
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True, backtrace=True, diagnose=False)
    if log_file:
        logger.add(
            Path(log_file),
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            backtrace=True,
            diagnose=False,
        )
    logger.debug(f"Logging initialized at {level}")
