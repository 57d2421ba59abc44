"""
Loguru sink configuration shared by the API, CLI and main entry point.
"""

from __future__ import annotations

import sys

from loguru import logger

from config import get_settings

CONSOLE_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def configure_logging(level: str | None = None, log_file: str | None = None) -> None:
    """
    Replace loguru's default sink with the project format.

    Args:
        level: Minimum level for stderr (defaults to settings.log_level)
        log_file: Optional file sink (defaults to settings.log_file)
    """
    settings = get_settings()
    level = level or settings.log_level
    log_file = log_file if log_file is not None else settings.log_file

    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
        )
    logger.debug(f"Logging configured (level={level}, file={log_file or '-'})")
