"""
Logging setup using loguru.

Console and file sinks are driven by LoggingConfig. The file sinks rotate,
keep ``backup_count`` files and compress rotated files.
"""

import sys
from pathlib import Path
from typing import List

from loguru import logger

from ..config.models import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(config: LoggingConfig) -> List[int]:
    """
    Configure loguru sinks for the given configuration.

    Existing sinks are removed first, so calling this again reconfigures
    logging.

    Args:
        config: Logging configuration

    Returns:
        Ids of the sinks that were added
    """
    logger.remove()
    level = config.level.upper()
    sink_ids: List[int] = []

    if config.console_enabled:
        sink_ids.append(logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=level,
            colorize=True,
            backtrace=True,
            diagnose=False,
        ))

    if config.file_enabled:
        log_dir = Path(config.log_directory)
        log_dir.mkdir(parents=True, exist_ok=True)

        sink_ids.append(logger.add(
            log_dir / "element_events.log",
            format=FILE_FORMAT,
            level=level,
            rotation=config.max_file_size,
            retention=config.backup_count,
            compression="zip",
            enqueue=False,
        ))
        # Errors get their own file so they survive rotation of the main log
        sink_ids.append(logger.add(
            log_dir / "error.log",
            format=FILE_FORMAT,
            level="ERROR",
            rotation=config.max_file_size,
            retention=config.backup_count,
            compression="zip",
        ))

    logger.debug(f"Logging configured at {level} ({len(sink_ids)} sink(s))")
    return sink_ids
