"""
Logging configuration.

Configures loguru for the sync runner and job workers.
Sets up log rotation and retention policies.
"""

import sys

from loguru import logger


def setup_logging(level: str = "INFO", log_file: str | None = "logs/nft_sync.log") -> None:
    """
    Configure logger with console output and file rotation.

    Args:
        level: Minimum log level
        log_file: Rotated log file path (None disables the file sink)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level=level,
    )
    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level=level,
            encoding="utf-8",
        )
