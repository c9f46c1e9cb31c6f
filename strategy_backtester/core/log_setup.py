"""
Logging setup for the strategy backtester.

Library modules log through ``loguru.logger`` directly; applications call
:func:`setup_logging` once to choose sinks and level.
"""
import sys
from typing import Optional

from loguru import logger

FILE_FORMAT = '{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}'
CONSOLE_FORMAT = (
    '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | '
    '<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>'
)


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> None:
    """
    Configure loguru sinks.

    Args:
        level: Minimum level for all sinks
        log_file: Optional path of a daily-rotated log file
    """
    logger.remove()  # Remove default handler
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
    if log_file:
        logger.add(
            log_file,
            rotation='1 day',
            retention='7 days',
            level=level,
            format=FILE_FORMAT
        )
