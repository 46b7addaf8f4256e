"""
Logging setup for Courier.

Configures loguru's stdout sink at process start and flushes it at exit.
Library loggers that use the standard ``logging`` module (uvicorn, watchdog)
are routed through loguru so every line shares one format.
"""

import logging
import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

_sink_id: Optional[int] = None


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = "INFO") -> int:
    """
    Replace loguru's default sink with Courier's stdout sink.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ...)

    Returns:
        Sink id of the installed handler
    """
    global _sink_id

    logger.remove()
    _sink_id = logger.add(sys.stdout, format=LOG_FORMAT, level=level.upper(), enqueue=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.WARNING, force=True)
    # watchdog is chatty at DEBUG
    logging.getLogger("watchdog").setLevel(logging.WARNING)

    return _sink_id


def shutdown_logging() -> None:
    """Flush pending messages and remove every sink."""
    global _sink_id

    logger.complete()
    logger.remove()
    _sink_id = None
