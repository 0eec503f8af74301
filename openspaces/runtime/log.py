"""Logging configuration using loguru.

Intercepts stdlib logging so that asyncio and any other library using
``logging`` flow through loguru with a unified format.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger


class _InterceptHandler(logging.Handler):
    """Bridge stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Map stdlib level name -> loguru level
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk the call stack so loguru reports the real call-site
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure loguru as the sole logging sink.

    Call this once at process startup.  When *log_file* is set, a rotating
    file sink keeps a DEBUG-level history of refreshes and lifecycle steps
    regardless of the console level.
    """
    level = level.upper()

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
            "<level>{message}</level>"
        ),
    )
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="5 MB", retention=3, enqueue=True)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger.debug("Logging initialised (level={}, file={})", level, log_file)
