"""
Loguru setup for the portal services.

Everything logs through loguru. Records emitted by stdlib loggers (uvicorn,
fastapi, psycopg) are forwarded into the same sink so a request's tenant,
auth and store messages read as one stream.
"""

import logging
import sys

from loguru import logger

from kiisha_core.config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

FORWARDED_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "psycopg")


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru, keeping the real caller."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real call site
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str | None = None):
    """
    Route all portal logging to a single stdout sink.

    Args:
        level: Minimum level. Defaults to settings.LOG_LEVEL.
    """
    logger.remove()

    # Tracebacks in production must not dump local variables such as tokens
    logger.add(
        sys.stdout,
        format=LOG_FORMAT,
        level=level or settings.LOG_LEVEL,
        colorize=not settings.is_production,
        diagnose=not settings.is_production,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name in FORWARDED_LOGGERS:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False

    logger.info(f"Logging ready for {settings.SERVICE_NAME} ({settings.ENVIRONMENT})")
