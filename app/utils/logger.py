"""
Structured logging configuration using structlog.
"""
import logging
import sys

import structlog

from app.config import settings


def configure_logging():
    """
    Configure structured logging for the application.
    JSON output in production, console output otherwise. Standard-library loggers
    (uvicorn, sqlalchemy, httpx) are routed to stderr at the same level.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if settings.app_environment == "production":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(stream=sys.stderr, level=level, format="%(levelname)s %(name)s: %(message)s")
    # httpx logs every request at INFO, which floods paginated syncs
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
