"""Structured logging using structlog.

Log events go to stderr, rendered as JSON lines or, for interactive
use, as colored console output. stdout is reserved for dry-run records.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from acctflow.common.config import LoggingSettings, Settings, get_settings

# Loggers of libraries that are chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "asynch", "httpx", "httpcore")


def service_context(settings: Settings) -> Processor:
    """Build a processor stamping every event with the service identity."""
    context = {
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }

    def add_service_context(
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def _shared_processors(settings: LoggingSettings, app: Settings) -> list[Processor]:
    processors: list[Processor] = []
    if settings.include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ]
        ))

    processors.append(service_context(app))
    return processors


def _renderer(settings: LoggingSettings) -> list[Processor]:
    if settings.format == "json":
        return [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def setup_logging(settings: LoggingSettings | None = None) -> None:
    """Configure structured logging for a run.

    Args:
        settings: Logging settings. Uses global settings if not provided.
    """
    app = get_settings()
    if settings is None:
        settings = app.logging

    structlog.configure(
        processors=_shared_processors(settings, app) + _renderer(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, settings.level),
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally with bound context.

    Example:
        logger = get_logger(__name__, stage="sink")
        logger.info("Batch flushed", count=100000)
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def bind_context(**context: Any) -> None:
    """Bind values to every event logged by the current task and its children.

    Example:
        bind_context(collected="2024-01-01T00:05:00+00:00")
        logger.info("Batch flushed")  # includes collected
    """
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
