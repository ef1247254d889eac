"""
Structured logging setup.

Components never share a mutable logger: each one is handed a bound logger
(constructor argument or ``log=`` keyword) and falls back to ``get_logger``.
"""

import logging
import sys
from typing import Optional

import structlog


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure structlog for our own events and the stdlib root logger for
    third-party libraries (uvicorn, redis, httpx), once at process start.

    structlog prints directly; the stdlib setup only governs library loggers.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.getLogger().setLevel(log_level)
    # Request lines duplicate the API's own events
    logging.getLogger("uvicorn.access").setLevel(max(log_level, logging.WARNING))


def get_logger(component: str, **context) -> structlog.stdlib.BoundLogger:
    """Logger bound to a component name plus any extra context fields."""
    return structlog.get_logger().bind(component=component, **context)


def resolve_logger(log: Optional[structlog.stdlib.BoundLogger], component: str):
    """Use the injected logger if given, otherwise a fresh component logger."""
    if log is not None:
        return log
    return get_logger(component)
