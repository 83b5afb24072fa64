"""Structured logging for the ORM engine.

Every module logs through ``get_logger(__name__)``. Loggers are lazy proxies,
so setup_logging() may run after modules are imported.

Statement events ("Statement executed", "Statement failed", "Raw statement
executed") carry the SQL text under ``sql``. Bound parameters are never
logged. With ``log_statements=False`` the SQL text is stripped as well,
leaving the statement type and timing.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

import structlog
from structlog.types import Processor

STATEMENT_KEYS = ("sql",)


def strip_statement_text(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor removing SQL text from log events."""
    for key in STATEMENT_KEYS:
        event_dict.pop(key, None)
    return event_dict


def build_processors(log_format: str = "json", log_statements: bool = True) -> list[Processor]:
    """The processor chain used by setup_logging()."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if not log_statements:
        processors.append(strip_statement_text)

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_statements: bool = True,
) -> None:
    """
    Set up structured logging with structlog.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
        log_statements: Keep SQL text in statement events
    """
    numeric_level = getattr(logging, level.upper())
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    structlog.configure(
        processors=build_processors(log_format, log_statements),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a bound logger instance.

    Args:
        name: Logger name (module name typically)
        **initial_context: Initial context to bind to the logger

    Returns:
        A bound structlog logger
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
