"""Structured logging setup."""

import logging
import sys

import structlog
from structlog.typing import FilteringBoundLogger, Processor

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(name)


def configure_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """
    Configure structlog for the CLI process.

    log_format is "console" (human readable, stderr) or "json".
    Raises ValueError on an unknown level or format.
    """
    level = log_level.upper()
    if level not in VALID_LEVELS:
        raise ValueError(f"Invalid log_level '{log_level}'. Must be one of: {', '.join(VALID_LEVELS)}")
    if log_format not in ("console", "json"):
        raise ValueError(f"Invalid log_format '{log_format}'. Must be 'console' or 'json'")

    # stdout is reserved for the run summary
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
