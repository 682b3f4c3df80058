"""Structured logging configuration using structlog.

Provides JSON output for production and human-readable console output for development.
All logging throughout the project should use get_logger() instead of print().
Log lines go to stderr so CLI output on stdout stays machine-readable.
"""

import logging
import sys

import structlog


def setup_logging(json_output: bool = False, log_level: str = "INFO") -> None:
    """Configure structlog with appropriate processors and output format.

    Args:
        json_output: If True, output JSON (production). If False, console format (dev).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Bridge stdlib logging (openpyxl, urllib3) to the same stream
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )
    logging.getLogger().handlers = []
    logging.getLogger().addHandler(logging.StreamHandler(sys.stderr))


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance bound with the module name.

    Args:
        name: Logger name (typically __name__ from calling module).

    Returns:
        Configured structlog logger with module name context.
    """
    return structlog.get_logger(name)
