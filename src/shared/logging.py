"""Structured logging for the NURA agent.

Log events are key-value pairs rendered by structlog. A submission binds
its conversation id once, and every event emitted while it runs carries it.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor


def _renderer(json_output: bool) -> list[Processor]:
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog and route SDK loggers to the same stream.

    Args:
        log_level: Minimum level name, e.g. "DEBUG" or "WARNING"
        json_output: Render JSON lines (production) instead of console output
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *_renderer(json_output),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # google-genai, openai and httpx log through the standard library
    logging.basicConfig(format="%(name)s %(levelname)s %(message)s", stream=sys.stdout, level=level)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a module logger."""
    return structlog.get_logger(name)


def bind_context(**context: Any) -> None:
    """Attach key-values to every event logged from the current task."""
    structlog.contextvars.bind_contextvars(**context)
