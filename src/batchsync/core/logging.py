"""
Library logging for batchsync.

Two kinds of logging exist in this package:

- **Library logging** (this module's ``get_logger``): structlog events such as
  ``alert_delivery_failed`` or ``lock_released`` describing what the engine
  itself is doing. Configured once per process with ``configure_logging``.
- **Run logging** (``batchsync.alerts.fanout.RunLog``): the per-run record
  written to the run's log file and fanned out to alert sinks. Steps log
  through a structlog ``BoundLogger`` wrapping a dedicated stdlib logger, so
  keyword arguments become the event's structured context.

``stdlib_record_kwargs`` is the final processor that bridges the two: it turns
a structlog event dict into ``logging.Logger`` keyword arguments, placing the
bound context on ``record.context``.

Examples:
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("lock_acquired", sync="nightly")

Tags:
    logging, structlog, observability, batchsync
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for library events.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        add_timestamp: Include ISO timestamp in logs
    """
    if json_format is None:
        json_format = not sys.stderr.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        # Resolve sys.stderr per logger so redirected streams are honoured
        logger_factory=lambda *args: structlog.PrintLogger(sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured library logger."""
    return structlog.get_logger(name)


def stdlib_record_kwargs(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> dict[str, Any]:
    """Render an event dict into ``logging.Logger`` call kwargs.

    Everything except the event name and exception info becomes
    ``record.context``.
    """
    message = event_dict.pop("event", "")
    exc_info = event_dict.pop("exc_info", None)
    return {
        "msg": message,
        "exc_info": exc_info,
        "extra": {"context": dict(event_dict)},
    }


def wrap_stdlib_logger(logger: logging.Logger, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """Front a stdlib logger with a structlog ``BoundLogger``."""
    return structlog.wrap_logger(
        logger,
        processors=[
            structlog.processors.StackInfoRenderer(),
            stdlib_record_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        **initial_context,
    )


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent library logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Context manager for scoped library logging context.

    Example:
        with LogContext(sync="nightly"):
            logger.info("lock_acquired")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "stdlib_record_kwargs",
    "wrap_stdlib_logger",
    "bind_context",
    "unbind_context",
    "LogContext",
]
