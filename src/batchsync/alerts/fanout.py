"""
Per-run log with fan-out to sinks.

A ``RunLog`` owns a dedicated stdlib ``logging.Logger`` named after the sync.
Every handler attached to it is a sink with its own threshold: the run's log
file, optional stdout or rich console mirrors, e-mail and chat channels, and
any handler the caller pushes. Each record is offered to every sink in
order; a sink that fails to deliver does not affect the others.

Steps and the orchestrator log through ``RunLog.logger``, a structlog
``BoundLogger``::

    run_log.logger.info("Step started", step="import_users")

which lands in the file as::

    [2024-05-01 03:00:00] nightly.INFO: Step started {"step": "import_users"}
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import IO

from rich.console import Console
from rich.logging import RichHandler

from batchsync.alerts.handler import AlertHandler, ContextFormatter, LineFormatter
from batchsync.alerts.protocol import AlertChannel
from batchsync.core.logging import get_logger, wrap_stdlib_logger

library_logger = get_logger(__name__)


class FanoutLogger(logging.Logger):
    """Logger that keeps offering a record to later sinks when one raises."""

    def callHandlers(self, record: logging.LogRecord) -> None:
        for handler in self.handlers:
            if record.levelno < handler.level:
                continue
            try:
                handler.handle(record)
            except Exception as e:
                library_logger.warning("sink_failed", sink=repr(handler), logger=self.name, error=str(e))


class RunLog:
    """Logger and sinks for a single run."""

    def __init__(self, name: str, level: str | int = logging.DEBUG):
        self.name = name
        self.log_file: Path | None = None
        self._stdlib = FanoutLogger(name, level)
        self._stdlib.propagate = False
        self.logger = wrap_stdlib_logger(self._stdlib)

    @property
    def stdlib_logger(self) -> logging.Logger:
        return self._stdlib

    @property
    def handlers(self) -> list[logging.Handler]:
        return list(self._stdlib.handlers)

    def add_handler(self, handler: logging.Handler) -> logging.Handler:
        """Attach a sink; handlers without a formatter get the line format."""
        if handler.formatter is None:
            handler.setFormatter(LineFormatter())
        self._stdlib.addHandler(handler)
        return handler

    def open_file(self, path: Path) -> Path:
        """Start writing the durable run log to ``path``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        self.add_handler(logging.FileHandler(path, encoding="utf-8"))
        self.log_file = path
        return path

    def mirror_to_stream(self, stream: IO[str] | None = None, level: int = logging.DEBUG) -> logging.Handler:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setLevel(level)
        return self.add_handler(handler)

    def mirror_to_console(self, console: Console, level: int = logging.INFO) -> logging.Handler:
        handler = RichHandler(
            console=console,
            level=level,
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(ContextFormatter())
        return self.add_handler(handler)

    def add_channel(self, channel: AlertChannel, *, title: str) -> AlertHandler:
        return self.add_handler(AlertHandler(channel, title=title, source=self.name))

    def flush(self) -> None:
        for handler in self._stdlib.handlers:
            handler.flush()

    def close(self) -> None:
        """Flush, close and detach every sink."""
        for handler in list(self._stdlib.handlers):
            handler.flush()
            handler.close()
            self._stdlib.removeHandler(handler)


__all__ = ["FanoutLogger", "RunLog"]
