"""
Bridges between the run logger and alert channels.

``LineFormatter`` renders the durable one-line-per-event log format::

    [2024-05-01 03:00:12] nightly.INFO: Step "import_users" started {"step": "import_users"}

``AlertHandler`` is a ``logging.Handler`` that converts each record at or
above its channel's threshold into an ``Alert`` and hands it to the channel.
A failed delivery is reported on the library logger and never raised back
into the run.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from batchsync.alerts.protocol import Alert, AlertChannel, AlertSeverity, DeliveryResult
from batchsync.core.errors import DeliveryError
from batchsync.core.logging import get_logger

logger = get_logger(__name__)


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Structured context attached to a record by the run logger."""
    context = getattr(record, "context", None)
    return dict(context) if context else {}


def render_context(context: dict[str, Any]) -> str:
    return json.dumps(context, ensure_ascii=False, default=str)


class ContextFormatter(logging.Formatter):
    """Message followed by its JSON context, for outputs that print their own time and level."""

    def format(self, record: logging.LogRecord) -> str:
        text = record.getMessage()
        context = record_context(record)
        if context:
            text = f"{text} {render_context(context)}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


class LineFormatter(ContextFormatter):
    """``[Y-m-d H:M:S] channel.LEVEL: message {context}``"""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return datetime.fromtimestamp(record.created).strftime(datefmt or "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        return f"[{self.formatTime(record)}] {record.name}.{record.levelname}: {super().format(record)}"


class AlertHandler(logging.Handler):
    """Deliver log records to an alert channel."""

    def __init__(self, channel: AlertChannel, *, title: str, source: str):
        super().__init__(level=channel.min_severity.level)
        self.channel = channel
        self.title = title
        self.source = source
        self.results: list[DeliveryResult] = []

    def to_alert(self, record: logging.LogRecord) -> Alert:
        return Alert(
            severity=AlertSeverity.from_level(record.levelno),
            title=self.title,
            message=record.getMessage(),
            source=self.source,
            channel=record.name,
            context=record_context(record),
            created_at=datetime.fromtimestamp(record.created),
        )

    def emit(self, record: logging.LogRecord) -> None:
        alert = self.to_alert(record)
        if not self.channel.should_send(alert):
            return

        try:
            result = self.channel.send(alert)
        except Exception as e:
            result = DeliveryResult.fail(self.channel.name, DeliveryError(str(e), cause=e))

        self.results.append(result)
        if not result.success:
            logger.warning(
                "alert_delivery_failed",
                channel=self.channel.name,
                source=self.source,
                error=result.message,
            )

    def __repr__(self) -> str:
        return f"<AlertHandler {self.channel!r}>"


__all__ = [
    "AlertHandler",
    "ContextFormatter",
    "LineFormatter",
    "record_context",
]
