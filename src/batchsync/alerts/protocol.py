"""
Alert protocol and data classes.

An ``Alert`` is the structured form of one run log event: severity, message
and the event's context, plus the title and source the sink needs to render
it. Channels implement ``AlertChannel`` and report each attempt as a
``DeliveryResult`` instead of raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class AlertSeverity(str, Enum):
    """Alert severity levels, aligned with stdlib logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def level(self) -> int:
        """The matching ``logging`` level number."""
        return logging.getLevelName(self.value)

    @classmethod
    def from_level(cls, levelno: int) -> AlertSeverity:
        """Map a ``logging`` level number to the closest severity at or below it."""
        for severity in reversed(list(cls)):
            if levelno >= severity.level:
                return severity
        return cls.DEBUG

    def __lt__(self, other: AlertSeverity) -> bool:
        return self.level < other.level

    def __le__(self, other: AlertSeverity) -> bool:
        return self.level <= other.level

    def __ge__(self, other: AlertSeverity) -> bool:
        return self.level >= other.level

    def __gt__(self, other: AlertSeverity) -> bool:
        return self.level > other.level


class ChannelType(str, Enum):
    """Alert channel types."""

    EMAIL = "email"
    TELEGRAM = "telegram"


@dataclass
class Alert:
    """
    One event offered to alert channels.

    ``title`` is the configured headline for the run (site, environment and
    sync name); ``message`` and ``context`` come from the log event.
    """

    severity: AlertSeverity
    title: str
    message: str
    source: str  # Sync name

    channel: str = ""  # Logger channel that emitted the event
    context: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
        }
        if self.channel:
            result["channel"] = self.channel
        if self.context:
            result["context"] = self.context
        return result


@dataclass
class DeliveryResult:
    """Result of alert delivery attempt."""

    channel_name: str
    success: bool
    message: str | None = None
    response: dict[str, Any] | None = None
    error: Exception | None = None
    delivered_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def ok(cls, channel_name: str, message: str | None = None, **kwargs: Any) -> DeliveryResult:
        return cls(channel_name=channel_name, success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, channel_name: str, error: Exception) -> DeliveryResult:
        return cls(
            channel_name=channel_name,
            success=False,
            error=error,
            message=str(error),
        )


@runtime_checkable
class AlertChannel(Protocol):
    """
    Protocol for alert channels.

    Implementations must provide:
    - name: Unique channel identifier
    - min_severity: Threshold below which alerts are ignored
    - send(): Deliver an alert, reporting failure in the result
    """

    @property
    def name(self) -> str:
        """Unique channel name."""
        ...

    @property
    def channel_type(self) -> ChannelType:
        """Channel type."""
        ...

    @property
    def min_severity(self) -> AlertSeverity:
        """Minimum severity to send."""
        ...

    def should_send(self, alert: Alert) -> bool:
        """Check if alert should be sent to this channel."""
        ...

    def send(self, alert: Alert) -> DeliveryResult:
        """Send alert to the channel."""
        ...


__all__ = [
    "AlertSeverity",
    "ChannelType",
    "Alert",
    "DeliveryResult",
    "AlertChannel",
]
