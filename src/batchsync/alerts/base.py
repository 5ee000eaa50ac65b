"""
Alert channel base class.

The run log hands a channel every record at or above its threshold; the
channel turns the ones it accepts into a delivery. Subclasses implement
``send`` and report transport failures in the returned ``DeliveryResult``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from batchsync.alerts.protocol import (
    Alert,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)


class BaseChannel(ABC):
    """Severity threshold shared by the e-mail and Telegram channels."""

    def __init__(
        self,
        name: str,
        channel_type: ChannelType,
        *,
        min_severity: AlertSeverity | str = AlertSeverity.CRITICAL,
    ):
        self._name = name
        self._channel_type = channel_type
        self._min_severity = AlertSeverity(min_severity)

    @property
    def name(self) -> str:
        return self._name

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    @property
    def min_severity(self) -> AlertSeverity:
        return self._min_severity

    def should_send(self, alert: Alert) -> bool:
        return alert.severity >= self._min_severity

    @abstractmethod
    def send(self, alert: Alert) -> DeliveryResult:
        """Deliver one alert."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._name!r}, min_severity={self._min_severity.value})"
