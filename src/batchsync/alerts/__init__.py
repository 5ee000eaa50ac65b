"""
Alerting package.

Run log events fan out to sinks: the run's log file, stdout or console
mirrors, and severity-filtered channels (e-mail, Telegram).
"""

from batchsync.alerts.base import BaseChannel
from batchsync.alerts.channels import EmailChannel, TelegramChannel
from batchsync.alerts.fanout import FanoutLogger, RunLog
from batchsync.alerts.handler import AlertHandler, ContextFormatter, LineFormatter
from batchsync.alerts.protocol import (
    Alert,
    AlertChannel,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)

__all__ = [
    "AlertSeverity",
    "ChannelType",
    "Alert",
    "DeliveryResult",
    "AlertChannel",
    "BaseChannel",
    "EmailChannel",
    "TelegramChannel",
    "AlertHandler",
    "ContextFormatter",
    "LineFormatter",
    "FanoutLogger",
    "RunLog",
]
