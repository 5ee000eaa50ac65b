"""Alert channel implementations."""

from batchsync.alerts.channels.email import EmailChannel
from batchsync.alerts.channels.telegram import TelegramChannel

__all__ = ["EmailChannel", "TelegramChannel"]
