"""Telegram bot alert channel."""

from __future__ import annotations

import html
import json
import socket
import urllib.error
import urllib.request
from typing import Any

from batchsync.alerts.base import BaseChannel
from batchsync.alerts.protocol import (
    Alert,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)
from batchsync.core.errors import DeliveryError

TELEGRAM_API_HOST = "https://api.telegram.org"


class TelegramChannel(BaseChannel):
    """
    Telegram channel posting HTML cards through the Bot API.

    Each alert becomes one message::

        <b>nightly: sync "orders" failed</b>
        <b>Message:</b> Unexpected error, run stopped
        <b>Time:</b> 2024-05-01 03:00:12
        <b>Channel:</b> orders
        <b>Server:</b> worker-1

        [context]
        {"exception": "KeyError", ...}

    ``proxy`` replaces the public API host, for servers that reach Telegram
    through a relay.
    """

    def __init__(
        self,
        name: str,
        bot_token: str,
        chat_id: str,
        *,
        proxy: str | None = None,
        timeout: float = 10,
        min_severity: AlertSeverity = AlertSeverity.CRITICAL,
    ):
        super().__init__(name, ChannelType.TELEGRAM, min_severity=min_severity)
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._host = (proxy or TELEGRAM_API_HOST).rstrip("/")
        self._timeout = timeout

    @property
    def url(self) -> str:
        return f"{self._host}/bot{self._bot_token}/sendMessage"

    def _format_card(self, alert: Alert) -> str:
        lines = [
            f"<b>{html.escape(alert.title)}</b>",
            f"<b>Message:</b> {html.escape(alert.message)}",
            f"<b>Time:</b> {alert.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
            f"<b>Channel:</b> {html.escape(alert.channel or alert.source)}",
            f"<b>Server:</b> {html.escape(socket.gethostname())}",
        ]
        if alert.context:
            rendered = json.dumps(alert.context, ensure_ascii=False, default=str)
            lines += ["", "[context]", html.escape(rendered, quote=False)]
        return "\n".join(lines)

    def _build_payload(self, alert: Alert) -> dict[str, Any]:
        return {
            "chat_id": self._chat_id,
            "text": self._format_card(alert),
            "parse_mode": "HTML",
        }

    def send(self, alert: Alert) -> DeliveryResult:
        """Post alert to the configured chat."""
        payload = self._build_payload(alert)

        try:
            req = urllib.request.Request(
                self.url,
                data=json.dumps(payload).encode("utf-8"),
                headers={"Content-Type": "application/json"},
                method="POST",
            )

            with urllib.request.urlopen(req, timeout=self._timeout) as response:
                body = response.read().decode("utf-8")

        except (urllib.error.URLError, OSError) as e:
            return DeliveryResult.fail(self._name, DeliveryError(str(e), cause=e))

        try:
            decoded = json.loads(body)
        except ValueError:
            decoded = {"raw": body}
        if isinstance(decoded, dict) and decoded.get("ok") is False:
            return DeliveryResult.fail(
                self._name,
                DeliveryError(decoded.get("description", "Telegram rejected the message")),
            )
        return DeliveryResult.ok(self._name, response=decoded if isinstance(decoded, dict) else None)
