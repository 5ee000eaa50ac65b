"""Email (SMTP) alert channel."""

from __future__ import annotations

import json
import smtplib
from email.mime.text import MIMEText

from batchsync.alerts.base import BaseChannel
from batchsync.alerts.protocol import (
    Alert,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)
from batchsync.core.errors import DeliveryError


class EmailChannel(BaseChannel):
    """
    Email channel using SMTP.

    Alerts go out as plain text with the alert title as subject. The same
    transport delivers arbitrary text through ``send_text``, which the run
    uses to mail its final log.
    """

    def __init__(
        self,
        name: str,
        smtp_host: str,
        from_address: str,
        recipients: list[str],
        *,
        smtp_port: int = 25,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        use_tls: bool = False,
        min_severity: AlertSeverity = AlertSeverity.CRITICAL,
    ):
        super().__init__(name, ChannelType.EMAIL, min_severity=min_severity)
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_user = smtp_user
        self._smtp_password = smtp_password
        self._from_address = from_address
        self._recipients = list(recipients)
        self._use_tls = use_tls

    @property
    def recipients(self) -> list[str]:
        return list(self._recipients)

    def _render_body(self, alert: Alert) -> str:
        stamp = alert.created_at.strftime("%Y-%m-%d %H:%M:%S")
        text = f"[{stamp}] {alert.channel or alert.source}.{alert.severity.value}: {alert.message}"
        if alert.context:
            text += "\n\n" + json.dumps(alert.context, ensure_ascii=False, indent=2, default=str)
        return text + "\n"

    def _build_message(self, subject: str, body: str) -> str:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self._from_address
        msg["To"] = ", ".join(self._recipients)
        return msg.as_string()

    def _deliver(self, message: str) -> None:
        server = smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=30)
        try:
            if self._use_tls:
                server.starttls()
            if self._smtp_user and self._smtp_password:
                server.login(self._smtp_user, self._smtp_password)
            server.sendmail(self._from_address, self._recipients, message)
        finally:
            server.quit()

    def send_text(self, subject: str, body: str) -> DeliveryResult:
        """Send a plain-text message to all recipients."""
        try:
            self._deliver(self._build_message(subject, body))
            return DeliveryResult.ok(self._name)
        except (smtplib.SMTPException, OSError) as e:
            return DeliveryResult.fail(self._name, DeliveryError(str(e), cause=e))

    def send(self, alert: Alert) -> DeliveryResult:
        """Send alert via email."""
        return self.send_text(alert.title, self._render_body(alert))
