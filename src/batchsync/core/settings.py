"""Process-wide defaults for sync runs.

``SyncSettings`` holds the defaults a ``Sync`` starts from: overlap policy,
SQL profiling, alert recipients, chat bot credentials, log retention and the
SMTP connection used for e-mail. Every field can be overridden per run through
the fluent setters on ``Sync``.

Values come from ``BATCHSYNC_``-prefixed environment variables or a ``.env``
file::

    BATCHSYNC_ENV=staging
    BATCHSYNC_EMAIL_ALERTS_TO='["ops@example.com"]'
    BATCHSYNC_TELEGRAM_BOT_TOKEN=123:abc
    BATCHSYNC_TELEGRAM_CHAT_ID=-100200300

Tags:
    settings, configuration, pydantic, environment, batchsync
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from batchsync.alerts.protocol import AlertSeverity


class SyncSettings(BaseSettings):
    """Defaults for every sync run in this process.

    Fields
    ──────
    env                   : Environment label shown in alert subjects
    site_name             : Site label shown in alert subjects
    log_root              : Parent of the per-sync log directories
    log_level             : Minimum level written to the run log
    allow_overlapping     : Skip the lock marker check
    profile_sql           : Enable query-log sources during the run
    clean_old_logs        : Retention window for run logs in days (0 disables)
    send_output_to_echo   : Mirror the run log to stdout
    email_alerts_to       : Recipients of above-threshold events
    email_final_log_to    : Recipients of the full log after the run
    telegram_*            : Chat bot token, channel id and optional proxy URL
    alert_severity        : Threshold for e-mail and chat sinks
    smtp_*, email_from    : Outgoing mail connection
    idle_timeout_seconds  : Session wait_timeout applied to MySQL engines
    """

    model_config = SettingsConfigDict(
        env_prefix="BATCHSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Identity ─────────────────────────────────────────────────
    env: str = "production"
    site_name: str = "batchsync"

    # ── Run log ──────────────────────────────────────────────────
    log_root: Path = Field(
        default=Path("logs") / "syncs",
        description="Each sync logs to <log_root>/<sync name>",
    )
    log_level: str = "DEBUG"
    clean_old_logs: int = Field(default=30, ge=0)
    send_output_to_echo: bool = False

    # ── Run behaviour ────────────────────────────────────────────
    allow_overlapping: bool = False
    profile_sql: bool = False
    idle_timeout_seconds: int = Field(default=28800, gt=0)

    # ── Alerts ───────────────────────────────────────────────────
    alert_severity: AlertSeverity = AlertSeverity.CRITICAL
    email_alerts_to: list[str] = Field(default_factory=list)
    email_final_log_to: list[str] = Field(default_factory=list)
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    telegram_proxy: str | None = None

    # ── Mail transport ───────────────────────────────────────────
    email_from: str = "batchsync@localhost"
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = False

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return value

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    """Return the cached process-wide settings."""
    return SyncSettings()


__all__ = ["SyncSettings", "get_settings"]
