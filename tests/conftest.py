"""
Shared pytest fixtures for batchsync tests.

This module provides:
- Isolated settings rooted in a temporary log directory
- Default step registry cleanup
- A handler that records every run log event
"""

import logging
import sys
from pathlib import Path

import pytest

# Ensure batchsync package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from batchsync.core.settings import SyncSettings, get_settings
from batchsync.orchestration.registry import default_registry


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def log_root(tmp_path: Path) -> Path:
    return tmp_path / "logs"


@pytest.fixture
def settings(log_root: Path) -> SyncSettings:
    """Settings that ignore the environment and log under tmp_path."""
    return SyncSettings(
        _env_file=None,
        env="testing",
        site_name="example.org",
        log_root=log_root,
        clean_old_logs=0,
        email_alerts_to=[],
        email_final_log_to=[],
        telegram_bot_token=None,
        telegram_chat_id=None,
        allow_overlapping=False,
        profile_sql=False,
        send_output_to_echo=False,
    )


@pytest.fixture(autouse=True)
def clean_state():
    """Reset the default registry and cached settings around each test."""
    default_registry.clear()
    get_settings.cache_clear()
    yield
    default_registry.clear()
    get_settings.cache_clear()


# =============================================================================
# Log capture
# =============================================================================


class RecordingHandler(logging.Handler):
    """Keeps every record it receives."""

    def __init__(self, level: int = logging.DEBUG):
        super().__init__(level)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    @property
    def messages(self) -> list[str]:
        return [record.getMessage() for record in self.records]

    def at_level(self, level: int) -> list[logging.LogRecord]:
        return [record for record in self.records if record.levelno == level]


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()
