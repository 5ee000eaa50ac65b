"""SQLAlchemy integration: query-log sources and connection tuning."""

from batchsync.sql.querylog import (
    CursorQueryTracker,
    OrmQueryLog,
    restore_idle_timeout,
    widen_idle_timeout,
)

__all__ = ["CursorQueryTracker", "OrmQueryLog", "restore_idle_timeout", "widen_idle_timeout"]
