"""
SQLAlchemy query-log sources and connection tuning.

Two sources feed the per-step query statistics:

- ``CursorQueryTracker`` hooks ``before_cursor_execute`` /
  ``after_cursor_execute`` on an ``Engine`` and records every statement the
  driver runs, Core and ORM alike.
- ``OrmQueryLog`` hooks ``do_orm_execute`` on a ``Session`` class or
  ``sessionmaker`` and records ORM-level statements with their execution
  time.

Both record nothing until ``enable()`` is called, which the run does only
when SQL profiling is switched on.

``widen_idle_timeout`` raises MySQL's per-session ``wait_timeout`` on every
new connection of an engine, so connections idle during a long step are not
dropped by the server.
"""

from __future__ import annotations

import time
import weakref
from collections.abc import Sequence
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine

from batchsync.core.logging import get_logger
from batchsync.orchestration.instrumentation import QueryLogEntry

logger = get_logger(__name__)

MYSQL_DIALECTS = frozenset({"mysql", "mariadb"})

_START_KEY = "batchsync_query_start"


class _WaitTimeoutListener:
    """``connect`` listener running ``SET SESSION wait_timeout``."""

    def __init__(self, seconds: int):
        self.seconds = seconds
        self.statement = f"SET SESSION wait_timeout = {seconds}"

    def __call__(self, dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(self.statement)
        finally:
            cursor.close()


_idle_listeners: weakref.WeakKeyDictionary[Engine, _WaitTimeoutListener] = weakref.WeakKeyDictionary()


class CursorQueryTracker:
    """Driver-level statement log for one engine."""

    def __init__(self, engine: Engine, name: str = "driver"):
        self.name = name
        self.engine = engine
        self._entries: list[QueryLogEntry] = []
        self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _before(self, conn, cursor, statement, parameters, context, executemany) -> None:
        conn.info.setdefault(_START_KEY, []).append(time.perf_counter())

    def _after(self, conn, cursor, statement, parameters, context, executemany) -> None:
        starts = conn.info.get(_START_KEY)
        if not starts:
            return
        self._entries.append(QueryLogEntry(statement, time.perf_counter() - starts.pop()))

    def enable(self) -> None:
        if self._enabled:
            return
        event.listen(self.engine, "before_cursor_execute", self._before)
        event.listen(self.engine, "after_cursor_execute", self._after)
        self._enabled = True

    def disable(self) -> None:
        if not self._enabled:
            return
        event.remove(self.engine, "before_cursor_execute", self._before)
        event.remove(self.engine, "after_cursor_execute", self._after)
        self._enabled = False

    def entries(self) -> Sequence[QueryLogEntry]:
        return list(self._entries)

    def flush(self) -> None:
        self._entries.clear()


class OrmQueryLog:
    """ORM-level statement log for a ``Session`` class or ``sessionmaker``."""

    def __init__(self, target: Any, name: str = "orm"):
        self.name = name
        self.target = target
        self._entries: list[QueryLogEntry] = []
        self._enabled = False

    def _on_execute(self, orm_execute_state) -> Any:
        started = time.perf_counter()
        result = orm_execute_state.invoke_statement()
        self._entries.append(QueryLogEntry(str(orm_execute_state.statement), time.perf_counter() - started))
        return result

    def enable(self) -> None:
        if self._enabled:
            return
        event.listen(self.target, "do_orm_execute", self._on_execute)
        self._enabled = True

    def disable(self) -> None:
        if not self._enabled:
            return
        event.remove(self.target, "do_orm_execute", self._on_execute)
        self._enabled = False

    def entries(self) -> Sequence[QueryLogEntry]:
        return list(self._entries)

    def flush(self) -> None:
        self._entries.clear()


def widen_idle_timeout(engine: Engine, seconds: int = 28800) -> bool:
    """Set ``wait_timeout`` on new connections of MySQL/MariaDB engines.

    Returns False, doing nothing, for other dialects. Connections already in
    the pool keep their current timeout. An engine carries at most one such
    listener; calling again with another value replaces it.
    """
    if engine.dialect.name not in MYSQL_DIALECTS:
        return False

    seconds = int(seconds)
    previous = _idle_listeners.get(engine)
    if previous is not None:
        if previous.seconds == seconds:
            return True
        event.remove(engine, "connect", previous)

    listener = _WaitTimeoutListener(seconds)
    event.listen(engine, "connect", listener)
    _idle_listeners[engine] = listener
    logger.debug("idle_timeout_widened", dialect=engine.dialect.name, seconds=seconds)
    return True


def restore_idle_timeout(engine: Engine) -> bool:
    """Remove the listener installed by ``widen_idle_timeout``, if any."""
    listener = _idle_listeners.pop(engine, None)
    if listener is None:
        return False
    event.remove(engine, "connect", listener)
    return True


__all__ = [
    "CursorQueryTracker",
    "OrmQueryLog",
    "widen_idle_timeout",
    "restore_idle_timeout",
]
