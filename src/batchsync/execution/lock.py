"""
Overlap guard for sync runs.

A marker file ``<log_dir>/<name>_is_in_process.lock`` means a run of that
sync is in progress. The guard creates it atomically (``O_CREAT | O_EXCL``)
so two runs racing to start cannot both succeed, and removes it on every way
out of the process it can observe:

- explicit ``release()`` at the end of the run (normal or aborted),
- interpreter exit, through an ``atexit`` callback,
- SIGINT and SIGTERM, through handlers that log the signal, remove the
  marker and exit with status ``128 + signum``.

The exit callback and the signal handler capture only the marker path and
the logger. Both are registered on ``acquire`` and withdrawn on ``release``,
which also restores whatever signal handlers were installed before.

A process killed with SIGKILL leaves the marker behind; remove it with
``release_lock`` (``batchsync unlock NAME``).

Example:
    >>> guard = OverlapGuard("nightly", lock_path_for(Path("logs/nightly"), "nightly"))
    >>> with guard:
    ...     run_steps()
"""

from __future__ import annotations

import atexit
import functools
import json
import os
import signal
import socket
import sys
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from batchsync.core.errors import OverlapError
from batchsync.core.logging import get_logger

logger = get_logger(__name__)

LOCK_SUFFIX = "_is_in_process.lock"
HANDLED_SIGNALS = ("SIGINT", "SIGTERM")


def lock_path_for(log_dir: Path, name: str) -> Path:
    return log_dir / f"{name}{LOCK_SUFFIX}"


@dataclass(frozen=True)
class LockInfo:
    """Informational content of a lock marker."""

    path: Path
    pid: int | None = None
    host: str | None = None
    acquired_at: str | None = None

    @classmethod
    def read(cls, path: Path) -> LockInfo | None:
        """Describe the marker at ``path``, or None when there is none."""
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw) if raw.strip() else {}
        except ValueError:
            data = {}
        return cls(
            path=path,
            pid=data.get("pid"),
            host=data.get("host"),
            acquired_at=data.get("acquired_at"),
        )


def _remove_marker(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def _signal_handler(path: Path, run_logger: Any):
    def handle(signum: int, frame: Any) -> None:
        name = signal.Signals(signum).name
        message = f"Run interrupted by {name}, releasing lock"
        if signum == getattr(signal, "SIGTERM", None):
            run_logger.critical(message, signal=name)
        else:
            run_logger.error(message, signal=name)
        _remove_marker(path)
        sys.exit(128 + signum)

    return handle


class OverlapGuard:
    """Mutual exclusion between runs of one sync on one host."""

    def __init__(
        self,
        name: str,
        lock_path: Path,
        *,
        run_logger: Any = None,
        allow_overlap: bool = False,
        handle_signals: bool = True,
    ):
        self.name = name
        self.lock_path = lock_path
        self.allow_overlap = allow_overlap
        self._run_logger = run_logger or logger
        self._handle_signals = handle_signals
        self._acquired = False
        self._cleanup = functools.partial(_remove_marker, lock_path)
        self._previous_handlers: dict[int, Any] = {}

    @property
    def acquired(self) -> bool:
        return self._acquired

    def is_locked(self) -> bool:
        return self.lock_path.exists()

    def acquire(self) -> None:
        """Create the marker, or raise ``OverlapError`` if another run holds it.

        With ``allow_overlap`` nothing is checked or created.
        """
        if self.allow_overlap:
            logger.debug("overlap_allowed", sync=self.name)
            return

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise OverlapError(self.name, str(self.lock_path)) from None

        payload = {
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "acquired_at": datetime.now(UTC).isoformat(),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle)

        self._acquired = True
        atexit.register(self._cleanup)
        if self._handle_signals:
            self._install_signal_handlers()
        logger.debug("lock_acquired", sync=self.name, path=str(self.lock_path))

    def release(self) -> None:
        """Remove the marker and withdraw the exit and signal callbacks."""
        if not self._acquired:
            return
        self._acquired = False
        self._restore_signal_handlers()
        atexit.unregister(self._cleanup)
        self._cleanup()
        logger.debug("lock_released", sync=self.name, path=str(self.lock_path))

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        handler = _signal_handler(self.lock_path, self._run_logger)
        for signame in HANDLED_SIGNALS:
            signum = getattr(signal, signame, None)
            if signum is None:
                continue
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, handler)

    def _restore_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def __enter__(self) -> OverlapGuard:
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()


def release_lock(log_dir: Path, name: str) -> bool:
    """Remove an orphaned marker. Returns False when there was none."""
    path = lock_path_for(log_dir, name)
    removed = _remove_marker(path)
    if removed:
        logger.info("lock_removed_manually", sync=name, path=str(path))
    return removed


__all__ = [
    "LOCK_SUFFIX",
    "LockInfo",
    "OverlapGuard",
    "lock_path_for",
    "release_lock",
]
