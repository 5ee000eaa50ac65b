"""Tests for the overlap guard."""

import json
import os
import signal
from unittest.mock import MagicMock, patch

import pytest

from batchsync.core.errors import OverlapError
from batchsync.execution.lock import (
    LOCK_SUFFIX,
    LockInfo,
    OverlapGuard,
    lock_path_for,
    release_lock,
)


@pytest.fixture
def lock_path(tmp_path):
    return lock_path_for(tmp_path / "nightly", "nightly")


@pytest.fixture
def guard(lock_path):
    guard = OverlapGuard("nightly", lock_path, run_logger=MagicMock())
    yield guard
    guard.release()


def test_lock_path_naming(tmp_path):
    assert lock_path_for(tmp_path, "nightly") == tmp_path / f"nightly{LOCK_SUFFIX}"
    assert LOCK_SUFFIX == "_is_in_process.lock"


class TestAcquireRelease:
    def test_acquire_creates_marker(self, guard, lock_path):
        guard.acquire()
        assert guard.acquired
        assert lock_path.exists()
        assert guard.is_locked()

    def test_marker_describes_holder(self, guard, lock_path):
        guard.acquire()
        data = json.loads(lock_path.read_text())
        assert data["pid"] == os.getpid()
        assert data["host"]
        assert data["acquired_at"]

    def test_release_removes_marker(self, guard, lock_path):
        guard.acquire()
        guard.release()
        assert not lock_path.exists()
        assert not guard.acquired

    def test_release_without_acquire_is_noop(self, guard, lock_path):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text("{}")
        guard.release()
        assert lock_path.exists()

    def test_context_manager(self, lock_path):
        with OverlapGuard("nightly", lock_path, handle_signals=False):
            assert lock_path.exists()
        assert not lock_path.exists()

    def test_context_manager_releases_on_error(self, lock_path):
        with pytest.raises(ValueError):
            with OverlapGuard("nightly", lock_path, handle_signals=False):
                raise ValueError("boom")
        assert not lock_path.exists()


class TestOverlap:
    def test_second_guard_refused(self, guard, lock_path):
        guard.acquire()
        other = OverlapGuard("nightly", lock_path, handle_signals=False)
        with pytest.raises(OverlapError) as info:
            other.acquire()
        assert "already in process" in str(info.value)
        assert not other.acquired
        assert lock_path.exists()

    def test_refusal_leaves_existing_marker(self, lock_path):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text("someone else")
        guard = OverlapGuard("nightly", lock_path, handle_signals=False)
        with pytest.raises(OverlapError):
            guard.acquire()
        guard.release()
        assert lock_path.read_text() == "someone else"

    def test_allow_overlap_touches_nothing(self, lock_path):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text("someone else")
        guard = OverlapGuard("nightly", lock_path, allow_overlap=True)
        guard.acquire()
        assert not guard.acquired
        guard.release()
        assert lock_path.read_text() == "someone else"


class TestExitPaths:
    def test_atexit_registered_and_withdrawn(self, lock_path):
        guard = OverlapGuard("nightly", lock_path, handle_signals=False)
        with patch("batchsync.execution.lock.atexit") as fake_atexit:
            guard.acquire()
            fake_atexit.register.assert_called_once()
            callback = fake_atexit.register.call_args.args[0]
            guard.release()
            fake_atexit.unregister.assert_called_once_with(callback)

    def test_exit_callback_removes_marker(self, lock_path):
        guard = OverlapGuard("nightly", lock_path, handle_signals=False)
        with patch("batchsync.execution.lock.atexit") as fake_atexit:
            guard.acquire()
            callback = fake_atexit.register.call_args.args[0]
            assert callback() is True
            assert not lock_path.exists()
            guard.release()

    def test_signal_handler_installed_and_restored(self, lock_path):
        previous = signal.getsignal(signal.SIGTERM)
        guard = OverlapGuard("nightly", lock_path, run_logger=MagicMock())
        guard.acquire()
        assert signal.getsignal(signal.SIGTERM) is not previous
        guard.release()
        assert signal.getsignal(signal.SIGTERM) == previous

    def test_sigterm_releases_marker_and_exits(self, lock_path):
        run_logger = MagicMock()
        guard = OverlapGuard("nightly", lock_path, run_logger=run_logger)
        guard.acquire()
        handler = signal.getsignal(signal.SIGTERM)
        try:
            with pytest.raises(SystemExit) as info:
                handler(signal.SIGTERM, None)
        finally:
            guard.release()

        assert info.value.code == 128 + signal.SIGTERM
        assert not lock_path.exists()
        run_logger.critical.assert_called_once()
        assert "SIGTERM" in run_logger.critical.call_args.args[0]

    def test_sigint_logged_as_error(self, lock_path):
        run_logger = MagicMock()
        guard = OverlapGuard("nightly", lock_path, run_logger=run_logger)
        guard.acquire()
        handler = signal.getsignal(signal.SIGINT)
        try:
            with pytest.raises(SystemExit) as info:
                handler(signal.SIGINT, None)
        finally:
            guard.release()

        assert info.value.code == 128 + signal.SIGINT
        run_logger.error.assert_called_once()
        run_logger.critical.assert_not_called()


class TestManualRelease:
    def test_release_lock_removes_orphan(self, tmp_path):
        path = lock_path_for(tmp_path, "nightly")
        path.write_text("{}")
        assert release_lock(tmp_path, "nightly") is True
        assert not path.exists()

    def test_release_lock_without_marker(self, tmp_path):
        assert release_lock(tmp_path, "nightly") is False


class TestLockInfo:
    def test_missing(self, tmp_path):
        assert LockInfo.read(tmp_path / "none.lock") is None

    def test_reads_holder(self, guard, lock_path):
        guard.acquire()
        info = LockInfo.read(lock_path)
        assert info.pid == os.getpid()
        assert info.path == lock_path

    def test_tolerates_foreign_content(self, tmp_path):
        path = tmp_path / "x.lock"
        path.write_text("not json")
        info = LockInfo.read(path)
        assert info.pid is None
