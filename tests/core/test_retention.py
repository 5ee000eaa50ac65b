"""Tests for run log retention."""

import os
import time

import pytest

from batchsync.core.retention import SECONDS_PER_DAY, compute_cutoff, purge_old_logs

NOW = 1_800_000_000.0


def _touch(path, age_days):
    path.write_text("log")
    mtime = NOW - age_days * SECONDS_PER_DAY
    os.utime(path, (mtime, mtime))
    return path


def test_cutoff():
    assert compute_cutoff(2, now=NOW) == NOW - 2 * 86400


def test_cutoff_defaults_to_clock():
    before = time.time()
    assert compute_cutoff(0) >= before


def test_deletes_only_expired_logs(tmp_path):
    old = _touch(tmp_path / "2020_01_01_00_00_00.log", 31)
    boundary = _touch(tmp_path / "2020_01_02_00_00_00.log", 30)
    recent = _touch(tmp_path / "2020_02_01_00_00_00.log", 1)

    result = purge_old_logs(tmp_path, 30, now=NOW)

    assert result.success
    assert sorted(result.deleted) == sorted([old, boundary])
    assert recent.exists()
    assert not old.exists()


def test_other_files_untouched(tmp_path):
    lock = _touch(tmp_path / "nightly_is_in_process.lock", 400)
    notes = _touch(tmp_path / "notes.txt", 400)

    result = purge_old_logs(tmp_path, 1, now=NOW)

    assert result.deleted == []
    assert lock.exists() and notes.exists()


def test_missing_directory(tmp_path):
    result = purge_old_logs(tmp_path / "absent", 30, now=NOW)
    assert result.deleted == []
    assert result.success


def test_directories_named_like_logs_skipped(tmp_path):
    (tmp_path / "archive.log").mkdir()
    os.utime(tmp_path / "archive.log", (NOW - 100 * SECONDS_PER_DAY,) * 2)
    result = purge_old_logs(tmp_path, 1, now=NOW)
    assert result.deleted == []


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_unremovable_file_reported(tmp_path, monkeypatch):
    path = _touch(tmp_path / "old.log", 10)

    def refuse(self, *args, **kwargs):
        raise PermissionError("read-only")

    monkeypatch.setattr(type(path), "unlink", refuse)

    result = purge_old_logs(tmp_path, 1, now=NOW)

    assert not result.success
    assert "old.log" in result.errors
