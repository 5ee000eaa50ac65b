"""Cross-run mutual exclusion."""

from batchsync.execution.lock import LockInfo, OverlapGuard, lock_path_for, release_lock

__all__ = ["LockInfo", "OverlapGuard", "lock_path_for", "release_lock"]
