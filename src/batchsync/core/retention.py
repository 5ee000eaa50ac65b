"""
Run log retention.

Each run writes one ``*.log`` file into the sync's log directory. Before a run
starts executing, files older than the retention window are deleted. Only run
logs are considered; the lock marker is never removed here.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path

from batchsync.core.logging import get_logger

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400


@dataclass
class PurgeResult:
    """Result of a log purge."""

    directory: Path
    cutoff: float
    deleted: list[Path] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


def compute_cutoff(days: int, now: float | None = None) -> float:
    """Epoch seconds before which a log file counts as expired."""
    now = time.time() if now is None else now
    return now - days * SECONDS_PER_DAY


def purge_old_logs(log_dir: Path, days: int, *, now: float | None = None) -> PurgeResult:
    """Delete run logs in ``log_dir`` modified at least ``days`` days ago.

    Files that cannot be removed are recorded in ``PurgeResult.errors`` and do
    not stop the purge.
    """
    cutoff = compute_cutoff(days, now)
    result = PurgeResult(directory=log_dir, cutoff=cutoff)
    if not log_dir.is_dir():
        return result

    for path in sorted(log_dir.glob("*.log")):
        try:
            if not path.is_file() or path.stat().st_mtime > cutoff:
                continue
            path.unlink()
            result.deleted.append(path)
        except OSError as e:
            result.errors[path.name] = str(e)
            logger.warning("log_purge_failed", path=str(path), error=str(e))

    if result.deleted:
        logger.info("logs_purged", directory=str(log_dir), deleted=len(result.deleted), days=days)
    return result


__all__ = ["PurgeResult", "compute_cutoff", "purge_old_logs"]
