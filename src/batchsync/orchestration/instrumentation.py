"""
Per-step instrumentation.

The collector brackets each step: ``begin`` records the start time and how
many entries every query-log source already holds, ``finish`` produces an
``InstrumentationSnapshot`` (elapsed time, current and peak resident memory,
queries grouped by verb), ``log`` writes it to the run log and ``flush``
empties the sources so the next step starts from zero.

Query logs are pluggable ``QueryLogSource`` objects. A collector without
sources simply reports no query figures.

Examples:
    >>> format_bytes(500)
    '500 B'
    >>> format_bytes(2048)
    '2 KB'
    >>> format_bytes(3 * 1024 * 1024)
    '3 MB'
    >>> format_elapsed(75)
    '1.25 minutes'
"""

from __future__ import annotations

import sys
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import psutil

try:
    import resource
except ImportError:  # Windows
    resource = None  # type: ignore[assignment]

KIB = 1024
MIB = 1024 * 1024


# =============================================================================
# RENDERING
# =============================================================================


def _trim(value: float) -> str:
    return f"{round(value, 2):g}"


def format_bytes(size: int | float) -> str:
    """Render a byte count as B, KB or MB."""
    if size < KIB:
        return f"{_trim(size)} B"
    if size < MIB:
        return f"{_trim(size / KIB)} KB"
    return f"{_trim(size / MIB)} MB"


def format_elapsed(seconds: float) -> str:
    """Render a duration in seconds, or in minutes from one minute up."""
    if seconds >= 60:
        return f"{seconds / 60:.2f} minutes"
    return f"{seconds:.2f} seconds"


# =============================================================================
# QUERY LOGS
# =============================================================================


@dataclass(frozen=True)
class QueryLogEntry:
    """One executed statement and how long it took, in seconds."""

    sql: str
    duration: float


@runtime_checkable
class QueryLogSource(Protocol):
    """A query log the collector can read and reset between steps."""

    name: str

    def enable(self) -> None:
        """Start recording statements."""
        ...

    def disable(self) -> None:
        """Stop recording statements."""
        ...

    def entries(self) -> Sequence[QueryLogEntry]:
        """Statements recorded since the last flush, oldest first."""
        ...

    def flush(self) -> None:
        """Forget every recorded statement."""
        ...


def query_verb(sql: str) -> str:
    """Lower-cased first token of a statement (``select``, ``insert``...)."""
    parts = sql.split(None, 1)
    return parts[0].lower() if parts else "unknown"


@dataclass
class VerbStats:
    count: int = 0
    total_time: float = 0.0


@dataclass
class QuerySummary:
    """Queries one source recorded during a step, grouped by verb."""

    source: str
    by_verb: dict[str, VerbStats] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, source: str, entries: Iterable[QueryLogEntry]) -> QuerySummary:
        summary = cls(source)
        for entry in entries:
            stats = summary.by_verb.setdefault(query_verb(entry.sql), VerbStats())
            stats.count += 1
            stats.total_time += entry.duration
        return summary

    @property
    def count(self) -> int:
        return sum(stats.count for stats in self.by_verb.values())

    @property
    def total_time(self) -> float:
        return sum(stats.total_time for stats in self.by_verb.values())

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            verb: {"count": stats.count, "time": round(stats.total_time, 6)}
            for verb, stats in self.by_verb.items()
        }


# =============================================================================
# MEMORY
# =============================================================================


def current_memory() -> int:
    """Resident set size of this process in bytes."""
    return psutil.Process().memory_info().rss


def peak_memory() -> int:
    """Peak resident set size of this process in bytes."""
    info = psutil.Process().memory_info()
    peak = getattr(info, "peak_wset", None)
    if peak is None and resource is not None:
        peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # ru_maxrss is kilobytes on Linux, bytes on macOS
        if sys.platform != "darwin":
            peak *= KIB
    return max(peak or 0, info.rss)


# =============================================================================
# COLLECTOR
# =============================================================================


@dataclass(frozen=True)
class Probe:
    """State captured when a step starts."""

    started: float
    baselines: dict[str, int]


@dataclass(frozen=True)
class InstrumentationSnapshot:
    """What a step cost."""

    step: str
    elapsed: float
    memory_current: int
    memory_peak: int
    queries: tuple[QuerySummary, ...] = ()


class InstrumentationCollector:
    """Measure steps and report the figures to the run log."""

    def __init__(
        self,
        sources: Iterable[QueryLogSource] = (),
        *,
        clock: Callable[[], float] = time.perf_counter,
        memory: Callable[[], tuple[int, int]] | None = None,
    ):
        self._sources: list[QueryLogSource] = list(sources)
        self._clock = clock
        self._memory = memory or (lambda: (current_memory(), peak_memory()))

    @property
    def sources(self) -> list[QueryLogSource]:
        return list(self._sources)

    def add_source(self, source: QueryLogSource) -> None:
        self._sources.append(source)

    def enable_sources(self) -> None:
        for source in self._sources:
            source.enable()

    def detach_sources(self) -> None:
        """Empty every source and stop it recording."""
        for source in self._sources:
            source.flush()
            source.disable()

    def begin(self) -> Probe:
        return Probe(
            started=self._clock(),
            baselines={source.name: len(source.entries()) for source in self._sources},
        )

    def finish(self, probe: Probe, step: str) -> InstrumentationSnapshot:
        elapsed = self._clock() - probe.started
        queries = tuple(
            QuerySummary.from_entries(
                source.name,
                list(source.entries())[probe.baselines.get(source.name, 0):],
            )
            for source in self._sources
        )
        current, peak = self._memory()
        return InstrumentationSnapshot(
            step=step,
            elapsed=elapsed,
            memory_current=current,
            memory_peak=peak,
            queries=queries,
        )

    def flush(self) -> None:
        for source in self._sources:
            source.flush()

    def log(self, snapshot: InstrumentationSnapshot, logger: Any) -> None:
        logger.info(f"Elapsed time: {format_elapsed(snapshot.elapsed)}", step=snapshot.step)
        for summary in snapshot.queries:
            logger.info(
                f"SQL queries ({summary.source}): {summary.count}, "
                f"execution time {summary.total_time:.4f} seconds",
                step=snapshot.step,
                queries=summary.to_dict(),
            )
        logger.info(f"Current memory usage: {format_bytes(snapshot.memory_current)}", step=snapshot.step)
        logger.info(f"Peak memory usage: {format_bytes(snapshot.memory_peak)}", step=snapshot.step)


__all__ = [
    "format_bytes",
    "format_elapsed",
    "QueryLogEntry",
    "QueryLogSource",
    "QuerySummary",
    "VerbStats",
    "query_verb",
    "current_memory",
    "peak_memory",
    "Probe",
    "InstrumentationSnapshot",
    "InstrumentationCollector",
]
