"""Tests for per-step instrumentation."""

from unittest.mock import MagicMock

import pytest

from batchsync.orchestration.instrumentation import (
    InstrumentationCollector,
    QueryLogEntry,
    QueryLogSource,
    QuerySummary,
    current_memory,
    format_bytes,
    format_elapsed,
    peak_memory,
    query_verb,
)


class FakeSource:
    """In-memory query log."""

    def __init__(self, name="fake"):
        self.name = name
        self.log: list[QueryLogEntry] = []
        self.enabled = False
        self.flushes = 0

    def enable(self):
        self.enabled = True

    def disable(self):
        self.enabled = False

    def entries(self):
        return list(self.log)

    def flush(self):
        self.log.clear()
        self.flushes += 1

    def record(self, sql, duration=0.01):
        self.log.append(QueryLogEntry(sql, duration))


class FakeClock:
    def __init__(self, *ticks):
        self._ticks = list(ticks)

    def __call__(self):
        return self._ticks.pop(0)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestFormatBytes:
    @pytest.mark.parametrize(
        "size, expected",
        [
            (0, "0 B"),
            (500, "500 B"),
            (1023, "1023 B"),
            (1024, "1 KB"),
            (2048, "2 KB"),
            (1536, "1.5 KB"),
            (1024 * 1024 - 1, "1024 KB"),
            (3 * 1024 * 1024, "3 MB"),
            (int(2.25 * 1024 * 1024), "2.25 MB"),
        ],
    )
    def test_units(self, size, expected):
        assert format_bytes(size) == expected


class TestFormatElapsed:
    def test_seconds(self):
        assert format_elapsed(1.5) == "1.50 seconds"

    def test_just_under_a_minute(self):
        assert format_elapsed(59.99) == "59.99 seconds"

    def test_a_minute_switches_to_minutes(self):
        assert format_elapsed(60) == "1.00 minutes"

    def test_minutes(self):
        assert format_elapsed(150) == "2.50 minutes"


class TestQueryVerb:
    @pytest.mark.parametrize(
        "sql, verb",
        [
            ("SELECT * FROM users", "select"),
            ("  insert into t values (1)", "insert"),
            ("UPDATE\nt SET x = 1", "update"),
            ("", "unknown"),
        ],
    )
    def test_first_token_lowercased(self, sql, verb):
        assert query_verb(sql) == verb


class TestQuerySummary:
    def test_groups_by_verb(self):
        summary = QuerySummary.from_entries(
            "db",
            [
                QueryLogEntry("SELECT 1", 0.5),
                QueryLogEntry("select 2", 0.25),
                QueryLogEntry("INSERT INTO t VALUES (1)", 1.0),
            ],
        )
        assert summary.count == 3
        assert summary.total_time == pytest.approx(1.75)
        assert summary.by_verb["select"].count == 2
        assert summary.by_verb["select"].total_time == pytest.approx(0.75)
        assert summary.to_dict()["insert"] == {"count": 1, "time": 1.0}

    def test_empty(self):
        summary = QuerySummary.from_entries("db", [])
        assert summary.count == 0
        assert summary.to_dict() == {}


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


class TestMemory:
    def test_current_memory_positive(self):
        assert current_memory() > 0

    def test_peak_at_least_current(self):
        assert peak_memory() >= current_memory() // 2


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class TestInstrumentationCollector:
    def _collector(self, *sources, ticks=(10.0, 12.5)):
        return InstrumentationCollector(
            sources,
            clock=FakeClock(*ticks),
            memory=lambda: (2048, 3 * 1024 * 1024),
        )

    def test_fake_source_satisfies_protocol(self):
        assert isinstance(FakeSource(), QueryLogSource)

    def test_snapshot_without_sources(self):
        collector = self._collector()
        snapshot = collector.finish(collector.begin(), "import")
        assert snapshot.step == "import"
        assert snapshot.elapsed == pytest.approx(2.5)
        assert snapshot.memory_current == 2048
        assert snapshot.memory_peak == 3 * 1024 * 1024
        assert snapshot.queries == ()

    def test_counts_only_entries_since_begin(self):
        source = FakeSource()
        source.record("SELECT old")
        collector = self._collector(source)

        probe = collector.begin()
        source.record("SELECT a")
        source.record("DELETE FROM b")
        snapshot = collector.finish(probe, "step")

        (summary,) = snapshot.queries
        assert summary.source == "fake"
        assert summary.count == 2
        assert set(summary.by_verb) == {"select", "delete"}

    def test_flush_empties_every_source(self):
        first, second = FakeSource("one"), FakeSource("two")
        first.record("SELECT 1")
        second.record("SELECT 2")
        collector = self._collector(first, second)

        collector.flush()

        assert first.entries() == [] and second.entries() == []
        assert first.flushes == second.flushes == 1

    def test_enable_sources(self):
        source = FakeSource()
        collector = self._collector(source)
        collector.enable_sources()
        assert source.enabled

    def test_detach_sources(self):
        source = FakeSource()
        collector = self._collector(source)
        collector.enable_sources()
        source.record("SELECT 1")

        collector.detach_sources()

        assert not source.enabled
        assert source.entries() == []

    def test_add_source(self):
        collector = self._collector()
        collector.add_source(FakeSource())
        assert len(collector.sources) == 1

    def test_log_renders_units(self):
        source = FakeSource()
        collector = self._collector(source)
        probe = collector.begin()
        source.record("SELECT 1", 0.5)
        snapshot = collector.finish(probe, "step")
        logger = MagicMock()

        collector.log(snapshot, logger)

        messages = [call.args[0] for call in logger.info.call_args_list]
        assert messages[0] == "Elapsed time: 2.50 seconds"
        assert messages[1].startswith("SQL queries (fake): 1")
        assert "Current memory usage: 2 KB" in messages
        assert "Peak memory usage: 3 MB" in messages
        query_call = logger.info.call_args_list[1]
        assert query_call.kwargs["queries"] == {"select": {"count": 1, "time": 0.5}}
