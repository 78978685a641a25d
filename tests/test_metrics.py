"""Tests for metrics recording and export."""
import pytest

from pricemap.jobs.metrics import MetricsRecorder
from pricemap.jobs.metrics_exporter import MetricsExporter


def test_record_run_accumulates():
    """Counters add up across runs and totals follow."""
    metrics = MetricsRecorder()
    metrics.record_run("a", parsed=10, saved=8, errors=2, duration=1.0)
    metrics.record_run("a", parsed=5, saved=5, errors=0, duration=3.0)
    metrics.record_run("b", parsed=1, saved=1, errors=0, duration=0.5)

    stats = metrics.source_snapshot("a")
    assert stats.parsed == 15
    assert stats.saved == 13
    assert stats.errors == 2
    assert stats.run_count == 2
    assert stats.average_duration == pytest.approx(2.0)
    assert stats.last_run_time is not None

    snapshot = metrics.snapshot()
    assert snapshot["total_parsed"] == 16
    assert snapshot["total_saved"] == 14
    assert snapshot["total_errors"] == 2
    assert set(snapshot["sources"]) == {"a", "b"}


def test_unknown_source_snapshot():
    """A source that never ran has no stats."""
    assert MetricsRecorder().source_snapshot("nope") is None


def test_snapshot_is_a_copy():
    """Changing a snapshot does not change the recorder."""
    metrics = MetricsRecorder()
    metrics.record_run("a", 1, 1, 0, 1.0)
    stats = metrics.source_snapshot("a")
    stats.parsed = 999
    assert metrics.source_snapshot("a").parsed == 1


@pytest.mark.asyncio
async def test_exporter_appends_lines(tmp_path):
    """Each export appends one JSON line."""
    exporter = MetricsExporter(tmp_path / "metrics.jsonl")
    metrics = MetricsRecorder()
    metrics.record_run("a", 2, 2, 0, 0.1)

    await exporter.export("run-1", metrics.snapshot(), [])
    await exporter.export("run-2", metrics.snapshot(), ["a"])

    lines = exporter.read_last()
    assert [line["run_id"] for line in lines] == ["run-1", "run-2"]
    assert lines[1]["failed_sources"] == ["a"]
    assert lines[0]["total_parsed"] == 2
    assert exporter.read_last(1)[0]["run_id"] == "run-2"


def test_exporter_without_file(tmp_path):
    """Reading before any export returns nothing."""
    assert MetricsExporter(tmp_path / "none.jsonl").read_last() == []
