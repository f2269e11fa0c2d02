"""Tests for progress telemetry."""

import json
import tempfile
from pathlib import Path

import pytest

from eventimport.progress import (
    JsonlProgressSink,
    ProgressLogEntry,
    ProgressLogger,
    TimeEstimator,
)

from conftest import FakeClock, ListSink


class TestProgressLogEntry:
    def test_unknown_step_rejected(self):
        with pytest.raises(ValueError):
            ProgressLogEntry(run_id="r1", step="exploding", message="x")

    def test_to_dict_drops_empty_fields(self):
        data = ProgressLogEntry(run_id="r1", step="starting", message="Start").to_dict()
        assert data["run_id"] == "r1"
        assert "progress_current" not in data
        assert data["created_at"].endswith("Z")


class TestTimeEstimator:
    def test_linear_estimate(self):
        clock = FakeClock()
        estimator = TimeEstimator(clock=clock)
        estimator.start()
        clock.advance(10)
        # 10 s for 20 items, 30 left
        assert estimator.estimate_remaining_ms(20, 50) == 15000

    def test_no_estimate_without_progress(self):
        estimator = TimeEstimator(clock=FakeClock())
        estimator.start()
        assert estimator.estimate_remaining_ms(0, 50) is None

    def test_no_estimate_before_start(self):
        estimator = TimeEstimator(clock=FakeClock())
        assert estimator.estimate_remaining_ms(5, 50) is None

    def test_done_means_zero(self):
        clock = FakeClock()
        estimator = TimeEstimator(clock=clock)
        estimator.start()
        clock.advance(3)
        assert estimator.estimate_remaining_ms(50, 50) == 0


class TestProgressLogger:
    def test_no_run_id_writes_nothing(self):
        sink = ListSink()
        ProgressLogger(sink).log_start(None, "Arena Varberg")
        assert sink.items == []

    def test_no_sink_is_silent(self):
        ProgressLogger().log_start("r1", "Arena Varberg")

    def test_helpers_use_expected_steps(self):
        sink = ListSink()
        progress = ProgressLogger(sink)
        progress.log_start("r1", "Arena Varberg")
        progress.log_events_found("r1", 40)
        progress.log_deduplicating("r1", 30, 10, 40)
        progress.log_categorizing("r1", 30)
        progress.log_matching_organizers("r1", 30)
        progress.log_importing("r1", 10, 30)
        progress.log_completed("r1", 30, {"published": 3})
        progress.log_error("r1", "store down")

        assert [e.step for e in sink.items] == [
            "starting",
            "scraping",
            "deduplicating",
            "categorizing",
            "matching_organizers",
            "importing",
            "completed",
            "failed",
        ]
        assert sink.items[2].metadata == {"unique": 30, "duplicates": 10}
        assert sink.items[6].metadata == {"published": 3}
        assert sink.items[7].metadata == {"error": "store down"}

    def test_importing_carries_estimate(self):
        clock = FakeClock()
        estimator = TimeEstimator(clock=clock)
        estimator.start()
        clock.advance(2)
        sink = ListSink()
        ProgressLogger(sink).log_importing("r1", 10, 30, estimator)

        entry = sink.items[0]
        assert entry.progress_current == 10
        assert entry.progress_total == 30
        assert entry.estimated_time_remaining_ms == 4000

    def test_sink_failure_is_swallowed(self, caplog):
        progress = ProgressLogger(ListSink(error=OSError("read-only file system")))
        progress.log_start("r1", "Arena Varberg")
        assert "Failed to write progress entry" in caplog.text


class TestJsonlProgressSink:
    def test_writes_json_lines(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "logs" / "progress.jsonl"
            sink = JsonlProgressSink(path)
            ProgressLogger(sink).log_events_found("r1", 12)
            ProgressLogger(sink).log_completed("r1", 12)

            lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
            assert [line["step"] for line in lines] == ["scraping", "completed"]
            assert lines[0]["progress_total"] == 12
            assert lines[0]["message"] == "Hittade 12 evenemang"
