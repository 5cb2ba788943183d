# ABOUTME: Tests for run metrics and per-iteration telemetry
# ABOUTME: Validates counters, bounded history, success rate and trigger reasons

"""Tests for metrics module."""

import time
from datetime import datetime, timedelta

from ralph_sprint.metrics import IterationStats, Metrics, TriggerReason


class TestMetrics:
    """Test basic Metrics class."""

    def test_initial_values(self):
        m = Metrics()
        assert m.iterations == 0
        assert m.tasks_completed == 0
        assert m.rotations == 0

    def test_success_rate(self):
        m = Metrics()
        assert m.success_rate() == 0.0
        m.successful_iterations = 8
        m.failed_iterations = 2
        assert m.success_rate() == 0.8

    def test_elapsed_hours(self):
        m = Metrics(start_time=time.time() - 3600)
        assert 0.99 < m.elapsed_hours() < 1.01

    def test_to_dict(self):
        m = Metrics(iterations=3, gutters=1)
        data = m.to_dict()
        assert data["iterations"] == 3
        assert data["gutters"] == 1
        assert "success_rate" in data


class TestIterationStats:
    """Test IterationStats history."""

    def test_record_iteration(self):
        stats = IterationStats()
        stats.record_iteration(
            iteration=1,
            duration=2.5,
            success=True,
            error="",
            trigger_reason=TriggerReason.INITIAL.value,
            signal="COMPLETE",
            decision="task_complete",
        )
        entry = stats.iterations[0]
        assert entry["trigger_reason"] == "initial"
        assert entry["signal"] == "COMPLETE"
        assert stats.successes == 1

    def test_history_is_bounded(self):
        stats = IterationStats(max_iterations_stored=3)
        for n in range(1, 6):
            stats.record_iteration(n, 1.0, True, "")
        assert [e["iteration"] for e in stats.iterations] == [3, 4, 5]
        assert stats.total == 5

    def test_preview_truncated(self):
        stats = IterationStats(max_preview_length=10)
        stats.record_iteration(1, 1.0, True, "", output_preview="a" * 50)
        assert stats.iterations[0]["output_preview"] == "a" * 10 + "..."

    def test_success_rate_percent(self):
        stats = IterationStats()
        stats.record_iteration(1, 1.0, True, "")
        stats.record_iteration(2, 1.0, False, "boom")
        assert stats.get_success_rate() == 50.0

    def test_average_duration(self):
        stats = IterationStats()
        assert stats.get_average_duration() == 0.0
        stats.record_iteration(1, 2.0, True, "")
        stats.record_iteration(2, 4.0, True, "")
        assert stats.get_average_duration() == 3.0

    def test_record_start_and_to_dict(self):
        stats = IterationStats()
        stats.record_start(4)
        stats.record_iteration(4, 1.0, False, "boom")
        data = stats.to_dict()
        assert data["current"] == 4
        assert data["total"] == 4
        assert data["failures"] == 1
        assert data["success_rate"] == 0.0

    def test_runtime_format(self):
        stats = IterationStats(start_time=datetime.now() - timedelta(hours=1, minutes=2, seconds=3))
        assert stats.get_runtime().startswith("1h 2m")


class TestTriggerReason:
    def test_values(self):
        assert TriggerReason.ROTATION.value == "rotation"
        assert TriggerReason("new_task") == TriggerReason.NEW_TASK
