# ABOUTME: Tests for the instruction payload builder
# ABOUTME: Sprint, stalled and empty prompts plus error feedback carry-over

"""Tests for context module."""

from ralph_sprint.context import ContextManager
from ralph_sprint.tasks import QueueKind, QueueStatus


class TestContextManager:
    def test_sprint_prompt(self):
        prompt = ContextManager(max_passes=4).get_prompt(7, QueueStatus(QueueKind.WORKABLE, 2))
        assert "Ralph Iteration 7" in prompt
        assert "passes >= 4" in prompt
        assert "<ralph>COMPLETE</ralph>" in prompt
        assert "<ralph>GUTTER</ralph>" in prompt

    def test_stalled_prompt(self):
        prompt = ContextManager().get_prompt(1, QueueStatus(QueueKind.STALLED, 3))
        assert "<ralph>STALLED</ralph>" in prompt
        assert "<ralph>COMPLETE</ralph>" not in prompt

    def test_empty_prompt(self):
        prompt = ContextManager().get_prompt(1, QueueStatus(QueueKind.EMPTY))
        assert "<ralph>EMPTY</ralph>" in prompt

    def test_error_feedback_included(self):
        manager = ContextManager()
        manager.add_error_feedback("first")
        manager.add_error_feedback("second")
        manager.add_error_feedback("third")
        prompt = manager.get_prompt(2, QueueStatus(QueueKind.WORKABLE, 1))
        assert "## Recent Errors to Avoid" in prompt
        assert "Error: third" in prompt
        assert "Error: second" in prompt
        assert "Error: first" not in prompt

    def test_feedback_history_bounded(self):
        manager = ContextManager()
        for n in range(8):
            manager.add_error_feedback(f"e{n}")
        assert len(manager.error_history) == 5
        assert manager.error_history[0] == "Error: e3"

    def test_long_feedback_truncated(self):
        manager = ContextManager()
        manager.add_error_feedback("x" * 10000)
        assert len(manager.error_history[0]) < 4100
