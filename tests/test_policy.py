# ABOUTME: Tests for the stop/continuation policy
# ABOUTME: Rule precedence from resource band through to continuing the session

"""Tests for policy module."""

import pytest

from ralph_sprint.accounting import ResourceStatus
from ralph_sprint.policy import Action, PolicyInput, decide
from ralph_sprint.signals import Signal
from ralph_sprint.tasks import QueueKind, QueueStatus

WORKABLE = QueueStatus(QueueKind.WORKABLE, 2)
STALLED = QueueStatus(QueueKind.STALLED, 3)
EMPTY = QueueStatus(QueueKind.EMPTY, 0)


class TestDecide:
    def test_critical_beats_complete(self):
        decision = decide(PolicyInput(signal=Signal.COMPLETE, resource_status=ResourceStatus.CRITICAL))
        assert decision.action == Action.ROTATE
        assert decision.checkpoint
        assert decision.clear_session
        assert decision.rotates_context

    def test_complete(self):
        decision = decide(PolicyInput(signal=Signal.COMPLETE, task_iterations=4))
        assert decision.action == Action.TASK_COMPLETE
        assert decision.clear_session
        assert decision.reset_task_iterations
        assert not decision.bump_passes

    def test_warning_band_does_not_rotate(self):
        decision = decide(PolicyInput(signal=Signal.COMPLETE, resource_status=ResourceStatus.WARNING))
        assert decision.action == Action.TASK_COMPLETE

    def test_gutter(self):
        decision = decide(PolicyInput(signal=Signal.GUTTER))
        assert decision.action == Action.GUTTER_RECOVERY
        assert decision.checkpoint
        assert decision.bump_passes

    def test_complete_beats_empty_queue(self):
        decision = decide(PolicyInput(signal=Signal.COMPLETE, queue_status=EMPTY))
        assert decision.action == Action.TASK_COMPLETE

    @pytest.mark.parametrize(
        "signal,queue",
        [(Signal.STALLED, WORKABLE), (Signal.NONE, STALLED)],
    )
    def test_stalled_idles(self, signal, queue):
        decision = decide(PolicyInput(signal=signal, queue_status=queue))
        assert decision.action == Action.IDLE
        assert "stalled" in decision.reason

    @pytest.mark.parametrize(
        "signal,queue",
        [(Signal.EMPTY, WORKABLE), (Signal.NONE, EMPTY)],
    )
    def test_empty_idles(self, signal, queue):
        decision = decide(PolicyInput(signal=signal, queue_status=queue))
        assert decision.action == Action.IDLE
        assert "No tasks" in decision.reason

    def test_iteration_ceiling(self):
        decision = decide(PolicyInput(task_iterations=20, max_iterations=20))
        assert decision.action == Action.IMPLICIT_STALL
        assert decision.bump_passes
        assert decision.clear_session

    def test_continue(self):
        decision = decide(PolicyInput(queue_status=WORKABLE, task_iterations=3))
        assert decision.action == Action.CONTINUE
        assert not decision.clear_session
        assert decision.reason == "Agent finished (2 remaining)"
