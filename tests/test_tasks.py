# ABOUTME: Tests for the sprint task model and TaskSelector queue status
# ABOUTME: Covers workable filtering, pass ceilings, implicit passes and the completed sweep

"""Tests for tasks module."""

from datetime import datetime, timezone

import pytest

from ralph_sprint.tasks import (
    Priority,
    QueueKind,
    QueueStatus,
    Task,
    TaskSelector,
    TaskStatus,
)


def make(description, status="pending", passes=0):
    return Task.from_dict({"description": description, "status": status, "passes": passes})


class TestTaskModel:
    """Task parsing and serialization."""

    def test_from_dict_coerces_known_values(self):
        task = Task.from_dict(
            {"description": "Add login", "status": "in_progress", "priority": "high", "passes": 2}
        )
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.priority == Priority.HIGH
        assert task.passes == 2

    def test_missing_status_stays_none(self):
        task = Task.from_dict({"description": "No status"})
        assert task.status is None

    def test_invalid_passes_read_as_zero(self):
        assert Task.from_dict({"description": "a", "passes": "lots"}).passes == 0
        assert Task.from_dict({"description": "a", "passes": None}).passes == 0
        assert Task.from_dict({"description": "a", "passes": -4}).passes == 0

    def test_single_string_list_fields_wrapped(self):
        task = Task.from_dict({"description": "a", "dependencies": "Setup DB", "steps": None})
        assert task.dependencies == ["Setup DB"]
        assert task.steps == []
        assert task.to_dict()["dependencies"] == ["Setup DB"]

    def test_non_list_list_fields_rejected(self):
        with pytest.raises(ValueError):
            Task.from_dict({"description": "a", "steps": 3})

    def test_unknown_keys_survive(self):
        data = {"description": "Keep me", "status": "pending", "owner": "alex", "priority": "urgent"}
        out = Task.from_dict(data).to_dict()
        assert out["owner"] == "alex"
        assert out["priority"] == "urgent"

    def test_to_dict_omits_unset_optionals(self):
        out = Task("Plain").to_dict()
        assert out == {
            "description": "Plain",
            "status": "pending",
            "steps": [],
            "dependencies": [],
            "passes": 0,
        }


class TestQueueStatus:
    """Three-way status of the todo partition."""

    def test_empty_queue(self):
        status = TaskSelector().status([])
        assert status.is_empty
        assert str(status) == "EMPTY"

    def test_workable_count(self):
        selector = TaskSelector(max_passes=3)
        queue = [make("a"), make("b", "in_progress", 1), make("c", passes=3)]
        status = selector.status(queue)
        assert status == QueueStatus(QueueKind.WORKABLE, 2)
        assert str(status) == "WORKABLE:2"

    def test_all_stalled(self):
        selector = TaskSelector(max_passes=3)
        queue = [make("a", passes=3), make("b", "blocked")]
        status = selector.status(queue)
        assert status.is_stalled
        assert status.count == 2

    def test_missing_status_is_workable(self):
        selector = TaskSelector()
        assert selector.is_workable(Task.from_dict({"description": "x"}))

    def test_completed_and_blocked_are_not_workable(self):
        selector = TaskSelector()
        assert not selector.is_workable(make("a", "completed"))
        assert not selector.is_workable(make("b", "blocked"))

    def test_counts(self):
        selector = TaskSelector(max_passes=2)
        queue = [make("a"), make("b", passes=2), make("c", "completed")]
        assert selector.counts(queue) == {"workable": 1, "stalled": 2, "total": 3}

    def test_max_passes_must_be_positive(self):
        with pytest.raises(ValueError):
            TaskSelector(max_passes=0)


class TestTransitions:
    """Selection, implicit passes and reverts."""

    def test_mark_in_progress_charges_a_pass(self):
        queue = [make("a")]
        task = TaskSelector().mark_in_progress(queue, "a")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.passes == 1

    def test_mark_in_progress_rejects_stalled_task(self):
        queue = [make("a", passes=3)]
        with pytest.raises(ValueError):
            TaskSelector(max_passes=3).mark_in_progress(queue, "a")

    def test_mark_in_progress_unknown_task(self):
        with pytest.raises(KeyError):
            TaskSelector().mark_in_progress([], "missing")

    def test_repeated_failures_stall_the_task(self):
        selector = TaskSelector(max_passes=3)
        queue = [make("flaky", "in_progress", 1)]
        selector.bump_passes(queue)
        selector.bump_passes(queue)
        assert queue[0].passes == 3
        assert selector.status(queue).is_stalled

    def test_human_reset_makes_task_workable_again(self):
        selector = TaskSelector(max_passes=3)
        queue = [make("flaky", "in_progress", 3)]
        assert selector.status(queue).is_stalled
        queue[0].passes = 0
        assert selector.status(queue).is_workable

    def test_bump_passes_only_touches_in_progress(self):
        queue = [make("a"), make("b", "in_progress", 1)]
        bumped = TaskSelector().bump_passes(queue)
        assert [t.description for t in bumped] == ["b"]
        assert queue[0].passes == 0
        assert queue[1].passes == 2

    def test_revert_completed(self):
        queue = [make("a", "completed"), make("b")]
        reverted = TaskSelector().revert_completed(queue)
        assert reverted == [queue[0]]
        assert queue[0].status == TaskStatus.IN_PROGRESS


class TestSweep:
    """Batch move of completed tasks to the done partition."""

    def test_sweep_moves_completed_and_stamps_time(self):
        now = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        todo = [make("a", "completed"), make("b")]
        result = TaskSelector().sweep_completed(todo, [], now=now)

        assert [t.description for t in result.todo] == ["b"]
        assert [t.description for t in result.done] == ["a"]
        assert result.moved[0].completed_at == now.isoformat()

    def test_sweep_preserves_existing_done(self):
        done = [make("old", "completed")]
        result = TaskSelector().sweep_completed([make("new", "completed")], done)
        assert [t.description for t in result.done] == ["old", "new"]

    def test_sweep_moves_task_readded_under_done_description(self):
        done = [make("a", "completed")]
        readded = make("a", "completed")
        result = TaskSelector().sweep_completed([readded], done)

        assert result.todo == []
        assert [t.description for t in result.done] == ["a", "a"]
        assert result.moved == [readded]

    def test_sweep_without_completed_is_noop(self):
        todo = [make("a")]
        result = TaskSelector().sweep_completed(todo, [])
        assert result.todo == todo
        assert result.moved == []
