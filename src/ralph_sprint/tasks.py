# ABOUTME: Sprint task model and the todo-queue state machine
# ABOUTME: Computes EMPTY/WORKABLE/STALLED status and sweeps completed tasks to done

"""Task model and selector for the sprint workflow.

The selector never ranks tasks. Choosing among workable tasks is left to
the worker; the selector only enforces the pass ceiling mechanically and
performs the controller's batch moves.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Union

logger = logging.getLogger("ralph.tasks")


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Category(str, Enum):
    BACKEND = "backend"
    FRONTEND = "frontend"
    DATA = "data"


def _coerce(enum_cls, value):
    """Map a raw value to an enum member, keeping unknown values as given."""
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _raw(value):
    return value.value if isinstance(value, Enum) else value


def _string_list(name: str, value: Any) -> List[str]:
    """Accept a list, or a single string as a one-item list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return list(value)
    raise ValueError(f"{name} must be a list of strings (got {value!r})")


def _passes(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


_KNOWN_KEYS = (
    "category",
    "description",
    "status",
    "priority",
    "steps",
    "dependencies",
    "passes",
    "completed_at",
)


@dataclass
class Task:
    """One entry of a sprint partition document.

    Keys the model does not know about are kept in ``extra`` and written
    back unchanged.
    """

    description: str
    status: Optional[Union[TaskStatus, str]] = TaskStatus.PENDING
    category: Optional[Union[Category, str]] = None
    priority: Optional[Union[Priority, str]] = None
    steps: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    passes: int = 0
    completed_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            description=str(data.get("description", "")),
            status=_coerce(TaskStatus, data.get("status")),
            category=_coerce(Category, data.get("category")),
            priority=_coerce(Priority, data.get("priority")),
            steps=_string_list("steps", data.get("steps")),
            dependencies=_string_list("dependencies", data.get("dependencies")),
            passes=_passes(data.get("passes")),
            completed_at=data.get("completed_at"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.category is not None:
            data["category"] = _raw(self.category)
        data["description"] = self.description
        data["status"] = _raw(self.status)
        if self.priority is not None:
            data["priority"] = _raw(self.priority)
        data["steps"] = list(self.steps)
        data["dependencies"] = list(self.dependencies)
        data["passes"] = self.passes
        if self.completed_at is not None:
            data["completed_at"] = self.completed_at
        data.update(self.extra)
        return data


class QueueKind(str, Enum):
    EMPTY = "EMPTY"
    WORKABLE = "WORKABLE"
    STALLED = "STALLED"


@dataclass(frozen=True)
class QueueStatus:
    kind: QueueKind
    count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.kind == QueueKind.EMPTY

    @property
    def is_workable(self) -> bool:
        return self.kind == QueueKind.WORKABLE

    @property
    def is_stalled(self) -> bool:
        return self.kind == QueueKind.STALLED

    def __str__(self) -> str:
        if self.kind == QueueKind.EMPTY:
            return "EMPTY"
        return f"{self.kind.value}:{self.count}"


class SweepResult(NamedTuple):
    todo: List[Task]
    done: List[Task]
    moved: List[Task]


WORKABLE_STATUSES = (None, TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


class TaskSelector:
    """Three-way queue status and the todo partition transitions."""

    def __init__(self, max_passes: int = 3):
        if max_passes < 1:
            raise ValueError("max_passes must be at least 1")
        self.max_passes = max_passes

    def is_workable(self, task: Task) -> bool:
        return task.status in WORKABLE_STATUSES and task.passes < self.max_passes

    def workable(self, queue: List[Task]) -> List[Task]:
        return [task for task in queue if self.is_workable(task)]

    def stalled(self, queue: List[Task]) -> List[Task]:
        """Tasks present in the queue but not workable."""
        return [task for task in queue if not self.is_workable(task)]

    def counts(self, queue: List[Task]) -> Dict[str, int]:
        workable = len(self.workable(queue))
        return {
            "workable": workable,
            "stalled": len(queue) - workable,
            "total": len(queue),
        }

    def status(self, queue: List[Task]) -> QueueStatus:
        if not queue:
            return QueueStatus(QueueKind.EMPTY, 0)
        workable = len(self.workable(queue))
        if workable > 0:
            return QueueStatus(QueueKind.WORKABLE, workable)
        return QueueStatus(QueueKind.STALLED, len(queue))

    def _find(self, queue: List[Task], description: str) -> Task:
        for task in queue:
            if task.description == description:
                return task
        raise KeyError(f"No task with description: {description}")

    def mark_in_progress(self, queue: List[Task], description: str) -> Task:
        """Select a task: status becomes in_progress and passes goes up by one.

        Raises:
            KeyError: If no task has this description.
            ValueError: If the task is not workable.
        """
        task = self._find(queue, description)
        if not self.is_workable(task):
            raise ValueError(
                f"Task '{description}' is not workable "
                f"(status={_raw(task.status)}, passes={task.passes})"
            )
        task.status = TaskStatus.IN_PROGRESS
        task.passes += 1
        logger.debug(f"Task in progress: {description} (passes={task.passes})")
        return task

    def mark_completed(self, queue: List[Task], description: str) -> Task:
        task = self._find(queue, description)
        task.status = TaskStatus.COMPLETED
        return task

    def bump_passes(self, queue: List[Task]) -> List[Task]:
        """Charge one implicit pass to every in-progress task."""
        bumped = []
        for task in queue:
            if task.status == TaskStatus.IN_PROGRESS:
                task.passes += 1
                bumped.append(task)
        if bumped:
            logger.info(
                f"Charged an implicit pass to {len(bumped)} in-progress task(s)"
            )
        return bumped

    def revert_completed(self, queue: List[Task]) -> List[Task]:
        """Put completed tasks back in progress after a rejected completion."""
        reverted = []
        for task in queue:
            if task.status == TaskStatus.COMPLETED:
                task.status = TaskStatus.IN_PROGRESS
                reverted.append(task)
        return reverted

    def sweep_completed(
        self,
        todo: List[Task],
        done: List[Task],
        now: Optional[datetime] = None,
    ) -> SweepResult:
        """Move every completed todo task to done in one batch.

        Each moved task is stamped with ``completed_at``. Done is an
        append-only history, so a description may appear there more than once
        when a task is re-added to todo and completed again.
        """
        now = now or datetime.now(timezone.utc)
        stamp = now.isoformat()

        remaining = []
        new_done = list(done)
        moved = []

        for task in todo:
            if task.status != TaskStatus.COMPLETED:
                remaining.append(task)
                continue
            task.completed_at = stamp
            new_done.append(task)
            moved.append(task)

        return SweepResult(todo=remaining, done=new_done, moved=moved)
