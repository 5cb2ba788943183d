# ABOUTME: Stop/continuation decision for the end of each worker execution
# ABOUTME: Pure function from signal, resource band, queue status and task counters

"""Stop/continuation policy.

Rules, first match wins:

1. resource Critical: checkpoint and rotate to a fresh context
2. COMPLETE: fresh session, re-poll the queue
3. GUTTER: checkpoint, charge a pass, fresh session
4. STALLED, or no workable task left: idle
5. EMPTY, or empty queue: idle
6. per-task iteration ceiling reached: implicit stall (charge a pass, fresh session)
7. otherwise continue in the same session
"""

from dataclasses import dataclass
from enum import Enum

from .accounting import ResourceStatus
from .signals import Signal
from .tasks import QueueKind, QueueStatus


class Action(str, Enum):
    ROTATE = "rotate"
    TASK_COMPLETE = "task_complete"
    GUTTER_RECOVERY = "gutter_recovery"
    IDLE = "idle"
    IMPLICIT_STALL = "implicit_stall"
    CONTINUE = "continue"


@dataclass(frozen=True)
class PolicyInput:
    signal: Signal = Signal.NONE
    resource_status: ResourceStatus = ResourceStatus.HEALTHY
    queue_status: QueueStatus = QueueStatus(QueueKind.WORKABLE, 1)
    task_iterations: int = 0
    max_iterations: int = 20


@dataclass(frozen=True)
class Decision:
    """What the controller does after a worker execution.

    Attributes:
        checkpoint: Label the commit as a recovery checkpoint rather than
            naming the finished work.
        clear_session: Drop the continuity token; next dispatch starts fresh.
        reset_task_iterations: Restart the per-task iteration counter.
        bump_passes: Charge one pass to in-progress tasks.
    """

    action: Action
    reason: str
    checkpoint: bool = False
    clear_session: bool = False
    reset_task_iterations: bool = False
    bump_passes: bool = False

    @property
    def rotates_context(self) -> bool:
        return self.action == Action.ROTATE


def decide(state: PolicyInput) -> Decision:
    if state.resource_status == ResourceStatus.CRITICAL:
        return Decision(
            Action.ROTATE,
            "Context limit reached, rotating to a fresh context",
            checkpoint=True,
            clear_session=True,
        )

    if state.signal == Signal.COMPLETE:
        return Decision(
            Action.TASK_COMPLETE,
            "✅ Task complete",
            clear_session=True,
            reset_task_iterations=True,
        )

    if state.signal == Signal.GUTTER:
        return Decision(
            Action.GUTTER_RECOVERY,
            "🚨 GUTTER (agent stuck)",
            checkpoint=True,
            clear_session=True,
            reset_task_iterations=True,
            bump_passes=True,
        )

    if state.signal == Signal.STALLED or state.queue_status.is_stalled:
        return Decision(
            Action.IDLE,
            "⏸️ All tasks stalled",
            clear_session=True,
            reset_task_iterations=True,
        )

    if state.signal == Signal.EMPTY or state.queue_status.is_empty:
        return Decision(
            Action.IDLE,
            "📭 No tasks",
            clear_session=True,
            reset_task_iterations=True,
        )

    if state.task_iterations >= state.max_iterations:
        return Decision(
            Action.IMPLICIT_STALL,
            f"⚠️ Max iterations ({state.max_iterations}) for task",
            clear_session=True,
            reset_task_iterations=True,
            bump_passes=True,
        )

    return Decision(
        Action.CONTINUE,
        f"Agent finished ({state.queue_status.count} remaining)",
    )
