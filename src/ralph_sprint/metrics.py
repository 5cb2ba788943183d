# ABOUTME: Run metrics and per-iteration telemetry for the sprint loop
# ABOUTME: Counters, bounded iteration history, and why each iteration was triggered

"""Metrics tracking."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List


class TriggerReason(str, Enum):
    """Why an iteration was dispatched."""

    INITIAL = "initial"
    CONTINUE = "continue"
    NEW_TASK = "new_task"
    RECOVERY = "recovery"
    ROTATION = "rotation"
    NEW_WORK = "new_work"


@dataclass
class Metrics:
    iterations: int = 0
    successful_iterations: int = 0
    failed_iterations: int = 0
    errors: int = 0
    checkpoints: int = 0
    tasks_completed: int = 0
    gutters: int = 0
    rotations: int = 0
    verification_failures: int = 0
    start_time: float = field(default_factory=time.time)

    def success_rate(self) -> float:
        total = self.successful_iterations + self.failed_iterations
        if total == 0:
            return 0.0
        return self.successful_iterations / total

    def elapsed_hours(self) -> float:
        return (time.time() - self.start_time) / 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "successful_iterations": self.successful_iterations,
            "failed_iterations": self.failed_iterations,
            "errors": self.errors,
            "checkpoints": self.checkpoints,
            "tasks_completed": self.tasks_completed,
            "gutters": self.gutters,
            "rotations": self.rotations,
            "verification_failures": self.verification_failures,
            "success_rate": self.success_rate(),
            "elapsed_hours": self.elapsed_hours(),
        }


@dataclass
class IterationStats:
    """Per-iteration history, bounded to the most recent entries."""

    total: int = 0
    successes: int = 0
    failures: int = 0
    start_time: datetime = None
    current_iteration: int = 0
    iterations: List[Dict[str, Any]] = field(default_factory=list)
    max_iterations_stored: int = 1000
    max_preview_length: int = 500

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.now()

    def record_start(self, iteration: int) -> None:
        self.current_iteration = iteration
        self.total = max(self.total, iteration)

    def record_success(self, iteration: int) -> None:
        self.total = max(self.total, iteration)
        self.successes += 1

    def record_failure(self, iteration: int) -> None:
        self.total = max(self.total, iteration)
        self.failures += 1

    def record_iteration(
        self,
        iteration: int,
        duration: float,
        success: bool,
        error: str,
        trigger_reason: str = "",
        output_preview: str = "",
        tokens_used: int = 0,
        signal: str = "",
        decision: str = "",
    ) -> None:
        if success:
            self.record_success(iteration)
        else:
            self.record_failure(iteration)

        if len(output_preview) > self.max_preview_length:
            output_preview = output_preview[: self.max_preview_length] + "..."

        self.iterations.append(
            {
                "iteration": iteration,
                "duration": duration,
                "success": success,
                "error": error,
                "timestamp": datetime.now().isoformat(),
                "trigger_reason": trigger_reason,
                "output_preview": output_preview,
                "tokens_used": tokens_used,
                "signal": signal,
                "decision": decision,
            }
        )
        if len(self.iterations) > self.max_iterations_stored:
            self.iterations = self.iterations[-self.max_iterations_stored:]

    def get_success_rate(self) -> float:
        """Success rate as a percentage."""
        attempts = self.successes + self.failures
        if attempts == 0:
            return 0.0
        return self.successes * 100.0 / attempts

    def get_runtime(self) -> str:
        seconds = int((datetime.now() - self.start_time).total_seconds())
        hours, rest = divmod(seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    def get_average_duration(self) -> float:
        if not self.iterations:
            return 0.0
        return sum(entry["duration"] for entry in self.iterations) / len(self.iterations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "current": self.current_iteration,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": self.get_success_rate(),
            "runtime": self.get_runtime(),
            "start_time": self.start_time.isoformat(),
        }
