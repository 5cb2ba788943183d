# ABOUTME: Ralph sprint loop package
# ABOUTME: Re-exports the orchestrator, configuration and core sprint types

"""Ralph sprint loop: drive a coding agent over a sprint todo list."""

__version__ = "0.1.0"

from .errors import CloudAgentError, PrerequisiteError, RalphError, StoreFormatError
from .main import ConfigValidator, RalphConfig
from .orchestrator import LoopState, RalphOrchestrator
from .signals import Signal
from .tasks import QueueStatus, Task, TaskSelector, TaskStatus

__all__ = [
    "__version__",
    "RalphOrchestrator",
    "LoopState",
    "RalphConfig",
    "ConfigValidator",
    "Signal",
    "Task",
    "TaskStatus",
    "TaskSelector",
    "QueueStatus",
    "RalphError",
    "PrerequisiteError",
    "StoreFormatError",
    "CloudAgentError",
]
