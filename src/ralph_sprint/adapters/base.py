# ABOUTME: Abstract base class for worker adapters
# ABOUTME: Defines ToolResponse and the availability/execute contract

"""Base adapter interface for worker processes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ToolResponse:
    """Outcome of one worker execution."""

    success: bool
    output: str
    error: Optional[str] = None
    returncode: Optional[int] = None
    tokens_used: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ToolAdapter(ABC):
    """Base class for worker adapters."""

    def __init__(self, name: str, config=None):
        self.name = name
        self.config = config or {}
        self.available = self.check_availability()

    @abstractmethod
    def check_availability(self) -> bool:
        """Check if the worker is installed and usable."""

    @abstractmethod
    async def aexecute(self, prompt: str, **kwargs) -> ToolResponse:
        """Run the worker once with ``prompt``."""

    def kill_subprocess_sync(self) -> None:
        """Terminate a running worker. Safe to call from a signal handler."""

    def __str__(self) -> str:
        return f"{self.name} (available: {self.available})"
