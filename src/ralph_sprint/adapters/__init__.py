# ABOUTME: Worker adapters for the Ralph sprint loop
# ABOUTME: Exports the local cursor-agent adapter and the cloud respawn client

"""Worker adapters."""

from .base import ToolAdapter, ToolResponse
from .cloud import CloudAgent, CloudAgentClient, CloudAgentWatcher, CloudOutcome, get_api_key
from .cursor import CursorAgentAdapter

__all__ = [
    "ToolAdapter",
    "ToolResponse",
    "CursorAgentAdapter",
    "CloudAgent",
    "CloudAgentClient",
    "CloudAgentWatcher",
    "CloudOutcome",
    "get_api_key",
]
