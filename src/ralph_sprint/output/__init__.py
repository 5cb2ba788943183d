# ABOUTME: Output package for Ralph sprint loop terminal display
# ABOUTME: Re-exports RalphConsole

"""Terminal output helpers."""

from .console import RalphConsole

__all__ = ["RalphConsole"]
