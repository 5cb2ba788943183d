# ABOUTME: Exception hierarchy for the Ralph sprint loop
# ABOUTME: Separates fatal prerequisite failures from recoverable store and remote errors

"""Exceptions raised by Ralph sprint components."""

from typing import Optional


class RalphError(Exception):
    """Base class for all Ralph errors."""


class PrerequisiteError(RalphError):
    """A hard prerequisite is missing; the loop must not start.

    Attributes:
        prerequisite: Short name of the missing prerequisite.
        hint: Remediation text shown to the user.
    """

    def __init__(self, prerequisite: str, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.prerequisite = prerequisite
        self.hint = hint


class StoreFormatError(RalphError):
    """A state document could not be parsed or has the wrong shape."""

    def __init__(self, path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class CloudAgentError(RalphError):
    """The remote agent service failed or returned an unusable response."""
