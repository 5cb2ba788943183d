# ABOUTME: Sentinel signal parsing for worker output text
# ABOUTME: Maps <ralph>COMPLETE|GUTTER|STALLED|EMPTY</ralph> markers to the Signal enum

"""Sentinel signals.

The worker communicates status by embedding ``<ralph>NAME</ralph>`` in its
prose. This module is the only place that knows the textual form.
"""

import re
from enum import Enum


class Signal(str, Enum):
    NONE = "none"
    COMPLETE = "COMPLETE"
    GUTTER = "GUTTER"
    STALLED = "STALLED"
    EMPTY = "EMPTY"

    def __bool__(self) -> bool:
        return self is not Signal.NONE


_MARKER = re.compile(r"<ralph>(COMPLETE|GUTTER|STALLED|EMPTY)</ralph>")


def marker(signal: Signal) -> str:
    return f"<ralph>{signal.value}</ralph>"


def parse_signal(text: str) -> Signal:
    """The first sentinel in ``text``, or ``Signal.NONE``."""
    if not text:
        return Signal.NONE
    match = _MARKER.search(text)
    return Signal(match.group(1)) if match else Signal.NONE
