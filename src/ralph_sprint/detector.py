# ABOUTME: Gutter detection from repeated shell failures and file-write thrashing
# ABOUTME: Heuristics only; detections raise hints and guardrails, never abort the loop

"""Failure detection.

Two stuck patterns are recognised:

- the same shell command failing again and again (cumulative count per
  exact command string over one worker session, not a consecutive run); the
  third failure is a GUTTER hint
- the same file written 5 or more times within a trailing 10 minute window,
  recorded as one thrashing incident per window crossing

More than two thrashing incidents raise gutter risk to HIGH and add a
guardrail naming the file. Risk stays HIGH until an explicit clear or a
fresh worker context.
"""

import logging
import time
from collections import defaultdict
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .state import Guardrail

logger = logging.getLogger("ralph.detector")


class GutterRisk(str, Enum):
    LOW = "low"
    HIGH = "high"


class FailureKind(str, Enum):
    SHELL = "shell"
    WRITE = "write"
    THRASHING = "thrashing"


@dataclass
class FailureRecord:
    kind: FailureKind
    command: Optional[str] = None
    exit_code: Optional[int] = None
    count: int = 0
    path: Optional[str] = None
    timestamp: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return {k: v for k, v in data.items() if v is not None}


class FailureDetector:
    """Sole writer of failure records."""

    SHELL_FAILURE_LIMIT = 3
    WRITE_WINDOW_SECONDS = 600
    WRITE_LIMIT = 5
    INCIDENT_LIMIT = 2

    def __init__(self, store=None, clock=time.time):
        self.store = store
        self.clock = clock
        self._shell_failures: Dict[str, int] = defaultdict(int)
        self._writes: List[Tuple[float, str]] = []
        self._tripped: Set[str] = set()
        self._guarded: Set[str] = set()
        self.incidents: List[FailureRecord] = []
        self._risk = GutterRisk.LOW

    def _log_error(self, message: str) -> None:
        logger.warning(message)
        if self.store is not None:
            self.store.log_error(message)

    def shell_failure_count(self, command: str) -> int:
        return self._shell_failures.get(command, 0)

    def observe_shell_result(
        self, command: str, exit_code: int, timestamp: Optional[float] = None
    ) -> bool:
        """Track a finished shell command.

        Returns:
            True once this exact command has failed 3 or more times.
        """
        if exit_code == 0:
            return False

        self._shell_failures[command] += 1
        count = self._shell_failures[command]
        record = FailureRecord(
            kind=FailureKind.SHELL,
            command=command,
            exit_code=exit_code,
            count=count,
            timestamp=timestamp if timestamp is not None else self.clock(),
        )
        if self.store is not None:
            self.store.append_failure(record)
        self._log_error(f"SHELL FAIL: {command} → exit {exit_code} (attempt {count})")

        if count >= self.SHELL_FAILURE_LIMIT:
            self._log_error(f"⚠️ GUTTER: same command failed {count}x")
            return True
        return False

    def observe_file_write(self, path: str, timestamp: Optional[float] = None) -> bool:
        """Track a file write.

        Returns:
            True when this write records a new thrashing incident.
        """
        now = timestamp if timestamp is not None else self.clock()
        cutoff = now - self.WRITE_WINDOW_SECONDS
        self._writes = [(ts, p) for ts, p in self._writes if ts >= cutoff]
        self._writes.append((now, path))

        count = sum(1 for _, p in self._writes if p == path)
        if count < self.WRITE_LIMIT:
            self._tripped.discard(path)
            return False
        if path in self._tripped:
            return False

        self._tripped.add(path)
        record = FailureRecord(kind=FailureKind.THRASHING, path=path, count=count, timestamp=now)
        self.incidents.append(record)
        if self.store is not None:
            self.store.append_failure(record)
        self._log_error(f"⚠️ THRASHING: {path} written {count}x in 10 min")

        if len(self.incidents) > self.INCIDENT_LIMIT:
            self._raise_risk(path)
        return True

    def _raise_risk(self, path: str) -> None:
        if self._risk != GutterRisk.HIGH:
            logger.warning(f"Gutter risk HIGH after {len(self.incidents)} thrashing incidents")
        self._risk = GutterRisk.HIGH
        if path in self._guarded or self.store is None:
            return
        self._guarded.add(path)
        self.store.append_guardrail(
            Guardrail(
                title=f"Stop Thrashing {path}",
                trigger=f"Before editing {path}",
                instruction=(
                    f"{path} has been rewritten repeatedly without progress. "
                    "Re-read it, plan the whole change, then write it once"
                ),
                added_after=f"Thrashing incident #{len(self.incidents)} on {path}",
            )
        )

    def gutter_risk(self) -> GutterRisk:
        return self._risk

    def reset_window(self) -> None:
        """Start a new worker session.

        Shell-failure counts and the write window are cleared. Thrashing
        incidents and gutter risk are kept until a fresh context.
        """
        self._shell_failures.clear()
        self._writes = []
        self._tripped.clear()

    def clear(self) -> None:
        """Drop every record, including the persisted failure log."""
        self.reset_window()
        self.incidents = []
        self._guarded.clear()
        self._risk = GutterRisk.LOW
        if self.store is not None:
            self.store.clear_failures()

    def reset_for_new_context(self) -> None:
        logger.debug("Failure detector reset for new context")
        self.clear()
