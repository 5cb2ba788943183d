# ABOUTME: File-resident state for the sprint loop (partitions, iteration, ledger, logs)
# ABOUTME: Whole-document atomic writes; corrupt partitions read as empty and are logged

"""State Store.

Layout, relative to the workspace root::

    ralph-backlog.json      future tasks
    ralph-todo.json         current sprint
    ralph-complete.json     done partition, append-only
    .ralph/.iteration       iteration record
    .ralph/ledger.json      resource ledger of the current context
    .ralph/failures.json    shell failures and thrashing incidents
    .ralph/state.json       context state (active, handoff_pending, ...)
    .ralph/guardrails.md    signs consulted by the worker
    .ralph/progress.md      human-readable session history
    .ralph/activity.log     per-event activity
    .ralph/errors.log       failures and detections

The store holds no policy. Exactly one controller owns a workspace at a time.
"""

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Union

from .accounting import Ledger
from .errors import StoreFormatError
from .tasks import Task

logger = logging.getLogger("ralph.state")

PARTITION_FILES = {
    "backlog": "ralph-backlog.json",
    "todo": "ralph-todo.json",
    "done": "ralph-complete.json",
}

DEFAULT_PROGRESS = """# Progress Log

> Updated by the agent after significant work.

---

## Session History

"""

DEFAULT_GUARDRAILS = """# Ralph Guardrails (Signs)

> Lessons learned from past failures. READ THESE BEFORE ACTING.

## Core Signs

### Sign: Read Before Writing
- **Trigger**: Before modifying any file
- **Instruction**: Always read the existing file first
- **Added after**: Core principle

### Sign: Test After Changes
- **Trigger**: After any code change
- **Instruction**: Run tests to verify nothing broke
- **Added after**: Core principle

### Sign: Commit Checkpoints
- **Trigger**: Before risky changes
- **Instruction**: Commit current working state first
- **Added after**: Core principle

---

## Learned Signs

"""

DEFAULT_ERRORS_LOG = """# Error Log

> Failures detected by the stream parser. Use to update guardrails.

"""

DEFAULT_ACTIVITY_LOG = """# Activity Log

> Real-time tool call logging from the stream parser.

"""

_SIGN_PATTERN = re.compile(r"^### Sign:\s*(?P<title>.+?)\s*$")
_FIELD_PATTERN = re.compile(r"^- \*\*(?P<name>[^*]+)\*\*:\s*(?P<value>.*)$")


@dataclass
class Guardrail:
    """A named sign: when ``trigger`` happens, follow ``instruction``."""

    title: str
    trigger: str
    instruction: str
    added_after: str

    def to_markdown(self) -> str:
        return (
            f"### Sign: {self.title}\n"
            f"- **Trigger**: {self.trigger}\n"
            f"- **Instruction**: {self.instruction}\n"
            f"- **Added after**: {self.added_after}\n"
        )


def parse_guardrails(text: str) -> List[Guardrail]:
    """Extract every ``### Sign:`` block from a guardrails document."""
    signs: List[Guardrail] = []
    current: Dict[str, str] = {}

    def close():
        if current.get("title"):
            signs.append(
                Guardrail(
                    title=current["title"],
                    trigger=current.get("trigger", ""),
                    instruction=current.get("instruction", ""),
                    added_after=current.get("added after", ""),
                )
            )

    for line in text.splitlines():
        sign = _SIGN_PATTERN.match(line)
        if sign:
            close()
            current = {"title": sign.group("title")}
            continue
        if not current:
            continue
        if line.startswith("#"):
            close()
            current = {}
            continue
        entry = _FIELD_PATTERN.match(line.strip())
        if entry:
            current[entry.group("name").strip().lower()] = entry.group("value").strip()
    close()
    return signs


class StateStore:
    """Durable access to the workspace state documents."""

    def __init__(self, workspace: Union[str, Path] = "."):
        self.workspace = Path(workspace)
        self.ralph_dir = self.workspace / ".ralph"
        self.iteration_file = self.ralph_dir / ".iteration"
        self.ledger_file = self.ralph_dir / "ledger.json"
        self.failures_file = self.ralph_dir / "failures.json"
        self.state_file = self.ralph_dir / "state.json"
        self.guardrails_file = self.ralph_dir / "guardrails.md"
        self.progress_file = self.ralph_dir / "progress.md"
        self.activity_log = self.ralph_dir / "activity.log"
        self.errors_log = self.ralph_dir / "errors.log"

    # Low-level I/O

    def partition_path(self, partition: str) -> Path:
        try:
            return self.workspace / PARTITION_FILES[partition]
        except KeyError:
            raise ValueError(f"Unknown partition: {partition}") from None

    def _atomic_write(self, path: Path, content: str) -> None:
        """Replace ``path`` with ``content``; readers see the old or the new text."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def _write_json(self, path: Path, data: Any) -> None:
        self._atomic_write(path, json.dumps(data, indent=2) + "\n")

    def _append(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a") as f:
            f.write(text)

    @staticmethod
    def _is_blank(path: Path) -> bool:
        return not path.exists() or not path.read_text().strip()

    # Initialization

    def initialize(self) -> None:
        """Create missing documents with defaults; never touch non-empty ones."""
        self.ralph_dir.mkdir(parents=True, exist_ok=True)

        for partition in PARTITION_FILES:
            path = self.partition_path(partition)
            if self._is_blank(path):
                self._atomic_write(path, "[]\n")

        defaults = {
            self.iteration_file: "0\n",
            self.progress_file: DEFAULT_PROGRESS,
            self.guardrails_file: DEFAULT_GUARDRAILS,
            self.errors_log: DEFAULT_ERRORS_LOG,
            self.activity_log: DEFAULT_ACTIVITY_LOG,
            self.failures_file: "[]\n",
        }
        for path, content in defaults.items():
            if self._is_blank(path):
                self._atomic_write(path, content)

        logger.debug(f"State store initialized at {self.ralph_dir}")

    def validate(self) -> None:
        """Check every partition document is a JSON array.

        Raises:
            StoreFormatError: On the first document that is not valid JSON
                or whose top level is not an array.
        """
        for partition in PARTITION_FILES:
            path = self.partition_path(partition)
            if not path.exists():
                continue
            try:
                data = json.loads(path.read_text() or "[]")
            except json.JSONDecodeError as e:
                raise StoreFormatError(path, f"is not valid JSON ({e})") from e
            if not isinstance(data, list):
                raise StoreFormatError(path, "must be a JSON array of tasks")

    # Iteration record

    def read_iteration(self) -> int:
        if not self.iteration_file.exists():
            return 0
        raw = self.iteration_file.read_text().strip()
        try:
            return max(int(raw or 0), 0)
        except ValueError:
            logger.warning(f"Unreadable iteration record {raw!r}, treating as 0")
            return 0

    def write_iteration(self, n: int) -> None:
        if n < 0:
            raise ValueError("Iteration record cannot be negative")
        self._atomic_write(self.iteration_file, f"{n}\n")

    def increment_iteration(self) -> int:
        n = self.read_iteration() + 1
        self.write_iteration(n)
        return n

    # Task partitions

    def read_task_queue(self, partition: str) -> List[Task]:
        """Read a partition. A document that fails to parse reads as ``[]``."""
        path = self.partition_path(partition)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text() or "[]")
        except json.JSONDecodeError as e:
            return self._unreadable(StoreFormatError(path, f"is not valid JSON ({e})"))
        if not isinstance(data, list):
            return self._unreadable(StoreFormatError(path, "must be a JSON array of tasks"))

        tasks = []
        for entry in data:
            if not isinstance(entry, dict):
                logger.warning(f"Skipping non-object entry in {path.name}: {entry!r}")
                continue
            try:
                tasks.append(Task.from_dict(entry))
            except (TypeError, ValueError) as e:
                self._unreadable(StoreFormatError(path, f"skipping malformed task ({e})"))
        return tasks

    def _unreadable(self, error: StoreFormatError) -> List[Task]:
        logger.error(str(error))
        self.log_error(f"STORE FORMAT: {error}")
        return []

    def write_task_queue(self, partition: str, tasks: List[Task]) -> None:
        self._write_json(self.partition_path(partition), [task.to_dict() for task in tasks])

    # Failures

    def read_failures(self) -> List[Dict[str, Any]]:
        if not self.failures_file.exists():
            return []
        try:
            data = json.loads(self.failures_file.read_text() or "[]")
        except json.JSONDecodeError as e:
            logger.error(str(StoreFormatError(self.failures_file, f"is not valid JSON ({e})")))
            return []
        if not isinstance(data, list):
            logger.error(str(StoreFormatError(self.failures_file, "must be a JSON array")))
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def append_failure(self, record: Any) -> None:
        entry = record.to_dict() if hasattr(record, "to_dict") else dict(record)
        failures = self.read_failures()
        failures.append(entry)
        self._write_json(self.failures_file, failures)

    def clear_failures(self) -> None:
        self._write_json(self.failures_file, [])

    # Guardrails

    def read_guardrails(self) -> List[Guardrail]:
        if not self.guardrails_file.exists():
            return []
        return parse_guardrails(self.guardrails_file.read_text())

    def append_guardrail(self, rule: Guardrail) -> None:
        current = self.guardrails_file.read_text() if self.guardrails_file.exists() else DEFAULT_GUARDRAILS
        if not current.endswith("\n"):
            current += "\n"
        self._atomic_write(self.guardrails_file, f"{current}\n{rule.to_markdown()}")
        logger.info(f"Guardrail added: {rule.title}")

    # Ledger

    def read_ledger(self) -> Ledger:
        if not self.ledger_file.exists():
            return Ledger()
        try:
            return Ledger.from_dict(json.loads(self.ledger_file.read_text()))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable ledger, starting fresh: {e}")
            return Ledger()

    def write_ledger(self, ledger: Ledger) -> None:
        self._write_json(self.ledger_file, ledger.to_dict())

    # Context state

    def read_context_state(self) -> Dict[str, Any]:
        if not self.state_file.exists():
            return {"status": "active"}
        try:
            data = json.loads(self.state_file.read_text())
        except json.JSONDecodeError as e:
            logger.warning(f"Unreadable context state: {e}")
            return {"status": "active"}
        return data if isinstance(data, dict) else {"status": "active"}

    def write_context_state(self, status: str, reason: str = "", **extra: Any) -> None:
        data = {
            "status": status,
            "reason": reason,
            "iteration": self.read_iteration(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        data.update(extra)
        self._write_json(self.state_file, data)

    # Human-readable logs

    def append_progress(self, message: str) -> None:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self._append(self.progress_file, f"\n### {timestamp}\n{message}\n")

    def log_activity(self, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        self._append(self.activity_log, f"[{timestamp}] {message}\n")

    def log_error(self, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        self._append(self.errors_log, f"[{timestamp}] {message}\n")
