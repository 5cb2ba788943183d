# ABOUTME: Parser for the worker's NDJSON event stream
# ABOUTME: Feeds the accountant and detector in real time and latches sentinel signals

"""Worker event stream parsing.

Only the fields needed for accounting are read::

    {"type": "system", "subtype": "init", "model": ...}
    {"type": "assistant", "message": {"content": [{"text": ...}]}}
    {"type": "tool_call", "subtype": "completed", "tool_call": {"readToolCall": ...}}
    {"type": "result", "duration_ms": ...}

Unknown event kinds and lines that are not JSON objects are ignored.
"""

import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from .accounting import ResourceAccountant
from .detector import FailureDetector
from .signals import Signal, parse_signal

logger = logging.getLogger("ralph.stream")

SESSION_RULE = "═" * 67


def parse_event(line: str) -> Optional[Dict[str, Any]]:
    """Decode one stream line; None for blanks, garbage and non-objects."""
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        logger.debug(f"Ignoring non-JSON stream line: {line[:120]}")
        return None
    return event if isinstance(event, dict) else None


def _dig(data: Any, *keys: Any) -> Any:
    for key in keys:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[key] if isinstance(key, int) else data.get(key)
        if data is None:
            return None
    return data


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _kb(size: int) -> str:
    return f"{size / 1024:.1f}"


class StreamParser:
    """Consumes the events of one worker execution, in emission order.

    Attributes:
        signals: Every sentinel and detector hint seen, in order.
        session_id: First continuity token seen on any event.
        model: Worker identity label from the session-start event.
    """

    TOKEN_LOG_INTERVAL = 30

    def __init__(
        self,
        accountant: ResourceAccountant,
        detector: FailureDetector,
        store=None,
        clock=time.time,
    ):
        self.accountant = accountant
        self.detector = detector
        self.store = store
        self.clock = clock

        self.signals: List[Signal] = []
        self.session_id: Optional[str] = None
        self.model: Optional[str] = None
        self.tool_calls = 0
        self.events = 0
        self.duration_ms: Optional[int] = None
        self.last_text = ""
        self._last_token_log = clock()

    @property
    def signal(self) -> Signal:
        """The latched signal: the most recent one, or NONE."""
        return self.signals[-1] if self.signals else Signal.NONE

    def _activity(self, message: str) -> None:
        logger.debug(message)
        if self.store is not None:
            self.store.log_activity(message)

    def _latch(self, signal: Signal) -> None:
        self.signals.append(signal)
        logger.info(f"Signal latched: {signal.value}")

    def begin(self) -> None:
        """Write the session banner to the activity log."""
        if self.store is not None:
            self.store.activity_log.parent.mkdir(parents=True, exist_ok=True)
            with open(self.store.activity_log, "a") as f:
                f.write(f"\n{SESSION_RULE}\nRalph Session Started: {datetime.now().ctime()}\n{SESSION_RULE}\n")

    def feed(self, line: str) -> Optional[Signal]:
        """Process one raw line.

        Returns:
            The signal latched by this line, if any.
        """
        event = parse_event(line)
        if event is None:
            return None

        self.events += 1
        before = len(self.signals)

        if self.session_id is None and event.get("session_id"):
            self.session_id = str(event["session_id"])

        kind = event.get("type")
        subtype = event.get("subtype")
        if kind == "system" and subtype == "init":
            self._on_init(event)
        elif kind == "assistant":
            self._on_assistant(event)
        elif kind == "tool_call":
            if subtype == "started":
                self.tool_calls += 1
            elif subtype == "completed":
                self._on_tool_completed(event.get("tool_call") or {})
        elif kind == "result":
            self._on_result(event)

        now = self.clock()
        if now - self._last_token_log >= self.TOKEN_LOG_INTERVAL:
            self.log_token_status()
            self._last_token_log = now

        return self.signals[-1] if len(self.signals) > before else None

    def _on_init(self, event: Dict[str, Any]) -> None:
        self.model = event.get("model") or "unknown"
        self.accountant.reset_for_new_context()
        self.detector.reset_window()
        self.tool_calls = 0
        self._activity(f"SESSION START: model={self.model}")

    def _on_assistant(self, event: Dict[str, Any]) -> None:
        text = _dig(event, "message", "content", 0, "text")
        if not text or not isinstance(text, str):
            return
        self.last_text = text
        self.accountant.record_worker_text(len(text))

        signal = parse_signal(text)
        if signal:
            self._activity(f"Agent signaled {signal.value}")
            self._latch(signal)

    def _on_tool_completed(self, tool_call: Dict[str, Any]) -> None:
        read = tool_call.get("readToolCall")
        write = tool_call.get("writeToolCall")
        shell = tool_call.get("shellToolCall")

        if _dig(read, "result", "success") is not None:
            success = read["result"]["success"]
            path = _dig(read, "args", "path") or "unknown"
            lines = _int(success.get("totalLines"))
            size = _int(success.get("contentSize"))
            if size == 0 and success.get("content"):
                size = len(success["content"])
            size = self.accountant.record_read(size, lines)
            self._activity(f"READ {path} ({lines} lines, ~{_kb(size)}KB)")

        elif _dig(write, "result", "success") is not None:
            success = write["result"]["success"]
            path = _dig(write, "args", "path") or "unknown"
            lines = _int(success.get("linesCreated"))
            size = self.accountant.record_write(_int(success.get("fileSize")), lines)
            self._activity(f"WRITE {path} ({lines} lines, {_kb(size)}KB)")
            if self.detector.observe_file_write(path, self.clock()):
                self._latch(Signal.GUTTER)

        elif _dig(shell, "result") is not None:
            result = shell["result"]
            command = _dig(shell, "args", "command") or "unknown"
            exit_code = _int(result.get("exitCode"))
            output_chars = len(result.get("stdout") or "") + len(result.get("stderr") or "")
            self.accountant.record_shell_output(output_chars)

            if exit_code == 0:
                if output_chars > 1024:
                    self._activity(f"SHELL {command} → exit 0 ({output_chars} chars output)")
                else:
                    self._activity(f"SHELL {command} → exit 0")
            else:
                self._activity(f"SHELL {command} → exit {exit_code}")
                if self.detector.observe_shell_result(command, exit_code, self.clock()):
                    self._latch(Signal.GUTTER)

    def _on_result(self, event: Dict[str, Any]) -> None:
        self.duration_ms = _int(event.get("duration_ms"))
        self._activity(f"SESSION END: {self.duration_ms}ms, ~{self.accountant.estimate()} tokens used")
        self.accountant.flush()

    def log_token_status(self) -> None:
        self._activity(f"TOKENS: ~{self.accountant.estimate()} {self.accountant.breakdown()}")

    def finish(self) -> None:
        """Final token status and ledger flush once the worker has exited."""
        self.log_token_status()
        self.accountant.flush()
