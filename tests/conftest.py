# ABOUTME: Shared fixtures for the Ralph sprint test suite
# ABOUTME: Workspace store, quiet console, and builders for worker stream events

"""Shared pytest fixtures."""

import io
import json
from types import SimpleNamespace

import pytest
from rich.console import Console

from ralph_sprint.output import RalphConsole
from ralph_sprint.state import StateStore


def _line(event):
    return json.dumps(event) + "\n"


def init_event(session_id="sess-1", model="opus-4.5-thinking"):
    return _line({"type": "system", "subtype": "init", "model": model, "session_id": session_id})


def assistant_event(text):
    return _line({"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}})


def read_event(path, size, lines=0):
    return _line(
        {
            "type": "tool_call",
            "subtype": "completed",
            "tool_call": {
                "readToolCall": {
                    "args": {"path": path},
                    "result": {"success": {"contentSize": size, "totalLines": lines}},
                }
            },
        }
    )


def write_event(path, size=0, lines=0):
    return _line(
        {
            "type": "tool_call",
            "subtype": "completed",
            "tool_call": {
                "writeToolCall": {
                    "args": {"path": path},
                    "result": {"success": {"fileSize": size, "linesCreated": lines}},
                }
            },
        }
    )


def shell_event(command, exit_code=0, stdout="", stderr=""):
    return _line(
        {
            "type": "tool_call",
            "subtype": "completed",
            "tool_call": {
                "shellToolCall": {
                    "args": {"command": command},
                    "result": {"exitCode": exit_code, "stdout": stdout, "stderr": stderr},
                }
            },
        }
    )


def result_event(duration_ms=1200):
    return _line({"type": "result", "subtype": "success", "duration_ms": duration_ms})


@pytest.fixture
def events():
    """Builders for NDJSON lines in the worker stream format."""
    return SimpleNamespace(
        init=init_event,
        assistant=assistant_event,
        read=read_event,
        write=write_event,
        shell=shell_event,
        result=result_event,
    )


@pytest.fixture
def store(tmp_path):
    store = StateStore(tmp_path)
    store.initialize()
    return store


@pytest.fixture
def quiet_console():
    buffer = io.StringIO()
    console = RalphConsole(Console(file=buffer, force_terminal=False, width=120))
    console.buffer = buffer
    return console
