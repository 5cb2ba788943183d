# ABOUTME: Tests for the output module
# ABOUTME: Tests RalphConsole status lines, countdown, wait announcements and task table

"""Tests for the output module."""

import io

import pytest
from rich.console import Console

from ralph_sprint.output import RalphConsole
from ralph_sprint.tasks import Task, TaskStatus


@pytest.fixture
def console():
    buffer = io.StringIO()
    ralph_console = RalphConsole(Console(file=buffer, force_terminal=False, width=120))
    return ralph_console, buffer


class TestRalphConsole:
    """Tests for RalphConsole class."""

    def test_default_console_writes_to_stderr(self):
        assert RalphConsole().console.stderr is True

    def test_status_lines(self, console):
        ralph_console, buffer = console
        ralph_console.print_success("saved")
        ralph_console.print_warning("careful")
        ralph_console.print_error("broken", severity="critical")
        ralph_console.print_info("note")
        output = buffer.getvalue()
        assert "✓ saved" in output
        assert "⚠ careful" in output
        assert "✗ broken" in output
        assert "note" in output

    def test_iteration_header(self, console):
        ralph_console, buffer = console
        ralph_console.print_iteration_header(3, "opus-4.5-thinking", "/work")
        output = buffer.getvalue()
        assert "Ralph Iteration 3" in output
        assert "tail -f /work/.ralph/activity.log" in output

    def test_countdown_bar(self, console):
        ralph_console, buffer = console
        ralph_console.print_countdown(15, 30)
        output = buffer.getvalue()
        assert "█" * 15 + "░" * 15 in output
        assert "next check in 15s" in output

    def test_countdown_zero_total(self, console):
        ralph_console, buffer = console
        ralph_console.print_countdown(0, 0)
        assert "█" * 30 in buffer.getvalue()

    def test_announce_wait_once_per_message(self, console):
        ralph_console, buffer = console
        assert ralph_console.announce_wait("Waiting...") is True
        assert ralph_console.announce_wait("Waiting...") is False
        assert ralph_console.announce_wait("Stalled...") is True
        ralph_console.reset_wait()
        assert ralph_console.announce_wait("Stalled...") is True
        assert "Ralph" in buffer.getvalue()

    def test_task_table(self, console):
        ralph_console, buffer = console
        tasks = [
            Task("Build API", status=TaskStatus.IN_PROGRESS, priority="high", passes=1),
            Task("Flaky test", passes=3),
            Task("Shipped", status=TaskStatus.COMPLETED),
        ]
        ralph_console.print_task_table(tasks, max_passes=3)
        output = buffer.getvalue()
        assert "Build API" in output
        assert "high" in output
        assert "3 STALLED" in output
        assert "medium" in output

    def test_stats_panel(self, console):
        ralph_console, buffer = console
        ralph_console.print_stats("Run statistics", ["Iterations: 4", "Gutters: 1"])
        output = buffer.getvalue()
        assert "Run statistics" in output
        assert "Iterations: 4" in output
