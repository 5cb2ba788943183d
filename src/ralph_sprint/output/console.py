# ABOUTME: Rich-based console output for the Ralph sprint loop
# ABOUTME: Headers, status lines, idle countdown, and the sprint task table

"""Console presentation layer built on Rich."""

from typing import Iterable, List, Optional

from rich.console import Console
from rich.control import Control
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table

from ..tasks import Task, TaskStatus


class RalphConsole:
    """Terminal output for the loop. Never used for state, only display."""

    PROGRESS_BAR_WIDTH = 30

    QUOTES = (
        "I'm learnding!",
        "Me fail English? That's unpossible!",
        "I bent my wookiee.",
        "Tastes like burning.",
        "I'm a brick!",
        "My cat's breath smells like cat food.",
    )

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)
        self._last_wait_message: Optional[str] = None

    def print_banner(self) -> None:
        self.console.print(
            Panel.fit(
                "[bold]Ralph Wiggum: Autonomous Development Loop[/bold]\n\n"
                "[dim]\"That's the beauty of Ralph - the technique is deterministically\n"
                " bad in an undeterministic world.\"[/dim]",
                border_style="yellow",
            )
        )

    def print_header(self, text: str) -> None:
        self.console.print(Rule(f"[bold cyan]{text}[/bold cyan]"))

    def print_iteration_header(self, iteration: int, model: str = "", workspace: str = "") -> None:
        self.print_header(f"Ralph Iteration {iteration}")
        if workspace:
            self.console.print(f"  Workspace: {workspace}")
        if model:
            self.console.print(f"  Model:     {model}")
        if workspace:
            self.console.print(f"  Monitor:   tail -f {workspace}/.ralph/activity.log")

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_error(self, message: str, severity: str = "error") -> None:
        style = {"critical": "bold red", "warning": "yellow"}.get(severity, "red")
        self.console.print(f"[{style}]✗ {message}[/{style}]")

    def print_info(self, message: str) -> None:
        self.console.print(f"[dim]›[/dim] {message}")

    def print_countdown(self, remaining: int, total: int, message: str = "") -> None:
        """Render one frame of the idle-wait countdown bar."""
        if total <= 0:
            progress = 1.0
        else:
            progress = max(0.0, min(1.0, (total - remaining) / total))
        filled = int(self.PROGRESS_BAR_WIDTH * progress)
        bar = "█" * filled + "░" * (self.PROGRESS_BAR_WIDTH - filled)
        suffix = f" {message}" if message else ""
        # redraw in place; Rich strips a literal carriage return
        self.console.control(Control.move_to_column(0))
        self.console.print(
            f"   [{bar}] next check in {max(remaining, 0):2d}s{suffix}",
            end="",
            markup=False,
            highlight=False,
        )

    def announce_wait(self, message: str, quote_index: int = 0) -> bool:
        """Print a waiting message once per distinct message.

        Returns:
            True when the message was printed.
        """
        if message == self._last_wait_message:
            return False
        quote = self.QUOTES[quote_index % len(self.QUOTES)]
        self.console.print()
        self.console.print(f"[bold]{message}[/bold]")
        self.console.print(f"   [dim]\"{quote}\" - Ralph[/dim]")
        self._last_wait_message = message
        return True

    def reset_wait(self) -> None:
        self._last_wait_message = None

    def print_task_table(self, tasks: Iterable[Task], max_passes: int) -> None:
        table = Table(title="Sprint Todo List", show_lines=False)
        table.add_column("#", justify="right")
        table.add_column("", width=2)
        table.add_column("Description")
        table.add_column("Priority")
        table.add_column("Passes", justify="right")

        for index, task in enumerate(tasks, start=1):
            if task.status == TaskStatus.COMPLETED:
                mark = "✓"
            elif task.passes >= max_passes:
                mark = "⏸"
            elif task.status == TaskStatus.IN_PROGRESS:
                mark = "→"
            else:
                mark = ""
            passes = str(task.passes)
            if task.passes >= max_passes:
                passes += " STALLED"
            priority = getattr(task.priority, "value", task.priority) or "medium"
            table.add_row(str(index), mark, escape(task.description), escape(str(priority)), passes)

        self.console.print(table)

    def print_stats(self, title: str, lines: List[str]) -> None:
        self.console.print(Panel("\n".join(escape(line) for line in lines), title=title, border_style="cyan"))
