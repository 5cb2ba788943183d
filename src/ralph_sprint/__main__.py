# ABOUTME: Command-line entry point for the Ralph sprint loop
# ABOUTME: Parses arguments, layers YAML/env/flag configuration, and runs the orchestrator

"""Run the Ralph sprint loop from the command line.

Configuration precedence, lowest to highest: built-in defaults, the YAML
file given with ``--config``, environment variables (``RALPH_MODEL``,
``MAX_PASSES``, ``POLL_INTERVAL``), then command-line flags.
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .errors import PrerequisiteError
from .logging_config import RalphLogger
from .main import RalphConfig, ConfigValidator
from .orchestrator import RalphOrchestrator
from .output import RalphConsole
from .state import StateStore
from .tasks import TaskSelector

logger = logging.getLogger("ralph.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph-sprint",
        description="Drive a coding agent over a sprint todo list until the work is done.",
    )
    parser.add_argument("workspace", nargs="?", default=None, help="Project directory (default: current)")
    parser.add_argument("-n", "--iterations", type=int, dest="max_iterations",
                        help="Max iterations per task before it counts as stalled (default: 20)")
    parser.add_argument("-p", "--passes", type=int, dest="max_passes",
                        help="Passes after which a task is stalled (default: 3)")
    parser.add_argument("-m", "--model", help="Worker model")
    parser.add_argument("--branch", help="Work on this branch")
    parser.add_argument("--pr", action="store_true", dest="open_pr",
                        help="Open a pull request on graceful stop (requires --branch)")
    parser.add_argument("-y", "--yes", action="store_true", dest="skip_confirm",
                        help="Skip the confirmation prompt")
    parser.add_argument("-c", "--config", help="YAML configuration file")
    parser.add_argument("--poll-interval", type=int, dest="poll_interval",
                        help="Seconds between idle queue checks (default: 30)")
    parser.add_argument("--verify-command", dest="verify_command",
                        help="Shell command that must pass before completed tasks are accepted")
    parser.add_argument("--once", action="store_true", help="Run a single iteration and stop")
    parser.add_argument("--exit-on-complete", action="store_true", dest="exit_on_complete",
                        help="Stop once every task has been completed instead of idling")
    parser.add_argument("--cloud", action="store_true", dest="cloud_enabled",
                        help="Hand off to a cloud agent when the context limit is reached")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(args: argparse.Namespace) -> RalphConfig:
    """Build a RalphConfig from the parsed arguments.

    Raises:
        FileNotFoundError: If ``--config`` names a missing file.
        ValueError: If the YAML document or an environment value is invalid.
    """
    config = RalphConfig.from_yaml(args.config) if args.config else RalphConfig()
    config.apply_env()

    # store_true flags only override when given
    config.update(
        workspace=args.workspace,
        max_iterations=args.max_iterations,
        max_passes=args.max_passes,
        model=args.model,
        branch=args.branch,
        poll_interval=args.poll_interval,
        verify_command=args.verify_command,
        open_pr=args.open_pr or None,
        skip_confirm=args.skip_confirm or None,
        once=args.once or None,
        exit_on_complete=args.exit_on_complete or None,
        cloud_enabled=args.cloud_enabled or None,
        verbose=args.verbose or None,
    )
    return config


def _confirm(console: RalphConsole, config: RalphConfig) -> bool:
    store = StateStore(config.workspace_path)
    todo = store.read_task_queue("todo") if store.partition_path("todo").exists() else []
    selector = TaskSelector(config.get_max_passes())
    if todo:
        console.print_task_table(todo, selector.max_passes)

    counts = selector.counts(todo)
    console.print_stats(
        "Ralph will",
        [
            f"Workspace: {config.workspace_path}",
            f"Model: {config.get_model()}",
            f"Todo: {counts['total']} tasks ({counts['workable']} workable, {counts['stalled']} stalled)",
            f"Per-task iteration limit: {config.get_max_iterations()}",
            f"Branch: {config.branch or '(current)'}" + (" → pull request" if config.open_pr else ""),
            f"Context rotation at ~{config.context_threshold} tokens",
        ],
    )
    try:
        answer = input("Start Ralph loop? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = RalphConsole()

    try:
        config = load_config(args)
    except (FileNotFoundError, ValueError, AttributeError) as e:
        console.print_error(f"Invalid configuration: {e}")
        return 1

    errors = ConfigValidator.validate(config)
    if errors:
        for error in errors:
            console.print_error(error)
        return 1

    RalphLogger.initialize(
        log_level="DEBUG" if config.verbose else None,
        log_dir=str(config.workspace_path / ".ralph" / "logs"),
    )
    logger.debug(f"Logging configured: {RalphLogger.log_config()}")

    console.print_banner()
    if not config.skip_confirm and not _confirm(console, config):
        console.print_info("Aborted.")
        return 0

    orchestrator = RalphOrchestrator(config, console=console)
    try:
        return orchestrator.run()
    except PrerequisiteError as e:
        console.print_error(str(e))
        if e.hint:
            console.print_info(e.hint)
        return 1


if __name__ == "__main__":
    sys.exit(main())
