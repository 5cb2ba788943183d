# ABOUTME: Iteration controller implementing the Ralph sprint loop
# ABOUTME: Idle polling, worker dispatch, stream supervision, reconciliation and context rotation

"""Core orchestration loop for the Ralph sprint workflow."""

import asyncio
import json
import logging
import signal
import time
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from .accounting import ResourceAccountant, ResourceStatus
from .adapters.base import ToolAdapter, ToolResponse
from .adapters.cloud import (
    CloudAgent,
    CloudAgentClient,
    CloudAgentWatcher,
    CloudOutcome,
    get_api_key,
)
from .adapters.cursor import CursorAgentAdapter
from .context import ContextManager
from .detector import FailureDetector, GutterRisk
from .errors import CloudAgentError, PrerequisiteError, StoreFormatError
from .git import GitCheckpointer
from .main import RalphConfig
from .metrics import IterationStats, Metrics, TriggerReason
from .output import RalphConsole
from .policy import Action, Decision, PolicyInput, decide
from .signals import Signal
from .state import StateStore
from .stream import StreamParser
from .tasks import QueueStatus, Task, TaskSelector, TaskStatus
from .verification import CompletionVerifier

logger = logging.getLogger("ralph.orchestrator")


class LoopState(str, Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    AWAITING_WORKER = "awaiting_worker"
    RECONCILING = "reconciling"
    TERMINATED = "terminated"


_TRIGGERS = {
    None: TriggerReason.INITIAL,
    Action.CONTINUE: TriggerReason.CONTINUE,
    Action.TASK_COMPLETE: TriggerReason.NEW_TASK,
    Action.GUTTER_RECOVERY: TriggerReason.RECOVERY,
    Action.IMPLICIT_STALL: TriggerReason.RECOVERY,
    Action.ROTATE: TriggerReason.ROTATION,
    Action.IDLE: TriggerReason.NEW_WORK,
}


class RalphOrchestrator:
    """Drives one worker at a time over the sprint todo list."""

    def __init__(
        self,
        config: RalphConfig,
        adapter: Optional[ToolAdapter] = None,
        git: Optional[GitCheckpointer] = None,
        store: Optional[StateStore] = None,
        console: Optional[RalphConsole] = None,
        cloud_client: Optional[CloudAgentClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            config: Loaded and validated configuration.
            adapter: Worker adapter; defaults to the cursor-agent CLI.
            git: Checkpointer for the workspace repository.
            store: State store rooted at the workspace.
            console: Terminal output.
            cloud_client: Remote agent client; built from the API key when
                cloud respawn is enabled and none is given.
            sleep: Awaitable used for every pause and poll.
        """
        self.config = config
        self.workspace = config.workspace_path
        self.store = store or StateStore(self.workspace)
        self.adapter = adapter or CursorAgentAdapter(
            agent_command=config.agent_command,
            model=config.get_model(),
            workspace=self.workspace,
        )
        self.git = git or GitCheckpointer(self.workspace)
        self.console = console or RalphConsole()
        self.cloud_client = cloud_client
        self.sleep = sleep

        self.selector = TaskSelector(config.get_max_passes())
        self.accountant = ResourceAccountant(
            threshold=config.context_threshold,
            baseline=config.prompt_baseline_bytes,
            store=self.store,
        )
        self.detector = FailureDetector(store=self.store)
        self.context_manager = ContextManager(max_passes=config.get_max_passes())
        self.verifier = (
            CompletionVerifier(config.verify_command, self.workspace)
            if config.verify_command
            else None
        )

        self.metrics = Metrics()
        self.iteration_stats = IterationStats() if config.iteration_telemetry else None

        self.state = LoopState.IDLE
        self.session_id: Optional[str] = None
        self.task_iterations = 0
        self.stop_requested = False
        self.stop_reason = ""
        self.last_decision: Optional[Decision] = None
        self._start_time = time.time()
        self._watcher: Optional[CloudAgentWatcher] = None
        self._signal_loop: Optional[asyncio.AbstractEventLoop] = None

    # Lifecycle

    def run(self) -> int:
        """Run the loop to a graceful stop."""
        return asyncio.run(self.arun())

    async def arun(self) -> int:
        """Run the loop asynchronously.

        Raises:
            PrerequisiteError: Before any iteration when a hard prerequisite
                is missing.
        """
        logger.info("Starting Ralph sprint loop")
        self._setup_async_signal_handlers()
        try:
            try:
                await self.check_prerequisites()
            except PrerequisiteError as e:
                self._transition(LoopState.TERMINATED)
                self._record_abort(e)
                raise
            await self._prepare_repository()
            self._start_time = time.time()
            await self._loop()
        finally:
            self._remove_async_signal_handlers()

        await self._finish()
        return 0

    def _record_abort(self, error: PrerequisiteError) -> None:
        try:
            self.store.append_progress(
                f"**Aborted** at iteration {self.store.read_iteration()} - "
                f"missing prerequisite ({error.prerequisite}): {error}"
            )
        except OSError as write_error:
            logger.warning(f"Could not record abort in progress log: {write_error}")

    def request_stop(self, reason: str) -> None:
        if not self.stop_requested:
            self.stop_reason = reason
            logger.info(f"Stop requested: {reason}")
        self.stop_requested = True

    def _transition(self, state: LoopState) -> None:
        if state != self.state:
            logger.debug(f"Loop state {self.state.value} -> {state.value}")
            self.state = state

    # Signals

    def _setup_async_signal_handlers(self) -> None:
        """Kill the worker and stop after the current step on SIGINT/SIGTERM."""
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))
            self._signal_loop = loop
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows, or not running in the main thread
            self._signal_loop = None

    def _remove_async_signal_handlers(self) -> None:
        if self._signal_loop is None:
            return
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._signal_loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass
        self._signal_loop = None

    def _handle_signal(self, signum: int) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.adapter.kill_subprocess_sync()
        if self._watcher is not None:
            self._watcher.cancel()
        self.request_stop("interrupted by user")

    # Startup

    async def check_prerequisites(self) -> None:
        """Verify worker, repository and state documents before the first iteration."""
        if not self.adapter.available:
            raise PrerequisiteError(
                "worker",
                f"{self.config.agent_command} CLI not found",
                "Install via:\n  curl https://cursor.com/install -fsS | bash",
            )

        if not await self.git.is_repo():
            raise PrerequisiteError(
                "git",
                "Not a git repository",
                "Ralph requires git for state persistence. Run `git init` in the workspace.",
            )

        try:
            self.store.initialize()
        except OSError as e:
            raise PrerequisiteError(
                "state",
                f"Cannot initialize state in {self.store.ralph_dir}: {e}",
                "Check that the workspace is writable.",
            ) from e

        try:
            self.store.validate()
        except StoreFormatError as e:
            raise PrerequisiteError(
                "todo",
                str(e),
                "Each sprint file must be a JSON array of tasks. Check syntax at: https://jsonlint.com/",
            ) from e

        todo = self.store.read_task_queue("todo")
        counts = self.selector.counts(todo)
        done = self.store.read_task_queue("done")
        self.console.print_success("Sprint files ready")
        self.console.print_info(
            f"Todo:     {counts['total']} tasks ({counts['workable']} workable, {counts['stalled']} stalled)"
        )
        self.console.print_info(f"Complete: {len(done)} tasks")
        self.console.print_info(f"Pass threshold: {self.selector.max_passes}")

    async def _prepare_repository(self) -> None:
        if await self.git.has_changes():
            self.console.print_info("📦 Committing uncommitted changes...")
            if await self.git.commit("ralph: initial commit before loop"):
                self.metrics.checkpoints += 1

        if self.config.branch:
            self.console.print_info(f"🌿 Creating branch: {self.config.branch}")
            await self.git.create_branch(self.config.branch)

    # Main loop

    def _check_limits(self) -> Optional[str]:
        if self.config.max_total_iterations and self.metrics.iterations >= self.config.max_total_iterations:
            return f"safety limit: {self.metrics.iterations} iterations"
        if self.config.max_runtime and time.time() - self._start_time >= self.config.max_runtime:
            return f"safety limit: runtime exceeded {self.config.max_runtime}s"
        return None

    async def _loop(self) -> None:
        while not self.stop_requested:
            limit = self._check_limits()
            if limit:
                self.request_stop(limit)
                break

            todo = self.store.read_task_queue("todo")
            queue_status = self.selector.status(todo)

            if not queue_status.is_workable:
                self._transition(LoopState.IDLE)
                if self.config.once:
                    self.request_stop(f"single iteration mode, no workable tasks ({queue_status})")
                    break
                if (
                    self.config.exit_on_complete
                    and queue_status.is_empty
                    and self.metrics.tasks_completed > 0
                ):
                    self.request_stop("all sprint tasks complete")
                    break
                await self._idle(queue_status)
                continue

            self.console.reset_wait()
            await self._run_iteration(queue_status)

            if self.config.once:
                self.request_stop("single iteration finished")
                break
            if not self.stop_requested:
                await self.sleep(self.config.iteration_pause)

    async def _idle(self, queue_status: QueueStatus) -> None:
        """Wait one poll interval without dispatching, with a countdown."""
        if queue_status.is_stalled:
            message = (
                f"⏸️  All {queue_status.count} tasks stalled "
                f"(passes >= {self.selector.max_passes}). Waiting for human review..."
            )
        else:
            message = "📭 No tasks in ralph-todo.json. Waiting for new tasks..."

        if self.console.announce_wait(message, quote_index=self.metrics.iterations):
            self.store.append_progress(
                f"**Idle** at iteration {self.store.read_iteration()} - queue {queue_status}"
            )

        total = self.config.get_poll_interval()
        for remaining in range(total, 0, -1):
            if self.stop_requested:
                return
            self.console.print_countdown(remaining, total)
            await self.sleep(1)

    async def _run_iteration(self, queue_status: QueueStatus) -> Decision:
        self._transition(LoopState.DISPATCHING)
        trigger = _TRIGGERS.get(self.last_decision.action if self.last_decision else None)

        if self.session_id is None:
            self.accountant.reset_for_new_context()
            self.detector.reset_for_new_context()

        iteration = self.store.increment_iteration()
        self.metrics.iterations += 1
        if self.iteration_stats is not None:
            self.iteration_stats.record_start(iteration)
        prompt = self.context_manager.get_prompt(iteration, queue_status)
        model = self.config.get_model()

        self.store.append_progress(f"**Session {iteration} started** (model: {model})")
        self.store.write_context_state("active", f"iteration {iteration} dispatched", session_id=self.session_id)
        self.console.print_iteration_header(iteration, model, str(self.workspace))
        if self.session_id:
            self.console.print_info(f"Resuming session: {self.session_id}")

        parser = StreamParser(self.accountant, self.detector, store=self.store)
        parser.begin()

        self._transition(LoopState.AWAITING_WORKER)
        start = time.time()
        try:
            response = await self.adapter.aexecute(prompt, session_id=self.session_id, on_line=parser.feed)
        except Exception as e:
            logger.warning(f"Error in iteration: {e}")
            self.metrics.errors += 1
            response = ToolResponse(success=False, output="", error=str(e))
        duration = time.time() - start
        parser.finish()

        if parser.session_id:
            self.session_id = parser.session_id
        self.task_iterations += 1

        if response.success:
            self.metrics.successful_iterations += 1
        else:
            self.metrics.failed_iterations += 1
            self.console.print_warning(f"Worker ended without success: {response.error}")

        signal_seen = parser.signal
        self._report_signal(signal_seen)

        self._transition(LoopState.RECONCILING)
        decision = await self._reconcile(iteration, signal_seen)
        if not self.stop_requested:
            self._transition(LoopState.IDLE)

        if self.iteration_stats is not None:
            self.iteration_stats.record_iteration(
                iteration=iteration,
                duration=duration,
                success=response.success,
                error=response.error or "",
                trigger_reason=trigger.value,
                output_preview=parser.last_text,
                tokens_used=parser.accountant.estimate(),
                signal=signal_seen.value,
                decision=decision.action.value,
            )
        return decision

    def _report_signal(self, signal_seen: Signal) -> None:
        if signal_seen == Signal.COMPLETE:
            self.console.print_success("Agent signaled completion!")
        elif signal_seen == Signal.GUTTER:
            self.console.print_error("🚨 Gutter detected - agent may be stuck...")
        elif signal_seen == Signal.STALLED:
            self.console.print_warning("Agent reports all tasks stalled")
        elif signal_seen == Signal.EMPTY:
            self.console.print_info("Agent reports no tasks in todo")

        status = self.accountant.status()
        if status == ResourceStatus.WARNING:
            self.console.print_warning(f"Context at {self.accountant.percent():.0f}% of the limit")
        if self.detector.gutter_risk() == GutterRisk.HIGH:
            self.console.print_warning("Gutter risk: HIGH (repeated thrashing, see .ralph/guardrails.md)")

    # Reconciliation

    async def _reconcile(self, iteration: int, signal_seen: Signal) -> Decision:
        todo = self.store.read_task_queue("todo")
        done = self.store.read_task_queue("done")

        await self._verify_completion(todo)

        sweep = self.selector.sweep_completed(todo, done)
        if sweep.moved:
            # todo first: a reader never sees a task in both partitions
            self.store.write_task_queue("todo", sweep.todo)
            self.store.write_task_queue("done", sweep.done)
            message = f"Moved {len(sweep.moved)} completed task(s) to ralph-complete.json"
            self.store.log_activity(message)
            self.console.print_info(f"📦 {message}")
            self.metrics.tasks_completed += len(sweep.moved)

        queue_status = self.selector.status(sweep.todo)
        decision = decide(
            PolicyInput(
                signal=signal_seen,
                resource_status=self.accountant.status(),
                queue_status=queue_status,
                task_iterations=self.task_iterations,
                max_iterations=self.config.get_max_iterations(),
            )
        )
        logger.info(
            f"Iteration {iteration}: signal={signal_seen.value} "
            f"resource={self.accountant.status().value} queue={queue_status} "
            f"-> {decision.action.value}"
        )

        if decision.bump_passes and self.selector.bump_passes(sweep.todo):
            self.store.write_task_queue("todo", sweep.todo)
        if decision.action == Action.GUTTER_RECOVERY:
            self.metrics.gutters += 1

        await self._checkpoint(iteration, decision, sweep.moved)

        if decision.clear_session:
            self.session_id = None
        if decision.reset_task_iterations:
            self.task_iterations = 0

        self.store.append_progress(f"**Session {iteration} ended** - {decision.reason}")
        self._announce(decision, queue_status)

        if decision.rotates_context:
            await self._rotate_context(iteration)

        self.last_decision = decision
        return decision

    async def _verify_completion(self, todo: List[Task]) -> None:
        """Gate the claim that the remaining work is done.

        Runs only when completed tasks are present and nothing else in todo
        is workable. A failure reopens the completed tasks and feeds the
        command output into the next payload.
        """
        if self.verifier is None:
            return
        completed = [task for task in todo if task.status == TaskStatus.COMPLETED]
        others = [task for task in todo if task.status != TaskStatus.COMPLETED]
        if not completed or self.selector.workable(others):
            return

        result = await self.verifier.run()
        if result.passed:
            self.store.append_progress(f"**Verification passed** - `{result.command}`")
            self.console.print_success(f"Verification passed: {result.command}")
            return

        reopened = self.selector.revert_completed(todo)
        self.store.write_task_queue("todo", todo)
        self.metrics.verification_failures += 1
        self.context_manager.add_error_feedback(
            f"Verification command `{result.command}` failed with exit code {result.returncode}. "
            f"The completed tasks were reopened. Output:\n{result.output}"
        )
        self.store.log_error(f"VERIFY FAIL: {result.command} → exit {result.returncode}")
        self.store.append_progress(
            f"**Verification failed** (exit {result.returncode}) - {len(reopened)} task(s) reopened"
        )
        self.console.print_warning(
            f"Verification failed ({result.summary()}); {len(reopened)} task(s) reopened"
        )

    async def _checkpoint(self, iteration: int, decision: Decision, moved: List[Task]) -> None:
        if decision.checkpoint and decision.rotates_context:
            message = f"ralph: checkpoint at iteration {iteration} (~{self.accountant.estimate()} tokens)"
        elif decision.checkpoint:
            message = "ralph: checkpoint before gutter recovery"
        elif moved:
            message = f"ralph: {moved[-1].description[:60]}"
        else:
            message = f"ralph: iteration {iteration}"

        if await self.git.checkpoint(message):
            self.metrics.checkpoints += 1

    def _announce(self, decision: Decision, queue_status: QueueStatus) -> None:
        if decision.action == Action.TASK_COMPLETE:
            self.console.print_success("Task completed!")
            if queue_status.is_workable:
                self.console.print_info(
                    f"{queue_status.count} more tasks to work on. Starting fresh context for next task..."
                )
            else:
                self.console.print_info("No more workable tasks. Waiting for new work...")
        elif decision.action == Action.GUTTER_RECOVERY:
            self.console.print_error("Gutter detected. Check .ralph/errors.log for details.")
            self.console.print_info("Task passes were incremented. Continuing...")
        elif decision.action == Action.IMPLICIT_STALL:
            self.console.print_warning(
                f"Max iterations ({self.config.get_max_iterations()}) reached for current task. "
                "Task passes were incremented. Moving on..."
            )
        elif decision.action == Action.CONTINUE:
            self.console.print_info(f"📋 Agent finished. {queue_status.count} tasks remaining.")

    # Context rotation

    async def _rotate_context(self, iteration: int) -> None:
        """Discard the worker context; respawn remotely when configured."""
        estimate = self.accountant.estimate()
        next_iteration = iteration + 1
        self.metrics.rotations += 1

        self.store.write_context_state("terminated", f"context_limit_{estimate}")
        self.store.append_progress(f"**Context limit reached (~{estimate} tokens). Initiating handoff...**")

        self.session_id = None
        self.accountant.reset_for_new_context()
        self.accountant.flush()
        self.detector.reset_for_new_context()
        self.store.write_context_state(
            "handoff_pending",
            f"Awaiting fresh context (handoff from iteration {iteration})",
            previous_context=estimate,
            next_iteration=next_iteration,
        )

        if self.config.cloud_enabled:
            try:
                outcome = await self._cloud_handoff(next_iteration)
            except CloudAgentError as e:
                logger.warning(f"Cloud spawn failed, staying in local mode: {e}")
                self.store.log_error(f"CLOUD: {e}")
                self.console.print_warning("Cloud spawn failed, staying in local mode")
            else:
                if outcome == CloudOutcome.FINISHED:
                    self.store.write_context_state("active", "cloud agent chain finished")
                    self.store.append_progress("🌩️ Cloud agent chain finished; resuming local loop")
                    return
                if outcome == CloudOutcome.DEPTH_EXHAUSTED:
                    self.store.append_progress(
                        f"⚠️ Max chain depth ({self.config.max_chain_depth}) reached. Stopping."
                    )
                    self.request_stop(f"max chain depth ({self.config.max_chain_depth}) reached")
                    return
                if outcome == CloudOutcome.CANCELLED:
                    return

        self.console.print_warning(
            f"⚠️ Context limit reached (~{estimate} tokens). Next iteration starts a fresh context."
        )
        self.store.append_progress(
            "Local handoff: the next dispatch starts a fresh context. To continue by hand, "
            f"start a NEW conversation: \"Continue Ralph from iteration {next_iteration}\""
        )

    async def _cloud_handoff(self, next_iteration: int) -> CloudOutcome:
        client = self.cloud_client
        if client is None:
            api_key = get_api_key(self.workspace)
            if not api_key:
                raise CloudAgentError(
                    "No cloud API key configured (CURSOR_API_KEY or .cursor/ralph-config.json)"
                )
            client = CloudAgentClient(api_key, self.config.cloud_api_url)

        repository = await self.git.remote_url()
        if not repository:
            raise CloudAgentError("No git remote 'origin' for the cloud agent to work on")
        ref = await self.git.current_branch()
        if ref:
            await self.git.push(ref)

        todo = self.store.read_task_queue("todo")
        prompt = self.context_manager.get_prompt(next_iteration, self.selector.status(todo))
        self.console.print_info("🌩️ Handing off to a cloud agent...")

        self._watcher = CloudAgentWatcher(
            client,
            prompt,
            repository,
            self._cloud_work_remaining,
            ref=ref,
            poll_interval=self.config.cloud_poll_interval,
            max_chain_depth=self.config.max_chain_depth,
            followup_attempts=self.config.followup_attempts,
            sleep=self.sleep,
        )
        try:
            return await self._watcher.run()
        finally:
            self._watcher = None

    async def _cloud_work_remaining(self, agent: CloudAgent) -> bool:
        if agent.branch:
            await self.git.pull_branch(agent.branch)
        todo = self.store.read_task_queue("todo")
        remaining = self.selector.status(todo)
        logger.info(f"After cloud agent {agent.id}: queue {remaining}")
        return remaining.is_workable

    # Shutdown

    async def _finish(self) -> None:
        self._transition(LoopState.TERMINATED)
        reason = self.stop_reason or "stopped"
        self.store.append_progress(
            f"**Ralph stopped** at iteration {self.store.read_iteration()} - {reason}"
        )
        if self.config.open_pr and self.config.branch:
            await self.git.open_pull_request(self.config.branch)
        self._print_summary()

    def _print_summary(self) -> None:
        self.console.print_header("Ralph Sprint Summary")
        todo = self.store.read_task_queue("todo")
        if todo:
            self.console.print_task_table(todo, self.selector.max_passes)

        counts = self.selector.counts(todo)
        self.console.print_stats(
            "Run statistics",
            [
                f"Stop reason: {self.stop_reason or 'stopped'}",
                f"Iterations: {self.metrics.iterations} "
                f"({self.metrics.successful_iterations} clean exits, {self.metrics.failed_iterations} failed)",
                f"Tasks completed: {self.metrics.tasks_completed}",
                f"Todo: {counts['total']} ({counts['workable']} workable, {counts['stalled']} stalled)",
                f"Checkpoints: {self.metrics.checkpoints}",
                f"Gutters: {self.metrics.gutters}  Rotations: {self.metrics.rotations}",
                f"Model: {self.config.get_model()}",
            ],
        )

        metrics_dir = self.store.ralph_dir / "metrics"
        metrics_dir.mkdir(parents=True, exist_ok=True)
        metrics_file = metrics_dir / f"metrics_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        metrics_data = {
            "summary": self.metrics.to_dict(),
            "stop_reason": self.stop_reason,
            "iterations": self.iteration_stats.iterations if self.iteration_stats else [],
            "analysis": (
                {
                    **self.iteration_stats.to_dict(),
                    "avg_iteration_duration": self.iteration_stats.get_average_duration(),
                }
                if self.iteration_stats is not None
                else {}
            ),
        }
        metrics_file.write_text(json.dumps(metrics_data, indent=2))
        self.console.print_success(f"Metrics saved to {metrics_file}")
