# ABOUTME: Worker adapter for the cursor-agent CLI in stream-json mode
# ABOUTME: Spawns one worker, streams its stdout through a bounded queue to a line callback

"""cursor-agent adapter.

One call to :meth:`CursorAgentAdapter.aexecute` is one worker execution::

    cursor-agent -p --force --output-format stream-json --model MODEL \
        [--resume SESSION] PROMPT

A producer task reads stdout (stderr merged in) into a bounded
``asyncio.Queue``; the caller's ``on_line`` callback consumes it in order
while the worker is still running.
"""

import asyncio
import logging
import shutil
from collections import deque
from pathlib import Path
from typing import Callable, List, Optional, Union

from .base import ToolAdapter, ToolResponse

logger = logging.getLogger("ralph.adapter.cursor")

STREAM_LIMIT = 16 * 1024 * 1024


class CursorAgentAdapter(ToolAdapter):
    """Adapter for the ``cursor-agent`` command line worker.

    Attributes:
        agent_command: Executable to run (default: cursor-agent).
        model: Model identifier passed through opaquely.
        workspace: Directory the worker runs in.
        queue_size: Bound of the stdout line queue.
    """

    KILL_GRACE_SECONDS = 2.0
    OUTPUT_TAIL_LINES = 50

    def __init__(
        self,
        agent_command: str = "cursor-agent",
        model: str = "opus-4.5-thinking",
        workspace: Union[str, Path] = ".",
        queue_size: int = 1000,
        extra_args: Optional[List[str]] = None,
    ) -> None:
        self.agent_command = agent_command
        self.model = model
        self.workspace = Path(workspace)
        self.queue_size = queue_size
        self.extra_args = extra_args or []
        self._process: Optional[asyncio.subprocess.Process] = None
        super().__init__("cursor-agent")

    def check_availability(self) -> bool:
        """Check if the agent command exists in PATH."""
        return shutil.which(self.agent_command) is not None

    def build_command(self, prompt: str, session_id: Optional[str] = None) -> List[str]:
        args = [
            self.agent_command,
            "-p",
            "--force",
            "--output-format",
            "stream-json",
            "--model",
            self.model,
        ]
        if session_id:
            args += ["--resume", session_id]
        args += self.extra_args
        args.append(prompt)
        return args

    async def aexecute(
        self,
        prompt: str,
        session_id: Optional[str] = None,
        on_line: Optional[Callable[[str], object]] = None,
        **kwargs,
    ) -> ToolResponse:
        """Run the worker to completion, handing each output line to ``on_line``.

        A non-zero exit or a failure to start is reported in the response,
        never raised.
        """
        args = self.build_command(prompt, session_id)
        if session_id:
            logger.info(f"Resuming session: {session_id}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(self.workspace),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            logger.warning(f"Failed to start {self.agent_command}: {e}")
            return ToolResponse(success=False, output="", error=f"Failed to start {self.agent_command}: {e}")

        self._process = process
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        tail: deque = deque(maxlen=self.OUTPUT_TAIL_LINES)
        line_count = 0

        async def produce() -> None:
            try:
                while True:
                    try:
                        raw = await process.stdout.readline()
                    except ValueError as e:
                        logger.warning(f"Dropped oversized stream line: {e}")
                        continue
                    if not raw:
                        break
                    await queue.put(raw.decode(errors="replace"))
            finally:
                await queue.put(None)

        producer = asyncio.create_task(produce())
        try:
            while True:
                line = await queue.get()
                if line is None:
                    break
                line_count += 1
                tail.append(line.rstrip("\n"))
                if on_line is not None:
                    try:
                        on_line(line)
                    except Exception as e:
                        logger.warning(f"Stream consumer error (line ignored): {e}")
            await producer
            returncode = await process.wait()
        finally:
            if not producer.done():
                producer.cancel()
            if process.returncode is None:
                self.kill_subprocess_sync()
            self._process = None

        output = "\n".join(tail)
        if returncode != 0:
            logger.info(f"{self.agent_command} exited with code {returncode}")
        return ToolResponse(
            success=returncode == 0,
            output=output,
            error=None if returncode == 0 else f"{self.agent_command} exited with code {returncode}",
            returncode=returncode,
            metadata={"lines": line_count, "session_id": session_id},
        )

    def kill_subprocess_sync(self) -> None:
        """Terminate the worker; escalate to SIGKILL after a grace period.

        Safe to call from a signal handler running on the event loop.
        """
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(self.KILL_GRACE_SECONDS, self._force_kill, process)

    @staticmethod
    def _force_kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
