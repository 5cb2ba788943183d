# ABOUTME: External verification command that gates a completion claim
# ABOUTME: Runs the configured shell command in the workspace and captures its output

"""Completion verification.

When the worker claims the last todo task is done, the configured command
(for example ``pytest -q``) decides. A non-zero exit rejects the claim.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("ralph.verify")


@dataclass
class VerificationResult:
    command: str
    returncode: int
    output: str
    duration: float = 0.0

    @property
    def passed(self) -> bool:
        return self.returncode == 0

    def summary(self) -> str:
        return "PASS" if self.passed else f"FAIL:{self.returncode}"


class CompletionVerifier:
    def __init__(self, command: str, workspace: Union[str, Path] = ".", timeout: Optional[float] = 1800):
        self.command = command
        self.workspace = Path(workspace)
        self.timeout = timeout

    async def run(self) -> VerificationResult:
        logger.info(f"Verifying completion: {self.command}")
        start = time.time()
        proc = await asyncio.create_subprocess_shell(
            self.command,
            cwd=str(self.workspace),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return VerificationResult(
                self.command, 124, f"Verification timed out after {self.timeout}s", time.time() - start
            )

        result = VerificationResult(
            self.command, proc.returncode, stdout.decode(errors="replace"), time.time() - start
        )
        logger.info(f"Verification {result.summary()} in {result.duration:.1f}s")
        return result
