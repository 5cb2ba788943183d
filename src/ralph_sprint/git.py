# ABOUTME: Async git operations used for checkpointing the workspace
# ABOUTME: Repository checks, commits, branches, and the optional pull request

"""Git checkpointing.

The controller is the only committer; checkpoints happen after the worker
has exited. Failures are logged and reported as ``False``, never raised.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Tuple, Union

logger = logging.getLogger("ralph.git")


class GitCheckpointer:
    """Runs git in the workspace through ``asyncio.create_subprocess_exec``."""

    def __init__(self, workspace: Union[str, Path] = "."):
        self.workspace = Path(workspace)
        self.commits = 0

    async def _run(self, *args: str, program: str = "git") -> Tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                program,
                *args,
                cwd=str(self.workspace),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return 127, "", f"{program}: command not found"
        stdout, stderr = await proc.communicate()
        return proc.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

    async def is_repo(self) -> bool:
        code, _, _ = await self._run("rev-parse", "--git-dir")
        return code == 0

    async def has_changes(self) -> bool:
        code, stdout, _ = await self._run("status", "--porcelain")
        return code == 0 and bool(stdout.strip())

    async def commit(self, message: str) -> bool:
        """Stage everything and commit."""
        code, _, stderr = await self._run("add", "-A")
        if code != 0:
            logger.warning(f"Failed to stage changes: {stderr.strip()}")
            return False

        code, _, stderr = await self._run("commit", "-m", message)
        if code != 0:
            logger.warning(f"Failed to commit: {stderr.strip()}")
            return False

        self.commits += 1
        logger.info(f"Committed: {message}")
        return True

    async def checkpoint(self, message: str) -> bool:
        """Commit only when the working tree is dirty."""
        if not await self.has_changes():
            return False
        return await self.commit(message)

    async def create_branch(self, name: str) -> bool:
        code, _, _ = await self._run("checkout", "-b", name)
        if code == 0:
            return True
        code, _, stderr = await self._run("checkout", name)
        if code != 0:
            logger.warning(f"Failed to switch to branch {name}: {stderr.strip()}")
        return code == 0

    async def current_branch(self) -> Optional[str]:
        code, stdout, _ = await self._run("rev-parse", "--abbrev-ref", "HEAD")
        return stdout.strip() if code == 0 and stdout.strip() else None

    async def remote_url(self, remote: str = "origin") -> Optional[str]:
        code, stdout, _ = await self._run("remote", "get-url", remote)
        return stdout.strip() if code == 0 and stdout.strip() else None

    async def pull_branch(self, branch: str) -> bool:
        """Fetch ``branch`` from origin, switch to it and fast-forward."""
        await self._run("fetch", "origin", branch)
        code, _, _ = await self._run("checkout", branch)
        if code != 0:
            code, _, stderr = await self._run("checkout", "-b", branch, f"origin/{branch}")
            if code != 0:
                logger.warning(f"Failed to check out {branch}: {stderr.strip()}")
                return False
        code, _, stderr = await self._run("pull", "origin", branch)
        if code != 0:
            logger.warning(f"Failed to pull {branch}: {stderr.strip()}")
        return code == 0

    async def push(self, branch: str) -> bool:
        code, _, stderr = await self._run("push", "-u", "origin", branch)
        if code != 0:
            logger.warning(f"Failed to push {branch}: {stderr.strip()}")
        return code == 0

    async def open_pull_request(self, branch: str) -> bool:
        """Push ``branch`` and open a pull request with the GitHub CLI."""
        if not await self.push(branch):
            return False
        if shutil.which("gh") is None:
            logger.warning("gh CLI not found; open the pull request manually")
            return False
        code, stdout, stderr = await self._run("pr", "create", "--fill", "--head", branch, program="gh")
        if code != 0:
            logger.warning(f"Failed to open pull request: {stderr.strip()}")
            return False
        logger.info(f"Pull request opened: {stdout.strip()}")
        return True
