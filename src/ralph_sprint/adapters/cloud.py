# ABOUTME: Remote respawn through the Cursor cloud agent HTTP API
# ABOUTME: httpx client plus a watcher that nudges, chains and bounds agent respawns

"""Cloud agent respawn.

When a local context hits its limit the controller can hand the sprint to
a cloud agent working on the same repository. The watcher polls agent
status and reacts:

- RUNNING: keep waiting
- FINISHED: pull the branch; chain a new agent if work remains
- STOPPED: send up to ``followup_attempts`` nudges, then chain
- EXPIRED, ERROR, FAILED: chain a new agent
- CREATING: keep waiting

At most ``max_chain_depth`` agents are chained before giving up.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

import httpx

from ..errors import CloudAgentError
from ..signals import Signal, marker

logger = logging.getLogger("ralph.adapter.cloud")

DEFAULT_API_URL = "https://api.cursor.com/v0"
CONFIG_FILE_NAME = "ralph-config.json"

NUDGE_MESSAGE = (
    "Continue working on the Ralph sprint. Check ralph-todo.json for tasks that are "
    "not completed. Run tests after changes. Output "
    f"{marker(Signal.COMPLETE)} when a task is done."
)


def get_api_key(
    workspace: Union[str, Path] = ".",
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Union[str, Path]] = None,
) -> Optional[str]:
    """Find the API key: CURSOR_API_KEY, then project and global config files."""
    environ = os.environ if environ is None else environ
    if environ.get("CURSOR_API_KEY"):
        return environ["CURSOR_API_KEY"]

    home = Path(home) if home is not None else Path.home()
    for config_path in (
        Path(workspace) / ".cursor" / CONFIG_FILE_NAME,
        home / ".cursor" / CONFIG_FILE_NAME,
    ):
        if not config_path.exists():
            continue
        try:
            key = json.loads(config_path.read_text()).get("cursor_api_key")
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable {config_path}: {e}")
            continue
        if key:
            return key
    return None


class AgentStatus(str, Enum):
    CREATING = "CREATING"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    STOPPED = "STOPPED"
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


@dataclass
class CloudAgent:
    id: str
    status: AgentStatus = AgentStatus.UNKNOWN
    summary: str = ""
    branch: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CloudAgent":
        if not data.get("id"):
            raise CloudAgentError(f"Agent response without id: {data}")
        try:
            status = AgentStatus(data.get("status", "UNKNOWN"))
        except ValueError:
            status = AgentStatus.UNKNOWN
        return cls(
            id=str(data["id"]),
            status=status,
            summary=data.get("summary") or "",
            branch=(data.get("target") or {}).get("branchName") or "",
        )


class CloudAgentClient:
    """Thin synchronous client for the cloud agent API."""

    def __init__(self, api_key: str, base_url: str = DEFAULT_API_URL, timeout: float = 30.0):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=self.timeout, auth=(self.api_key, "")) as client:
                response = client.request(method, f"{self.base_url}{path}", json=payload)
                response.raise_for_status()
                data = response.json() if response.content else {}
        except httpx.TimeoutException:
            raise CloudAgentError(f"Cloud agent request timed out: {method} {path}")
        except httpx.HTTPStatusError as e:
            raise CloudAgentError(f"Cloud agent API error: {e}")
        except httpx.RequestError as e:
            raise CloudAgentError(f"Cloud agent network error: {e}")
        except ValueError as e:
            raise CloudAgentError(f"Cloud agent returned invalid JSON: {e}")
        return data if isinstance(data, dict) else {}

    def launch(self, prompt: str, repository: str, ref: Optional[str] = None) -> CloudAgent:
        source: Dict[str, Any] = {"repository": repository}
        if ref:
            source["ref"] = ref
        data = self._request("POST", "/agents", {"prompt": {"text": prompt}, "source": source})
        agent = CloudAgent.from_dict(data)
        logger.info(f"Cloud agent launched: {agent.id}")
        return agent

    def status(self, agent_id: str) -> CloudAgent:
        return CloudAgent.from_dict(self._request("GET", f"/agents/{agent_id}"))

    def followup(self, agent_id: str, text: str) -> None:
        self._request("POST", f"/agents/{agent_id}/followup", {"prompt": {"text": text}})

    def last_message(self, agent_id: str) -> str:
        data = self._request("GET", f"/agents/{agent_id}/conversation")
        messages = data.get("messages") or []
        return (messages[-1].get("text") or "")[:500] if messages else ""


class CloudOutcome(str, Enum):
    FINISHED = "finished"
    DEPTH_EXHAUSTED = "depth_exhausted"
    CANCELLED = "cancelled"


class CloudAgentWatcher:
    """Launches a cloud agent and follows it until the sprint work is done.

    Args:
        client: API client; its blocking calls run in a worker thread.
        prompt: Instruction payload for every launched agent.
        repository: Repository URL the agent works on.
        work_remaining: Awaited with the finished agent; True chains another.
        ref: Branch or ref to start from.
    """

    def __init__(
        self,
        client: CloudAgentClient,
        prompt: str,
        repository: str,
        work_remaining: Callable[[CloudAgent], Awaitable[bool]],
        ref: Optional[str] = None,
        poll_interval: float = 30,
        max_chain_depth: int = 10,
        followup_attempts: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.prompt = prompt
        self.repository = repository
        self.work_remaining = work_remaining
        self.ref = ref
        self.poll_interval = poll_interval
        self.max_chain_depth = max_chain_depth
        self.followup_attempts = followup_attempts
        self.sleep = sleep
        self.chain_depth = 0
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    async def _launch(self) -> CloudAgent:
        agent = await asyncio.to_thread(self.client.launch, self.prompt, self.repository, self.ref)
        self.chain_depth += 1
        logger.info(f"Chain depth {self.chain_depth}/{self.max_chain_depth}: agent {agent.id}")
        return agent

    async def run(self) -> CloudOutcome:
        """Launch the first agent and watch the chain.

        Raises:
            CloudAgentError: If the API cannot be reached or misbehaves.
        """
        agent = await self._launch()
        return await self.watch(agent.id)

    async def watch(self, agent_id: str) -> CloudOutcome:
        followups = 0
        while not self.cancelled:
            agent = await asyncio.to_thread(self.client.status, agent_id)
            status = agent.status

            if status == AgentStatus.RUNNING:
                followups = 0
            elif status == AgentStatus.FINISHED:
                logger.info(f"Cloud agent {agent_id} finished on branch {agent.branch}: {agent.summary}")
                if not await self.work_remaining(agent):
                    return CloudOutcome.FINISHED
                if self.chain_depth >= self.max_chain_depth:
                    return CloudOutcome.DEPTH_EXHAUSTED
                agent_id = (await self._launch()).id
                followups = 0
                continue
            elif status == AgentStatus.STOPPED and followups < self.followup_attempts:
                followups += 1
                logger.info(f"Agent stopped, sending follow-up nudge ({followups}/{self.followup_attempts})")
                await asyncio.to_thread(self.client.followup, agent_id, NUDGE_MESSAGE)
            elif status in (AgentStatus.STOPPED, AgentStatus.EXPIRED, AgentStatus.ERROR, AgentStatus.FAILED):
                if status in (AgentStatus.ERROR, AgentStatus.FAILED):
                    last = await asyncio.to_thread(self.client.last_message, agent_id)
                    logger.warning(f"Cloud agent {agent_id} {status.value}: {agent.summary} {last}")
                else:
                    logger.info(f"Cloud agent {agent_id} {status.value}, spawning a new one")
                if self.chain_depth >= self.max_chain_depth:
                    return CloudOutcome.DEPTH_EXHAUSTED
                agent_id = (await self._launch()).id
                followups = 0
                continue
            elif status == AgentStatus.CREATING:
                logger.debug(f"Cloud agent {agent_id} creating")
            else:
                logger.warning(f"Unknown cloud agent status for {agent_id}")

            await self.sleep(self.poll_interval)
        return CloudOutcome.CANCELLED
