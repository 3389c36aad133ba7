"""
Agent Dispatch Pipeline.

Launches an external coding agent for one task: marks the task running,
picks a fresh work branch, hands the agent a callback URL and records the
agent id it gets back. Any launch failure fails the task and re-raises so
the queue can retry; every retry gets a new branch.
"""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from orchestra.core.config import Settings, settings as default_settings
from orchestra.core.integrations.cursor_agent import CursorAgentClient
from orchestra.core.models import Credential, Task, TaskStatus
from orchestra.core.orchestration.errors import AgentLaunchError, PreconditionError
from orchestra.core.orchestration.transitions import StatusTransitionEngine

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "cursor-agent/task-"


class AgentLauncher(Protocol):
    async def launch_agent(self, task: Task, webhook_url: str, branch_name: str) -> dict[str, Any]: ...


LauncherFactory = Callable[[Credential], AgentLauncher]


@dataclass
class DispatchResult:
    task: Task
    agent_id: str
    branch_name: str


def generate_branch_name(task_id: Any) -> str:
    """``cursor-agent/task-<id>-<8 hex chars>``, different on every call."""
    return f"{BRANCH_PREFIX}{task_id}-{secrets.token_hex(4)}"


def callback_url(task_id: Any, app_url: Optional[str] = None) -> str:
    base = (app_url or default_settings.APP_URL).rstrip("/")
    return f"{base}/webhooks/cursor/{task_id}"


class AgentDispatchPipeline:
    """Entry point for both manual dispatch and queued task execution."""

    def __init__(
        self,
        db: AsyncSession,
        engine: StatusTransitionEngine,
        launcher_factory: LauncherFactory = CursorAgentClient,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.engine = engine
        self.launcher_factory = launcher_factory
        self.settings = settings or default_settings

    async def dispatch(self, task: Task) -> DispatchResult:
        """
        Launch an agent for ``task``.

        Raises:
            PreconditionError: no epic, or the epic has no agent-launch credential
            AgentLaunchError, ValidationError: the launch failed (task is now failed)
        """
        task_id = task.id
        epic = task.epic
        if epic is None:
            raise PreconditionError("Task must belong to an epic", details={"task_id": str(task_id)})
        credential = epic.cursor_agent_credential
        if credential is None:
            raise PreconditionError(
                "Epic must have a Cursor agent credential configured",
                details={"task_id": str(task_id), "epic_id": str(epic.id)},
            )

        await self.engine.transition(task, TaskStatus.RUNNING, log_message="Starting task execution...")

        try:
            branch_name = generate_branch_name(task_id)
            webhook_url = callback_url(task_id, self.settings.APP_URL)

            await self.engine.transition(
                task,
                TaskStatus.RUNNING,
                log_message=f"Launching Cursor agent for branch: {branch_name}",
            )

            launcher = self.launcher_factory(credential)
            response = await launcher.launch_agent(task, webhook_url, branch_name)

            agent_id = response.get("id") if isinstance(response, dict) else None
            if agent_id is None or not str(agent_id).strip():
                raise AgentLaunchError("Failed to get agent ID from Cursor API response")
            agent_id = str(agent_id)

            # Agent identifiers are not status data, so they bypass the engine.
            task.cursor_agent_id = agent_id
            task.branch_name = branch_name
            await self.db.commit()
        except Exception as e:
            logger.error(f"[Dispatch] Task {task_id}: agent launch failed: {e}")
            await self.db.rollback()
            await self.db.refresh(task)
            await self.engine.transition(
                task,
                TaskStatus.FAILED,
                log_message=f"Failed to launch Cursor agent: {e}",
            )
            raise

        await self.engine.transition(
            task,
            TaskStatus.RUNNING,
            log_message=f"Cursor agent launched successfully. Agent ID: {agent_id}",
        )
        logger.info(f"[Dispatch] Task {task_id}: agent {agent_id} on branch {branch_name}")

        return DispatchResult(task=task, agent_id=agent_id, branch_name=branch_name)
