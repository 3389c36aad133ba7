"""
Cursor Agent Client
===================

Launches background coding agents through the Cursor API. The agent works
on ``branch_name``, opens a pull request when done, and reports progress
to ``webhook_url``.
"""

from typing import Any, Optional

import httpx
import structlog

from orchestra.core.config import settings
from orchestra.core.models import Credential, Task
from orchestra.core.orchestration.errors import (
    AgentLaunchError,
    PreconditionError,
    ValidationError,
)

logger = structlog.get_logger()


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class CursorAgentClient:
    """Client for the Cursor background agent API."""

    def __init__(
        self,
        credential: Optional[Credential],
        api_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if credential is None:
            raise PreconditionError("Credential cannot be nil")
        if _blank(credential.api_key):
            raise PreconditionError("Credential must have an api_key")

        self.credential = credential
        self.api_key = credential.api_key
        self.api_url = api_url or settings.CURSOR_API_URL
        self.webhook_secret = webhook_secret or settings.CURSOR_WEBHOOK_SECRET
        self.timeout = timeout or settings.CURSOR_API_TIMEOUT_SECONDS
        self._transport = transport

    async def launch_agent(self, task: Task, webhook_url: str, branch_name: str) -> dict[str, Any]:
        """
        Launch an agent for ``task``.

        Returns:
            The parsed API response; the agent id is under ``id``

        Raises:
            ValidationError: the task or arguments are incomplete
            AgentLaunchError: the request failed or the response was unusable
        """
        self._validate(task, webhook_url, branch_name)
        payload = self.build_payload(task, webhook_url, branch_name)

        logger.info(
            "cursor_agent_launch_requested",
            task_id=str(task.id),
            branch_name=branch_name,
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            logger.error("cursor_agent_request_failed", task_id=str(task.id), error=str(e))
            raise AgentLaunchError(f"Failed to communicate with Cursor API: {e}") from e

        if not response.is_success:
            message = self._error_message(response)
            logger.error(
                "cursor_agent_launch_rejected",
                task_id=str(task.id),
                status_code=response.status_code,
                error=message,
            )
            raise AgentLaunchError(
                f"Cursor API request failed ({response.status_code}): {message}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise AgentLaunchError(f"Failed to parse Cursor API response: {e}") from e

        if not isinstance(body, dict):
            raise AgentLaunchError("Failed to parse Cursor API response: expected a JSON object")

        logger.info("cursor_agent_launched", task_id=str(task.id), agent_id=body.get("id"))
        return body

    def build_payload(self, task: Task, webhook_url: str, branch_name: str) -> dict[str, Any]:
        return {
            "prompt": {
                "text": task.description,
            },
            "source": {
                "repository": task.epic.repository.github_url,
                "ref": task.epic.base_branch,
            },
            "target": {
                "branchName": branch_name,
                "autoCreatePr": True,
            },
            "webhook": {
                "url": webhook_url,
                "secret": self.webhook_secret,
            },
        }

    @staticmethod
    def _validate(task: Optional[Task], webhook_url: str, branch_name: str) -> None:
        if task is None:
            raise ValidationError("Task cannot be nil")
        if _blank(task.description):
            raise ValidationError("Task must have a description")
        if task.epic is None:
            raise ValidationError("Task must belong to an epic")
        if task.epic.repository is None:
            raise ValidationError("Epic must have a repository")
        if _blank(task.epic.repository.github_url):
            raise ValidationError("Repository must have a github_url")
        if _blank(task.epic.base_branch):
            raise ValidationError("Epic must have a base_branch")
        if _blank(webhook_url):
            raise ValidationError("webhook_url cannot be blank")
        if _blank(branch_name):
            raise ValidationError("branch_name cannot be blank")

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return str(body.get("error") or body.get("message") or response.text)
        return response.text
