"""
GitHub Client
=============

Merges agent pull requests and removes their branches through the GitHub
REST API. Repositories are addressed by ``owner/repo`` name.
"""

from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog

from orchestra.core.config import settings
from orchestra.core.models import Credential, Task
from orchestra.core.orchestration.errors import (
    PreconditionError,
    SourceControlError,
    ValidationError,
)

logger = structlog.get_logger()

PAGE_SIZE = 100


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class GitHubClient:
    """Client for the pull request and git refs endpoints."""

    def __init__(
        self,
        credential: Optional[Credential],
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if credential is None:
            raise PreconditionError("Credential cannot be nil")
        if _blank(credential.api_key):
            raise PreconditionError("Credential must have an api_key")

        self.credential = credential
        self.api_url = (api_url or settings.GITHUB_API_URL).rstrip("/")
        self.timeout = timeout or settings.GITHUB_API_TIMEOUT_SECONDS
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {credential.api_key}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=self._headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def merge_pull_request(self, task: Task) -> str:
        """
        Merge the open pull request whose head is the task's branch.

        Returns:
            The merge commit SHA

        Raises:
            ValidationError: the task has no branch or repository name
            SourceControlError: no such PR, not mergeable, conflicts or transport failure
        """
        repo_name, branch_name = self._validate(task)

        try:
            async with self._client() as client:
                pr = await self._find_pull_request(client, repo_name, branch_name)
                if pr is None:
                    raise SourceControlError(f"Pull request not found for branch '{branch_name}'")

                number = pr["number"]
                # The list endpoint never computes mergeability
                detail = await client.get(f"/repos/{repo_name}/pulls/{number}")
                self._raise_for_status(detail, "merge", branch_name)
                if detail.json().get("mergeable") is False:
                    raise SourceControlError(f"Pull request #{number} is not mergeable")

                response = await client.put(
                    f"/repos/{repo_name}/pulls/{number}/merge",
                    json={"commit_title": f"Merge pull request #{number} from {branch_name}"},
                )
                self._raise_for_status(response, "merge", branch_name)
                sha = response.json().get("sha")
        except httpx.HTTPError as e:
            logger.error("github_merge_request_failed", task_id=str(task.id), error=str(e))
            raise SourceControlError(f"Failed to communicate with GitHub: {e}") from e

        if _blank(sha):
            raise SourceControlError(f"GitHub did not return a merge SHA for pull request #{number}")

        logger.info("github_pull_request_merged", task_id=str(task.id), pr_number=number, sha=sha)
        return sha

    async def delete_branch(self, task: Task) -> bool:
        """
        Delete the task's remote branch.

        Raises:
            ValidationError: the task has no branch or repository name
            SourceControlError: the branch is missing or cannot be deleted
        """
        repo_name, branch_name = self._validate(task)

        try:
            async with self._client() as client:
                response = await client.delete(
                    f"/repos/{repo_name}/git/refs/heads/{quote(branch_name, safe='/')}"
                )
        except httpx.HTTPError as e:
            raise SourceControlError(f"Failed to communicate with GitHub: {e}") from e

        self._raise_for_status(response, "delete_branch", branch_name)
        logger.info("github_branch_deleted", task_id=str(task.id), branch_name=branch_name)
        return True

    async def _find_pull_request(
        self,
        client: httpx.AsyncClient,
        repo_name: str,
        branch_name: str,
    ) -> Optional[dict[str, Any]]:
        page = 1
        while True:
            response = await client.get(
                f"/repos/{repo_name}/pulls",
                params={"state": "open", "per_page": PAGE_SIZE, "page": page},
            )
            self._raise_for_status(response, "merge", branch_name)
            pulls = response.json()
            for pr in pulls:
                if pr.get("head", {}).get("ref") == branch_name:
                    return pr
            if len(pulls) < PAGE_SIZE:
                return None
            page += 1

    @staticmethod
    def _validate(task: Optional[Task]) -> tuple[str, str]:
        if task is None:
            raise ValidationError("Task cannot be nil")
        if _blank(task.branch_name):
            raise ValidationError("Task must have a branch_name")
        if task.epic is None:
            raise ValidationError("Task must belong to an epic")
        if task.epic.repository is None:
            raise ValidationError("Epic must have a repository")
        if _blank(task.epic.repository.name):
            raise ValidationError("Repository must have a name")
        return task.epic.repository.name, task.branch_name

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str, branch_name: str) -> None:
        if response.is_success:
            return

        try:
            message = response.json().get("message", response.text)
        except (ValueError, AttributeError):
            message = response.text

        code = response.status_code
        if operation == "delete_branch":
            if code == 404:
                raise SourceControlError(f"Branch '{branch_name}' not found: {message}")
            if code == 422:
                raise SourceControlError(f"Cannot delete branch '{branch_name}': {message}")
        else:
            if code == 404:
                raise SourceControlError(f"Pull request not found: {message}")
            if code == 405:
                raise SourceControlError(f"Pull request cannot be merged: {message}")
            if code == 409:
                raise SourceControlError(f"Pull request has conflicts: {message}")
            if code == 422:
                raise SourceControlError(f"Pull request cannot be merged: {message}")

        raise SourceControlError(f"GitHub API request failed ({code}): {message}")
