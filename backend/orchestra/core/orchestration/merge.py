"""
Merge Completion Pipeline.

Runs after the agent reports FINISHED: merges the task's pull request,
removes the work branch and moves the task to ``merging``. A failed merge
leaves the task in ``pr_open`` so the job can be retried or the PR merged
by hand.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orchestra.core.integrations.github import GitHubClient
from orchestra.core.models import Credential, Task, TaskStatus
from orchestra.core.orchestration.errors import (
    MergeError,
    PreconditionError,
    ValidationError,
)
from orchestra.core.orchestration.transitions import StatusTransitionEngine

logger = logging.getLogger(__name__)


class SourceControl(Protocol):
    async def merge_pull_request(self, task: Task) -> str: ...

    async def delete_branch(self, task: Task) -> bool: ...


SourceControlFactory = Callable[[Credential], SourceControl]


@dataclass
class MergeResult:
    task: Task
    merge_sha: str


class MergeCompletionPipeline:
    def __init__(
        self,
        db: AsyncSession,
        engine: StatusTransitionEngine,
        scm_factory: SourceControlFactory = GitHubClient,
    ):
        self.db = db
        self.engine = engine
        self.scm_factory = scm_factory

    def _check_preconditions(self, task: Task) -> Credential:
        if not task.branch_name or not task.branch_name.strip():
            raise PreconditionError("Task must have a branch name", details={"task_id": str(task.id)})
        if task.epic is None:
            raise PreconditionError("Task must belong to an epic", details={"task_id": str(task.id)})
        repository = task.epic.repository
        if repository is None:
            raise PreconditionError("Task must have a repository", details={"task_id": str(task.id)})
        if repository.github_credential is None:
            raise PreconditionError(
                "Repository must have GitHub credentials",
                details={"task_id": str(task.id), "repository": repository.name},
            )
        if task.status != TaskStatus.PR_OPEN:
            raise ValidationError(
                f"Task must be in pr_open status to merge (current: {task.status.value})",
                details={"task_id": str(task.id)},
            )
        return repository.github_credential

    async def complete(self, task: Task) -> MergeResult:
        """
        Merge the task's PR and advance it to ``merging``.

        Raises:
            PreconditionError, ValidationError: nothing was attempted
            MergeError: the merge or the final status update failed
        """
        credential = self._check_preconditions(task)
        task_id = task.id
        branch_name = task.branch_name

        logger.info(f"[Merge] Task {task_id}: Starting merge process for branch '{branch_name}'")
        scm = self.scm_factory(credential)

        try:
            merge_sha = await scm.merge_pull_request(task)
        except Exception as e:
            logger.error(f"[Merge] Task {task_id}: Failed to merge PR: {e}")
            raise MergeError(f"Failed to merge pull request: {e}") from e
        logger.info(f"[Merge] Task {task_id}: Successfully merged PR. SHA: {merge_sha}")

        try:
            await scm.delete_branch(task)
            logger.info(f"[Merge] Task {task_id}: Successfully deleted branch '{branch_name}'")
        except Exception as e:
            logger.warning(f"[Merge] Task {task_id}: Failed to delete branch '{branch_name}': {e}")

        try:
            await self.engine.transition(
                task,
                TaskStatus.MERGING,
                log_message=f"PR merged successfully. SHA: {merge_sha}",
            )
        except (SQLAlchemyError, ValidationError) as e:
            logger.error(f"[Merge] Task {task_id}: Failed to update status: {e}")
            raise MergeError(f"Failed to update task status: {e}") from e

        logger.info(f"[Merge] Task {task_id}: Merge process completed successfully")
        return MergeResult(task=task, merge_sha=merge_sha)
