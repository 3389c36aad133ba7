"""
Queue job handlers.

``tasks.execute`` runs the Agent Dispatch Pipeline and ``tasks.merge``
the Merge Completion Pipeline, each in its own database session.
Collaborator failures propagate so the queue retries them; a missing task
or a failed precondition cannot be fixed by retrying and is acked.
"""

import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from orchestra.core.database import get_db_session
from orchestra.core.integrations.cursor_agent import CursorAgentClient
from orchestra.core.integrations.github import GitHubClient
from orchestra.core.orchestration.dispatch import (
    AgentDispatchPipeline,
    DispatchResult,
    LauncherFactory,
)
from orchestra.core.orchestration.errors import (
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from orchestra.core.orchestration.lookups import get_task
from orchestra.core.orchestration.merge import (
    MergeCompletionPipeline,
    MergeResult,
    SourceControlFactory,
)
from orchestra.core.orchestration.notifications import Notifier
from orchestra.core.orchestration.queue import (
    EXECUTE_TASK_JOB,
    MERGE_TASK_JOB,
    Job,
    JobHandler,
    JobQueue,
)
from orchestra.core.orchestration.transitions import StatusTransitionEngine

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass
class JobContext:
    """Everything a job needs besides its task id."""
    db: AsyncSession
    queue: JobQueue
    notifier: Optional[Notifier] = None
    launcher_factory: LauncherFactory = CursorAgentClient
    scm_factory: SourceControlFactory = GitHubClient

    @property
    def engine(self) -> StatusTransitionEngine:
        return StatusTransitionEngine(self.db, self.notifier)


async def _load_task(ctx: JobContext, task_id: Any):
    task = await get_task(ctx.db, task_id)
    if task is None:
        raise NotFoundError("Task", str(task_id))
    return task


async def execute_task(ctx: JobContext, task_id: Any) -> DispatchResult:
    task = await _load_task(ctx, task_id)
    pipeline = AgentDispatchPipeline(ctx.db, ctx.engine, ctx.launcher_factory)
    return await pipeline.dispatch(task)


async def merge_task(ctx: JobContext, task_id: Any) -> MergeResult:
    task = await _load_task(ctx, task_id)
    pipeline = MergeCompletionPipeline(ctx.db, ctx.engine, ctx.scm_factory)
    result = await pipeline.complete(task)
    logger.info(f"[MergeJob] Task {task_id}: Merge completed successfully")
    return result


JOBS: dict[str, Callable[[JobContext, Any], Awaitable[Any]]] = {
    EXECUTE_TASK_JOB: execute_task,
    MERGE_TASK_JOB: merge_task,
}


def build_job_handlers(
    queue: JobQueue,
    notifier: Optional[Notifier] = None,
    session_factory: SessionFactory = get_db_session,
    launcher_factory: LauncherFactory = CursorAgentClient,
    scm_factory: SourceControlFactory = GitHubClient,
) -> dict[str, JobHandler]:
    """Bind every job function to a fresh session per run."""

    def bind(job_name: str) -> JobHandler:
        job_function = JOBS[job_name]

        async def handler(job: Job) -> None:
            async with session_factory() as db:
                ctx = JobContext(
                    db=db,
                    queue=queue,
                    notifier=notifier,
                    launcher_factory=launcher_factory,
                    scm_factory=scm_factory,
                )
                try:
                    await job_function(ctx, job.task_id)
                except NotFoundError:
                    logger.error(f"[Queue] Job {job_name}: task {job.task_id} not found, dropping")
                except (PreconditionError, ValidationError) as e:
                    logger.error(f"[Queue] Job {job_name}: task {job.task_id} not runnable: {e}")

        return handler

    return {job_name: bind(job_name) for job_name in JOBS}
