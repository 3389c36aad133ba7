"""
Orchestra - Tasks API
=====================

Task detail (including the debug log) and manual merge retries.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, status

from orchestra.api.deps import CurrentUser, DbSession, Queue
from orchestra.core.models import Task, TaskStatus
from orchestra.core.orchestration.errors import NotFoundError, ValidationError
from orchestra.core.orchestration.lookups import get_task
from orchestra.core.orchestration.queue import MERGE_TASK_JOB
from orchestra.core.schemas import JobEnqueuedResponse, TaskResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/tasks", tags=["Tasks"])


async def get_task_or_404(task_id: UUID, user_id: UUID, db) -> Task:
    """Get a task whose epic belongs to the caller, or raise 404."""
    task = await get_task(db, task_id)
    if task is None or task.epic is None or task.epic.user_id != user_id:
        raise NotFoundError("Task", str(task_id))
    return task


@router.get(
    "/{task_id}",
    response_model=TaskResponse,
    summary="Get a task",
)
async def get_task_detail(
    task_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> Task:
    return await get_task_or_404(task_id, current_user.id, db)


@router.post(
    "/{task_id}/merge",
    response_model=JobEnqueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry the merge of a finished task",
)
async def merge_task(
    task_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    queue: Queue,
) -> JobEnqueuedResponse:
    """Queue the merge pipeline again for a task whose PR is still open."""
    task = await get_task_or_404(task_id, current_user.id, db)
    if task.status != TaskStatus.PR_OPEN:
        raise ValidationError(
            f"Task must be in pr_open status to merge (current: {task.status.value})"
        )

    job = await queue.enqueue(MERGE_TASK_JOB, task.id)
    logger.info("merge_requeued", task_id=str(task.id), job_id=job.id)

    return JobEnqueuedResponse(job_id=job.id, job_name=job.name, task_id=task.id)
