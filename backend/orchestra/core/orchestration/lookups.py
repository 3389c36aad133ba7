"""Record lookups shared by the API, the workflows and the job handlers."""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orchestra.core.models import Epic, Task, TaskStatus


def parse_uuid(value: Any) -> Optional[UUID]:
    """UUID from a UUID or its string form; None when it is neither."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


async def get_task(db: AsyncSession, task_id: Any) -> Optional[Task]:
    """
    Load a task with its epic, repository and credentials.

    Existing identity-map instances are overwritten so eager relationships
    are always populated.
    """
    task_uuid = parse_uuid(task_id)
    if task_uuid is None:
        return None

    result = await db.execute(
        select(Task)
        .where(Task.id == task_uuid)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_epic(db: AsyncSession, epic_id: Any, user_id: Optional[UUID] = None) -> Optional[Epic]:
    """Load an epic with its tasks, optionally scoped to one owner."""
    epic_uuid = parse_uuid(epic_id)
    if epic_uuid is None:
        return None

    query = select(Epic).where(Epic.id == epic_uuid)
    if user_id is not None:
        query = query.where(Epic.user_id == user_id)

    result = await db.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def first_pending_task(db: AsyncSession, epic_id: UUID) -> Optional[Task]:
    """The pending task with the lowest position, regardless of insertion order."""
    result = await db.execute(
        select(Task)
        .where(Task.epic_id == epic_id, Task.status == TaskStatus.PENDING)
        .order_by(Task.position.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()
