"""
Epic workflows: creation from a manual task list and the start workflow.

Starting an epic moves it from ``pending`` to ``running`` and queues
dispatch of exactly one task, the pending one with the lowest position.
Later tasks are dispatched by whoever drives the epic forward.
"""

import logging
from collections.abc import Sequence
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orchestra.core.models import (
    Credential,
    CredentialService,
    Epic,
    EpicStatus,
    Repository,
    Task,
    User,
    utcnow,
)
from orchestra.core.orchestration.errors import PreconditionError, ValidationError
from orchestra.core.orchestration.lookups import first_pending_task
from orchestra.core.orchestration.notifications import (
    Notifier,
    epic_channel,
    epic_update_payload,
    notify_safely,
)
from orchestra.core.orchestration.queue import EXECUTE_TASK_JOB, JobQueue

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50


def manual_spec_title(first_task: str) -> str:
    if len(first_task) > TITLE_MAX_LENGTH:
        return f"{first_task[:TITLE_MAX_LENGTH - 3]}..."
    return first_task


async def create_epic_from_manual_spec(
    db: AsyncSession,
    user: User,
    repository: Repository,
    task_descriptions: Sequence[str],
    base_branch: str = "main",
    cursor_agent_credential_id: Optional[UUID] = None,
) -> tuple[Epic, list[Task]]:
    """
    Create a pending epic with one task per description, positions 0..N-1.

    Nothing is written unless every check passes.

    Raises:
        ValidationError: foreign repository, empty or blank task list,
            or a credential that is not the user's cursor_agent credential
    """
    if repository.user_id != user.id:
        raise ValidationError("Repository must belong to the user")

    if isinstance(task_descriptions, str) or not isinstance(task_descriptions, Sequence):
        raise ValidationError("Tasks must be a list of strings")
    if not task_descriptions:
        raise ValidationError("Tasks must contain at least one task")

    problems = []
    for index, description in enumerate(task_descriptions):
        if not isinstance(description, str):
            problems.append(f"task at index {index} must be a string")
        elif not description.strip():
            problems.append(f"task at index {index} cannot be blank")
    if problems:
        raise ValidationError(f"Tasks {', '.join(problems)}", details={"tasks": problems})

    if cursor_agent_credential_id is not None:
        result = await db.execute(
            select(Credential).where(
                Credential.id == cursor_agent_credential_id,
                Credential.user_id == user.id,
            )
        )
        credential = result.scalar_one_or_none()
        if credential is None:
            raise ValidationError("Cursor agent credential must belong to the user")
        if credential.service_name != CredentialService.CURSOR_AGENT.value:
            raise ValidationError("Cursor agent credential must be a cursor_agent credential")

    epic = Epic(
        user_id=user.id,
        repository_id=repository.id,
        title=manual_spec_title(task_descriptions[0]),
        prompt=f"Manual spec with {len(task_descriptions)} tasks",
        base_branch=base_branch or "main",
        cursor_agent_credential_id=cursor_agent_credential_id,
        status=EpicStatus.PENDING,
        tasks=[
            Task(description=description, position=index)
            for index, description in enumerate(task_descriptions)
        ],
    )
    db.add(epic)
    await db.commit()
    await db.refresh(epic)

    logger.info(f"[Create] Epic {epic.id}: created with {len(epic.tasks)} tasks")
    return epic, list(epic.tasks)


class EpicStartWorkflow:
    """
    Validates an epic can run and queues its first pending task.

    Starting requires the epic's agent-launch credential up front, so an
    epic never reaches ``running`` with a dispatch that is bound to fail.
    """

    def __init__(
        self,
        db: AsyncSession,
        queue: JobQueue,
        notifier: Optional[Notifier] = None,
    ):
        self.db = db
        self.queue = queue
        self.notifier = notifier

    async def start(self, user: User, epic: Epic) -> Epic:
        """
        Raises:
            ValidationError: foreign epic, epic not pending, or no tasks
            PreconditionError: no Cursor agent credential on the epic
        """
        epic_id = epic.id
        if epic.user_id != user.id:
            raise ValidationError("Epic must belong to the user")
        if epic.status != EpicStatus.PENDING:
            raise ValidationError(
                f"Epic must be in pending status to start (current: {epic.status.value})"
            )
        if not epic.tasks:
            raise ValidationError("Epic must have at least one task")
        if epic.cursor_agent_credential_id is None:
            raise PreconditionError(
                "Epic must have a Cursor agent credential configured",
                details={"epic_id": str(epic_id)},
            )

        # Status gate: only one caller can move the epic out of pending.
        result = await self.db.execute(
            update(Epic)
            .where(Epic.id == epic_id, Epic.status == EpicStatus.PENDING)
            .values(status=EpicStatus.RUNNING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError("Epic must be in pending status to start")
        await self.db.commit()
        await self.db.refresh(epic, ["status", "updated_at"])

        first_task = await first_pending_task(self.db, epic_id)
        if first_task is None:
            logger.info(f"[Start] Epic {epic_id}: no pending tasks, nothing to dispatch")
        else:
            try:
                job = await self.queue.enqueue(EXECUTE_TASK_JOB, first_task.id)
            except Exception as e:
                logger.error(
                    f"[Start] Epic {epic_id}: failed to enqueue task {first_task.id}: {e}"
                )
                await self._revert_to_pending(epic)
                raise
            logger.info(
                f"[Start] Epic {epic_id}: task {first_task.id} "
                f"(position {first_task.position}) queued as job {job.id}"
            )

        await notify_safely(self.notifier, epic_channel(epic_id), lambda: epic_update_payload(epic))
        return epic

    async def _revert_to_pending(self, epic: Epic) -> None:
        await self.db.execute(
            update(Epic)
            .where(Epic.id == epic.id, Epic.status == EpicStatus.RUNNING)
            .values(status=EpicStatus.PENDING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(epic, ["status", "updated_at"])
