"""
Status Transition Engine.

The single writer of task ``status``, ``pr_url`` and ``debug_log``. A
transition validates the requested status and applies all field updates as
one ``UPDATE`` statement that extends the stored log in place, so writers
holding stale copies of a task never drop each other's lines. Live
observers of the epic are then notified on a best-effort basis.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orchestra.core.models import Task, TaskStatus
from orchestra.core.orchestration.errors import ValidationError
from orchestra.core.orchestration.notifications import (
    Notifier,
    epic_channel,
    notify_safely,
    task_update_payload,
)

logger = logging.getLogger(__name__)

LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_LINE_BREAKS = re.compile(r"[\r\n]+")


def coerce_task_status(value: Union[TaskStatus, str, None]) -> TaskStatus:
    """
    Map a requested status onto the six known values.

    Raises:
        ValidationError: for anything outside the enum
    """
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in TaskStatus)
        raise ValidationError(
            f"new_status must be one of: {valid}",
            details={"new_status": value},
        ) from None


def format_log_line(message: str, now: Optional[datetime] = None) -> str:
    """Render one log line; line breaks inside ``message`` become spaces."""
    timestamp = (now or datetime.now(timezone.utc)).strftime(LOG_TIMESTAMP_FORMAT)
    flattened = _LINE_BREAKS.sub(" ", message)
    return f"[{timestamp}] {flattened}"


def appended_log(line: str):
    """SQL expression for the stored debug_log with ``line`` added at the end."""
    return case(
        (or_(Task.debug_log.is_(None), func.trim(Task.debug_log) == ""), line),
        else_=Task.debug_log + "\n" + line,
    )


class StatusTransitionEngine:
    """
    Applies task status transitions.

    Any requested status inside the enum is accepted from any current
    status; legality of a transition for a given workflow is decided by
    the caller (e.g. the RUNNING webhook handler only moves pending
    tasks, through ``only_from``).
    """

    def __init__(self, db: AsyncSession, notifier: Optional[Notifier] = None):
        self.db = db
        self.notifier = notifier

    async def transition(
        self,
        task: Task,
        new_status: Union[TaskStatus, str],
        log_message: Optional[str] = None,
        pr_url: Optional[str] = None,
        only_from: Optional[TaskStatus] = None,
    ) -> Optional[Task]:
        """
        Move a task to ``new_status``.

        Args:
            task: Task to update
            new_status: One of the TaskStatus values
            log_message: Appended to debug_log as a timestamped line when non-blank
            pr_url: Recorded when non-blank; blank never clears an existing URL
            only_from: Apply only while the stored status still equals this value

        Returns:
            The refreshed task, or None when ``only_from`` no longer matched
            (nothing is written and nobody is notified)

        Raises:
            ValidationError: new_status is not a known status (nothing is changed)
            SQLAlchemyError: the write failed (the session is rolled back)
        """
        status = coerce_task_status(new_status)
        task_id = task.id
        previous = task.status

        values = {"status": status}
        if pr_url and pr_url.strip():
            values["pr_url"] = pr_url.strip()
        if log_message and log_message.strip():
            values["debug_log"] = appended_log(format_log_line(log_message))

        stmt = (
            update(Task)
            .where(Task.id == task_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if only_from is not None:
            stmt = stmt.where(Task.status == only_from)

        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Task {task_id}: failed to persist transition to {status.value}: {e}")
            await self.db.rollback()
            raise

        await self.db.refresh(task)

        if result.rowcount == 0:
            logger.info(
                f"Task {task_id}: transition to {status.value} skipped, status is {task.status.value}"
            )
            return None

        logger.info(
            f"Task {task_id}: {previous.value if previous else None} -> {status.value}"
        )

        await notify_safely(self.notifier, epic_channel(task.epic_id), lambda: task_update_payload(task))
        return task
