"""
Webhook Dispatcher.

Routes a normalized agent callback to its status handler. Deliveries for
the same task may arrive duplicated or out of order, so FINISHED and ERROR
apply unconditionally while RUNNING only moves a task out of ``pending``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from orchestra.core.models import Task, TaskStatus
from orchestra.core.orchestration.errors import ValidationError, WebhookProcessingError
from orchestra.core.orchestration.normalizer import NormalizedWebhook, normalize_webhook
from orchestra.core.orchestration.queue import MERGE_TASK_JOB, JobQueue
from orchestra.core.orchestration.transitions import StatusTransitionEngine

logger = logging.getLogger(__name__)

PR_URL_MISSING = "URL not provided"
UNKNOWN_ERROR = "Unknown error"


@dataclass
class HandlerResult:
    """What a status handler did."""
    recognized: bool = True
    skipped: bool = False
    task_status: Optional[str] = None
    pr_url: Optional[str] = None
    merge_job_id: Optional[str] = None
    message: Optional[str] = None


@dataclass
class WebhookResult:
    status: str
    result: HandlerResult = field(default_factory=HandlerResult)


class WebhookDispatcher:
    """Maps a callback status to the FINISHED, RUNNING or ERROR handler."""

    def __init__(self, engine: StatusTransitionEngine, queue: JobQueue):
        self.engine = engine
        self.queue = queue

    async def handle(self, task: Task, payload: Any) -> WebhookResult:
        """
        Process one callback for ``task``.

        Raises:
            InvalidPayloadError: no status token (the task is untouched)
            WebhookProcessingError: a handler could not apply its transition
        """
        task_id = task.id
        webhook = normalize_webhook(payload)
        token = webhook.status_token
        logger.info(f"[Webhook] Task {task_id}: received status {webhook.status}")

        if token == "FINISHED":
            result = await self._run("FINISHED", task_id, task, self._handle_finished, webhook)
        elif token == "RUNNING":
            result = await self._run("RUNNING", task_id, task, self._handle_running, webhook)
        elif token == "ERROR":
            result = await self._run("ERROR", task_id, task, self._handle_error, webhook)
        else:
            logger.warning(f"[Webhook] Task {task_id}: unrecognized status {webhook.status}, ignoring")
            result = HandlerResult(
                recognized=False,
                task_status=task.status.value,
                message=f"Unrecognized status: {webhook.status}",
            )

        return WebhookResult(status=webhook.status, result=result)

    async def _run(self, label, task_id, task, handler, webhook: NormalizedWebhook) -> HandlerResult:
        try:
            return await handler(task, webhook)
        except (SQLAlchemyError, ValidationError) as e:
            # The session was rolled back, so only the captured id is safe to read
            logger.error(f"[Webhook] Task {task_id}: failed to handle {label} status: {e}")
            raise WebhookProcessingError(f"Failed to handle {label} status: {e}") from e

    async def _handle_finished(self, task: Task, webhook: NormalizedWebhook) -> HandlerResult:
        if not webhook.pr_url:
            logger.warning(f"[Webhook] Task {task.id}: FINISHED without a PR URL")

        await self.engine.transition(
            task,
            TaskStatus.PR_OPEN,
            log_message=f"Cursor agent finished. PR created: {webhook.pr_url or PR_URL_MISSING}",
            pr_url=webhook.pr_url,
        )

        # Always scheduled; the merge pipeline checks its own preconditions.
        job = await self.queue.enqueue(MERGE_TASK_JOB, task.id)
        logger.info(f"[Webhook] Task {task.id}: merge job {job.id} enqueued")

        return HandlerResult(
            task_status=task.status.value,
            pr_url=task.pr_url,
            merge_job_id=job.id,
        )

    async def _handle_running(self, task: Task, webhook: NormalizedWebhook) -> HandlerResult:
        if task.status != TaskStatus.PENDING:
            return self._running_skipped(task)

        # Another writer may have moved the task since it was loaded.
        updated = await self.engine.transition(
            task,
            TaskStatus.RUNNING,
            log_message="Cursor agent is now running",
            only_from=TaskStatus.PENDING,
        )
        if updated is None:
            return self._running_skipped(task)
        return HandlerResult(task_status=task.status.value)

    def _running_skipped(self, task: Task) -> HandlerResult:
        logger.info(f"[Webhook] Task {task.id}: RUNNING ignored, already {task.status.value}")
        return HandlerResult(
            skipped=True,
            task_status=task.status.value,
            message=f"Task already {task.status.value}",
        )

    async def _handle_error(self, task: Task, webhook: NormalizedWebhook) -> HandlerResult:
        error_message = webhook.error_message or UNKNOWN_ERROR
        logger.error(f"[Webhook] Task {task.id}: agent reported failure: {error_message}")

        await self.engine.transition(
            task,
            TaskStatus.FAILED,
            log_message=f"Cursor agent failed: {error_message}",
        )
        return HandlerResult(task_status=task.status.value, message=error_message)
