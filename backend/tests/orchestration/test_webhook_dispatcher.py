"""
Webhook Dispatcher Tests
========================

FINISHED, RUNNING and ERROR handlers, including duplicated and
out-of-order deliveries.
"""

import logging

import pytest
from sqlalchemy.exc import OperationalError

from orchestra.core.models import Task, TaskStatus
from orchestra.core.orchestration.errors import InvalidPayloadError, WebhookProcessingError
from orchestra.core.orchestration.lookups import get_task
from orchestra.core.orchestration.queue import MERGE_TASK_JOB, InMemoryJobQueue
from orchestra.core.orchestration.transitions import StatusTransitionEngine
from orchestra.core.orchestration.webhooks import WebhookDispatcher

PR_URL = "https://github.com/acme/widgets/pull/42"


@pytest.fixture
def dispatcher(engine: StatusTransitionEngine, job_queue: InMemoryJobQueue) -> WebhookDispatcher:
    return WebhookDispatcher(engine, job_queue)


class TestFinished:
    """FINISHED opens the PR state and schedules the merge."""

    async def test_moves_to_pr_open_and_enqueues_merge(
        self, dispatcher: WebhookDispatcher, task: Task, job_queue: InMemoryJobQueue, set_status
    ):
        await set_status(task, TaskStatus.RUNNING)

        outcome = await dispatcher.handle(task, {"status": "FINISHED", "target": {"prUrl": PR_URL}})

        assert task.status == TaskStatus.PR_OPEN
        assert task.pr_url == PR_URL
        assert task.debug_log.endswith(f"Cursor agent finished. PR created: {PR_URL}")
        assert outcome.status == "FINISHED"
        assert outcome.result.task_status == "pr_open"

        merge_jobs = job_queue.jobs_named(MERGE_TASK_JOB)
        assert [job.task_id for job in merge_jobs] == [str(task.id)]
        assert outcome.result.merge_job_id == merge_jobs[0].id

    async def test_lower_case_status(self, dispatcher: WebhookDispatcher, task: Task):
        outcome = await dispatcher.handle(task, {"status": "finished", "pr_url": PR_URL})

        assert task.status == TaskStatus.PR_OPEN
        assert outcome.status == "finished"

    async def test_without_pr_url_still_enqueues_merge(
        self, dispatcher: WebhookDispatcher, task: Task, job_queue: InMemoryJobQueue, caplog
    ):
        with caplog.at_level(logging.WARNING):
            await dispatcher.handle(task, {"status": "FINISHED"})

        assert task.status == TaskStatus.PR_OPEN
        assert task.pr_url is None
        assert task.debug_log.endswith("Cursor agent finished. PR created: URL not provided")
        assert len(job_queue.jobs_named(MERGE_TASK_JOB)) == 1
        assert "FINISHED without a PR URL" in caplog.text

    async def test_repeated_finished_enqueues_each_time(
        self, dispatcher: WebhookDispatcher, task: Task, job_queue: InMemoryJobQueue
    ):
        """Duplicate deliveries are tolerated; the merge pipeline rejects the extra runs."""
        await dispatcher.handle(task, {"status": "FINISHED", "pr_url": PR_URL})
        await dispatcher.handle(task, {"status": "FINISHED", "pr_url": PR_URL})

        assert task.status == TaskStatus.PR_OPEN
        assert len(task.debug_log.split("\n")) == 2
        assert len(job_queue.jobs_named(MERGE_TASK_JOB)) == 2


class TestRunning:
    """RUNNING only moves a task out of pending."""

    async def test_pending_becomes_running(self, dispatcher: WebhookDispatcher, task: Task):
        outcome = await dispatcher.handle(task, {"data": {"status": "RUNNING"}})

        assert task.status == TaskStatus.RUNNING
        assert task.debug_log.endswith("Cursor agent is now running")
        assert outcome.result.skipped is False

    @pytest.mark.parametrize(
        "current",
        [TaskStatus.RUNNING, TaskStatus.PR_OPEN, TaskStatus.MERGING, TaskStatus.COMPLETED, TaskStatus.FAILED],
    )
    async def test_non_pending_untouched(
        self, dispatcher: WebhookDispatcher, task: Task, set_status, current, notifier
    ):
        await set_status(task, current, debug_log="[2024-01-01 00:00:00] earlier")

        outcome = await dispatcher.handle(task, {"status": "RUNNING"})

        assert task.status == current
        assert task.debug_log == "[2024-01-01 00:00:00] earlier"
        assert outcome.result.skipped is True
        assert notifier.messages == []

    async def test_finished_then_late_running_stays_pr_open(
        self, dispatcher: WebhookDispatcher, task: Task
    ):
        await dispatcher.handle(task, {"status": "FINISHED", "pr_url": PR_URL})
        await dispatcher.handle(task, {"status": "RUNNING"})

        assert task.status == TaskStatus.PR_OPEN
        assert task.pr_url == PR_URL

    async def test_running_from_stale_session_after_finished(
        self, dispatcher: WebhookDispatcher, db_session, second_session, task: Task,
        job_queue: InMemoryJobQueue,
    ):
        """A RUNNING delivery processed on an older copy of the task is skipped."""
        task_id = task.id
        stale = await get_task(second_session, task_id)
        stale_dispatcher = WebhookDispatcher(StatusTransitionEngine(second_session), job_queue)

        await dispatcher.handle(task, {"status": "FINISHED", "pr_url": PR_URL})
        outcome = await stale_dispatcher.handle(stale, {"status": "RUNNING"})

        assert outcome.result.skipped is True
        assert outcome.result.task_status == "pr_open"
        reloaded = await get_task(db_session, task_id)
        assert reloaded.status == TaskStatus.PR_OPEN
        assert reloaded.debug_log.count("\n") == 0
        assert reloaded.debug_log.endswith(f"Cursor agent finished. PR created: {PR_URL}")


class TestError:
    """ERROR fails the task with the reported message."""

    async def test_error_message_logged(self, dispatcher: WebhookDispatcher, task: Task):
        await dispatcher.handle(task, {"status": "ERROR", "error": "boom"})

        assert task.status == TaskStatus.FAILED
        assert task.debug_log.endswith("Cursor agent failed: boom")

    async def test_multiline_error_adds_one_line(
        self, engine: StatusTransitionEngine, dispatcher: WebhookDispatcher, task: Task
    ):
        await engine.transition(task, TaskStatus.RUNNING, log_message="one")

        await dispatcher.handle(
            task, {"status": "ERROR", "error": "boom\n[2020-01-01 00:00:00] forged line"}
        )

        lines = task.debug_log.split("\n")
        assert len(lines) == 2
        assert lines[1].endswith("Cursor agent failed: boom [2020-01-01 00:00:00] forged line")

    async def test_error_without_message(self, dispatcher: WebhookDispatcher, task: Task):
        outcome = await dispatcher.handle(task, {"event": "error"})

        assert task.status == TaskStatus.FAILED
        assert task.debug_log.endswith("Cursor agent failed: Unknown error")
        assert outcome.result.message == "Unknown error"

    async def test_error_after_finished(
        self, dispatcher: WebhookDispatcher, task: Task
    ):
        await dispatcher.handle(task, {"status": "FINISHED", "pr_url": PR_URL})
        await dispatcher.handle(task, {"status": "ERROR", "message": "late failure"})

        assert task.status == TaskStatus.FAILED
        assert task.pr_url == PR_URL


class TestUnrecognized:
    """Unknown tokens are acknowledged without any change."""

    async def test_unknown_status_no_change(
        self, dispatcher: WebhookDispatcher, task: Task, job_queue: InMemoryJobQueue, notifier, caplog
    ):
        with caplog.at_level(logging.WARNING):
            outcome = await dispatcher.handle(task, {"status": "PAUSED"})

        assert outcome.status == "PAUSED"
        assert outcome.result.recognized is False
        assert task.status == TaskStatus.PENDING
        assert task.debug_log is None
        assert job_queue.enqueued == []
        assert notifier.messages == []
        assert "unrecognized status PAUSED" in caplog.text

    async def test_missing_status_raises(self, dispatcher: WebhookDispatcher, task: Task):
        with pytest.raises(InvalidPayloadError):
            await dispatcher.handle(task, {"target": {"prUrl": PR_URL}})

        assert task.status == TaskStatus.PENDING
        assert task.pr_url is None


class TestHandlerFailure:
    """Persistence failures surface as WebhookProcessingError."""

    async def test_commit_failure_wrapped(
        self, dispatcher: WebhookDispatcher, task: Task, monkeypatch
    ):
        async def failing_transition(*args, **kwargs):
            raise OperationalError("UPDATE tasks", {}, Exception("disk I/O error"))

        monkeypatch.setattr(StatusTransitionEngine, "transition", failing_transition)

        with pytest.raises(WebhookProcessingError) as exc_info:
            await dispatcher.handle(task, {"status": "ERROR", "error": "boom"})

        assert exc_info.value.message.startswith("Failed to handle ERROR status:")
        assert exc_info.value.status_code == 422
