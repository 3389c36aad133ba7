"""
Job queue and worker.

Pipelines that wait on external calls (agent dispatch, PR merge) run as
queued jobs so the requests that trigger them return promptly. Delivery
is at-least-once: a job may run more than once, and every pipeline step
is either repeatable or fails cleanly on repetition.

Backends:
- RedisJobQueue: ready list + processing list + delayed retry set + dead letters
- InMemoryJobQueue: asyncio.Queue with an inspectable history (development, tests)
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import redis.asyncio as redis

from orchestra.core.config import settings

logger = logging.getLogger(__name__)

EXECUTE_TASK_JOB = "tasks.execute"
MERGE_TASK_JOB = "tasks.merge"


@dataclass
class Job:
    """A unit of queued work: one pipeline for one task."""
    name: str
    task_id: str
    attempts: int = 0
    id: str = field(default_factory=lambda: uuid4().hex, compare=False)
    enqueued_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        compare=False,
    )
    last_error: Optional[str] = field(default=None, compare=False)
    # Serialized form as reserved from Redis, needed to remove it again
    raw: Optional[str] = field(default=None, compare=False, repr=False)

    def to_json(self) -> str:
        data = asdict(self)
        data.pop("raw")
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        data = json.loads(raw)
        return cls(
            name=data["name"],
            task_id=data["task_id"],
            attempts=data.get("attempts", 0),
            id=data.get("id", uuid4().hex),
            enqueued_at=data.get("enqueued_at", datetime.now(timezone.utc).isoformat()),
            last_error=data.get("last_error"),
            raw=raw,
        )


class JobQueue(ABC):
    """Queue contract shared by all backends."""

    def __init__(self, max_attempts: int, retry_backoff_seconds: float):
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds

    @abstractmethod
    async def enqueue(self, job_name: str, task_id: Any) -> Job:
        """Schedule ``job_name`` for ``task_id``."""

    @abstractmethod
    async def reserve(self, timeout: float) -> Optional[Job]:
        """Take the next job, waiting up to ``timeout`` seconds."""

    @abstractmethod
    async def ack(self, job: Job) -> None:
        """Mark a reserved job as done."""

    @abstractmethod
    async def retry(self, job: Job, error: str) -> bool:
        """
        Re-schedule a failed job.

        Returns:
            True if the job will run again, False if it was dead-lettered
        """

    async def close(self) -> None:
        pass

    def backoff_for(self, attempts: int) -> float:
        return self.retry_backoff_seconds * (2 ** max(attempts - 1, 0))


# ==========================================================================
# In-memory backend
# ==========================================================================

class InMemoryJobQueue(JobQueue):
    """
    Single-process queue.

    ``enqueued`` and ``dead_letters`` keep the most recent ``history_limit``
    jobs, oldest first. Retries are re-queued immediately.
    """

    def __init__(
        self,
        max_attempts: int = settings.QUEUE_MAX_ATTEMPTS,
        retry_backoff_seconds: float = 0.0,
        history_limit: int = settings.QUEUE_MEMORY_HISTORY_LIMIT,
    ):
        super().__init__(max_attempts, retry_backoff_seconds)
        self.history_limit = history_limit
        self._ready: asyncio.Queue[Job] = asyncio.Queue()
        self.enqueued: list[Job] = []
        self.in_flight: dict[str, Job] = {}
        self.dead_letters: list[Job] = []

    async def enqueue(self, job_name: str, task_id: Any) -> Job:
        job = Job(name=job_name, task_id=str(task_id))
        self._remember(self.enqueued, job)
        self._ready.put_nowait(job)
        logger.info(f"[Queue] Enqueued {job_name} for task {job.task_id} (job {job.id})")
        return job

    async def reserve(self, timeout: float) -> Optional[Job]:
        try:
            job = await asyncio.wait_for(self._ready.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        self.in_flight[job.id] = job
        return job

    async def ack(self, job: Job) -> None:
        self.in_flight.pop(job.id, None)

    async def retry(self, job: Job, error: str) -> bool:
        self.in_flight.pop(job.id, None)
        job.attempts += 1
        job.last_error = error
        if job.attempts >= self.max_attempts:
            self._remember(self.dead_letters, job)
            return False
        self._ready.put_nowait(job)
        return True

    def _remember(self, history: list[Job], job: Job) -> None:
        history.append(job)
        if len(history) > self.history_limit:
            del history[: len(history) - self.history_limit]

    def pending(self) -> int:
        return self._ready.qsize()

    def jobs_named(self, job_name: str) -> list[Job]:
        return [job for job in self.enqueued if job.name == job_name]


# ==========================================================================
# Redis backend
# ==========================================================================

class RedisJobQueue(JobQueue):
    """
    Redis-backed queue.

    Jobs are LPUSHed onto the ready list and atomically moved onto the
    processing list when reserved, so a worker crash leaves them
    recoverable. Failed jobs wait in a sorted set scored by due time.
    """

    def __init__(
        self,
        redis_url: str = str(settings.REDIS_URL),
        name: str = settings.QUEUE_NAME,
        max_attempts: int = settings.QUEUE_MAX_ATTEMPTS,
        retry_backoff_seconds: float = settings.QUEUE_RETRY_BACKOFF_SECONDS,
        client: Optional[redis.Redis] = None,
    ):
        super().__init__(max_attempts, retry_backoff_seconds)
        self.redis = client or redis.from_url(redis_url, decode_responses=True)
        self.ready_key = name
        self.processing_key = f"{name}:processing"
        self.delayed_key = f"{name}:delayed"
        self.dead_key = f"{name}:dead"

    async def enqueue(self, job_name: str, task_id: Any) -> Job:
        job = Job(name=job_name, task_id=str(task_id))
        await self.redis.lpush(self.ready_key, job.to_json())
        logger.info(f"[Queue] Enqueued {job_name} for task {job.task_id} (job {job.id})")
        return job

    async def promote_due(self) -> int:
        """Move retries whose backoff has elapsed back onto the ready list."""
        due = await self.redis.zrangebyscore(self.delayed_key, 0, time.time())
        promoted = 0
        for raw in due:
            # zrem decides which worker owns the promotion
            if await self.redis.zrem(self.delayed_key, raw):
                await self.redis.lpush(self.ready_key, raw)
                promoted += 1
        return promoted

    async def reserve(self, timeout: float) -> Optional[Job]:
        await self.promote_due()
        raw = await self.redis.blmove(
            self.ready_key,
            self.processing_key,
            timeout,
            "RIGHT",
            "LEFT",
        )
        if raw is None:
            return None
        try:
            return Job.from_json(raw)
        except (ValueError, KeyError) as e:
            logger.error(f"[Queue] Dropping malformed job {raw!r}: {e}")
            await self.redis.lrem(self.processing_key, 1, raw)
            await self.redis.lpush(self.dead_key, raw)
            return None

    async def ack(self, job: Job) -> None:
        if job.raw is not None:
            await self.redis.lrem(self.processing_key, 1, job.raw)

    async def retry(self, job: Job, error: str) -> bool:
        if job.raw is not None:
            await self.redis.lrem(self.processing_key, 1, job.raw)

        job.attempts += 1
        job.last_error = error
        payload = job.to_json()

        if job.attempts >= self.max_attempts:
            await self.redis.lpush(self.dead_key, payload)
            return False

        due = time.time() + self.backoff_for(job.attempts)
        await self.redis.zadd(self.delayed_key, {payload: due})
        return True

    async def recover_in_flight(self) -> int:
        """Return jobs left on the processing list by a dead worker to the ready list."""
        recovered = 0
        while await self.redis.lmove(self.processing_key, self.ready_key, "RIGHT", "LEFT"):
            recovered += 1
        if recovered:
            logger.warning(f"[Queue] Recovered {recovered} in-flight job(s)")
        return recovered

    async def close(self) -> None:
        await self.redis.aclose()


def create_job_queue() -> JobQueue:
    """Build the queue configured by QUEUE_BACKEND."""
    if settings.QUEUE_BACKEND == "memory":
        return InMemoryJobQueue()
    return RedisJobQueue()


# ==========================================================================
# Worker
# ==========================================================================

JobHandler = Callable[[Job], Awaitable[None]]


class Worker:
    """Pulls jobs and runs the matching handler; failures go back to the queue."""

    def __init__(
        self,
        queue: JobQueue,
        handlers: Mapping[str, JobHandler],
        poll_timeout: float = settings.QUEUE_POLL_TIMEOUT_SECONDS,
    ):
        self.queue = queue
        self.handlers = handlers
        self.poll_timeout = poll_timeout
        self._running = False

    async def run_once(self) -> Optional[Job]:
        """Process at most one job. Returns the job handled, if any."""
        job = await self.queue.reserve(self.poll_timeout)
        if job is None:
            return None

        handler = self.handlers.get(job.name)
        if handler is None:
            logger.error(f"[Queue] No handler for job {job.name} (task {job.task_id}); dropping")
            await self.queue.ack(job)
            return job

        try:
            await handler(job)
        except Exception as e:
            logger.exception(
                f"[Queue] Job {job.name} failed for task {job.task_id} "
                f"(attempt {job.attempts + 1}/{self.queue.max_attempts}): {e}"
            )
            will_retry = await self.queue.retry(job, str(e))
            if not will_retry:
                logger.error(f"[Queue] Job {job.name} for task {job.task_id} moved to dead letters")
            return job

        await self.queue.ack(job)
        logger.info(f"[Queue] Job {job.name} completed for task {job.task_id}")
        return job

    async def run(self) -> None:
        self._running = True
        logger.info(f"[Queue] Worker started ({', '.join(sorted(self.handlers))})")
        while self._running:
            await self.run_once()
        logger.info("[Queue] Worker stopped")

    def stop(self) -> None:
        self._running = False
