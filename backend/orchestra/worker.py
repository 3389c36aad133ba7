"""
Orchestra - Queue Worker
========================

Runs the dispatch and merge jobs outside the API process:

    python -m orchestra.worker
"""

import asyncio
import signal

import structlog

from orchestra.core.config import settings
from orchestra.core.database import close_db
from orchestra.core.log_config import configure_logging
from orchestra.core.orchestration.jobs import build_job_handlers
from orchestra.core.orchestration.queue import RedisJobQueue, Worker, create_job_queue

logger = structlog.get_logger()


async def run_worker() -> None:
    queue = create_job_queue()
    if isinstance(queue, RedisJobQueue):
        await queue.recover_in_flight()

    # Live observers are connected to the API process, not this one.
    worker = Worker(queue, build_job_handlers(queue))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:
            pass

    logger.info(
        "worker_starting",
        backend=settings.QUEUE_BACKEND,
        queue=settings.QUEUE_NAME,
        max_attempts=settings.QUEUE_MAX_ATTEMPTS,
    )
    try:
        await worker.run()
    finally:
        await queue.close()
        await close_db()
        logger.info("worker_stopped")


def main() -> None:
    configure_logging()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
