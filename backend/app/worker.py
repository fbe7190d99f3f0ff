"""
Job pipeline worker process.

Builds the record store, completion service and job queue once, consumes the
``email-sync`` and ``ai-processing`` topics until SIGTERM/SIGINT, then stops
consumers and closes the queue connection.

Run with ``python -m app.worker`` (or the ``email-copilot-worker`` script).
"""

import asyncio
import logging
import signal

from app.agents.completion import CompletionService
from app.core.config import settings
from app.core.db import engine, init_db
from app.core.logging import setup_logging
from app.core.tracing import setup_tracing
from app.jobs.factory import create_job_queue, register_pipeline
from app.jobs.scheduler import SyncScheduler
from app.store.records import RecordStore

logger = logging.getLogger(__name__)


async def run_worker(stop_event: asyncio.Event | None = None) -> None:
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.warning(f"Cannot install handler for {sig.name}; stop with the event instead")

    init_db()
    store = RecordStore(engine)
    completion = CompletionService()
    queue = create_job_queue(settings)
    register_pipeline(queue, store, completion, settings)

    scheduler: SyncScheduler | None = None

    async with queue:
        await queue.start()

        if settings.ENABLE_SCHEDULER:
            scheduler = SyncScheduler(
                queue,
                store,
                sync_interval_minutes=settings.SCHEDULED_SYNC_INTERVAL_MINUTES,
                stale_after_minutes=settings.STALE_SYNC_RUN_MINUTES,
            )
            scheduler.start()

        logger.info("Worker started", extra={"queue_backend": settings.QUEUE_BACKEND})
        try:
            await stop_event.wait()
        finally:
            logger.info("Worker shutting down")
            if scheduler is not None:
                scheduler.shutdown()


def main() -> None:
    setup_logging(settings.LOG_LEVEL)
    setup_tracing(service_name="email-copilot-worker")
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
