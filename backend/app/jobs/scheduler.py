"""Periodic triggers for the worker process.

Uses APScheduler to:
- enqueue an incremental sync for every user holding a credential, every
  SCHEDULED_SYNC_INTERVAL_MINUTES
- fail SyncRuns stuck in_progress longer than STALE_SYNC_RUN_MINUTES

Controlled by ENABLE_SCHEDULER (default off, so tests and API-only
deployments never enqueue work on their own).
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.jobs.payloads import EmailSyncJob
from app.jobs.queue import SYNC_TOPIC, JobQueue
from app.models.enums import SyncType
from app.store.records import RecordStore

logger = logging.getLogger(__name__)

STALE_RUN_CHECK_MINUTES = 5
STALE_RUN_ERROR = "Sync run did not finish in time"


class SyncScheduler:
    def __init__(
        self,
        queue: JobQueue,
        store: RecordStore,
        sync_interval_minutes: int = 15,
        stale_after_minutes: int = 60,
    ):
        self.queue = queue
        self.store = store
        self.sync_interval_minutes = sync_interval_minutes
        self.stale_after_minutes = stale_after_minutes
        self._scheduler: AsyncIOScheduler | None = None

    async def enqueue_incremental_syncs(self) -> int:
        """Enqueue one sync per user with a credential; returns how many were enqueued."""
        users = self.store.list_users_with_credentials()
        enqueued = 0

        for user in users:
            try:
                watermark = self.store.last_successful_sync_started_at(user.id)
                request = EmailSyncJob(
                    user_id=user.id,
                    provider=user.provider,
                    # Never synced successfully: take the latest page instead
                    sync_type=SyncType.INCREMENTAL if watermark else SyncType.FULL,
                    last_sync_time=watermark,
                )
                await self.queue.enqueue(SYNC_TOPIC, request.to_payload())
                enqueued += 1
            except Exception:
                logger.warning(
                    "Scheduled sync enqueue failed for user",
                    exc_info=True,
                    extra={"user_id": user.id}
                )

        logger.info(
            f"Scheduled sync: enqueued {enqueued} of {len(users)} users",
            extra={"enqueued_count": enqueued, "user_count": len(users)}
        )
        return enqueued

    async def reap_stale_sync_runs(self) -> int:
        """Fail sync runs that have been in progress for too long."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=self.stale_after_minutes)
        failed = self.store.fail_stale_sync_runs(cutoff, STALE_RUN_ERROR)
        if failed:
            logger.warning(
                f"Marked {failed} stale sync runs as failed",
                extra={"failed_count": failed, "stale_after_minutes": self.stale_after_minutes}
            )
        return failed

    def start(self) -> None:
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_job(
            self.enqueue_incremental_syncs,
            trigger=IntervalTrigger(minutes=self.sync_interval_minutes),
            id="scheduled_incremental_sync",
            name="Incremental sync for every connected mailbox",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self.reap_stale_sync_runs,
            trigger=IntervalTrigger(minutes=STALE_RUN_CHECK_MINUTES),
            id="stale_sync_run_reaper",
            name="Fail sync runs stuck in progress",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            "Background scheduler started",
            extra={
                "sync_interval_minutes": self.sync_interval_minutes,
                "stale_after_minutes": self.stale_after_minutes,
            }
        )

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Background scheduler stopped")
