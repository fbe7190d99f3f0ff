"""Build the configured job queue backend and wire the orchestrators to it."""

from app.agents.completion import CompletionService
from app.core.config import Settings
from app.jobs.ai_processing import AIProcessingOrchestrator
from app.jobs.email_sync import EmailSyncOrchestrator
from app.jobs.memory_queue import InMemoryJobQueue
from app.jobs.queue import AI_TOPIC, SYNC_TOPIC, JobQueue
from app.jobs.redis_queue import RedisJobQueue
from app.store.records import RecordStore


def create_job_queue(settings: Settings) -> JobQueue:
    common = {
        "job_timeout": settings.JOB_TIMEOUT_SECONDS,
        "max_attempts": settings.JOB_MAX_ATTEMPTS,
        "retry_backoff": settings.JOB_RETRY_BACKOFF_SECONDS,
    }

    if settings.QUEUE_BACKEND == "memory":
        return InMemoryJobQueue(**common)

    return RedisJobQueue(
        settings.REDIS_URL,
        key_prefix=settings.QUEUE_KEY_PREFIX,
        claim_idle_ms=int(settings.JOB_CLAIM_IDLE_SECONDS * 1000),
        status_ttl_seconds=settings.JOB_STATUS_TTL_SECONDS,
        **common,
    )


def register_pipeline(
    queue: JobQueue,
    store: RecordStore,
    completion: CompletionService,
    settings: Settings,
) -> None:
    """Attach the sync and AI orchestrators to their topics."""
    sync = EmailSyncOrchestrator(store, page_size=settings.SYNC_PAGE_SIZE)
    ai = AIProcessingOrchestrator(
        store, completion, classify_model=settings.OPENAI_CLASSIFY_MODEL
    )
    queue.register(SYNC_TOPIC, sync.handle, concurrency=settings.SYNC_QUEUE_CONCURRENCY)
    queue.register(AI_TOPIC, ai.handle, concurrency=settings.AI_QUEUE_CONCURRENCY)
