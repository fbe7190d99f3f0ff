"""
Job queue abstraction for the sync and AI-processing pipelines.

Delivery is at-least-once: a job is acknowledged only after its handler
returns or its failure has been recorded, so a crash mid-job leaves it to
be redelivered. Handlers must therefore be idempotent.

Each registered topic gets a fixed number of consumer tasks, and each
consumer runs one job at a time, so ``concurrency`` bounds the number of
in-flight handlers for that topic. Every handler runs under a deadline.

Failures follow the queue's own retry policy: retryable errors (anything
without ``retryable = False``) are re-added with exponential backoff until
``max_attempts`` is reached, then recorded as failed. Orchestrators never
retry by themselves.

The deadline is enforced at await points only. Synchronous record store
calls run on the event loop and cannot be interrupted, so a hung database
connection stalls every consumer in the process.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

SYNC_TOPIC = "email-sync"
AI_TOPIC = "ai-processing"


class JobState(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """One delivery of a queued payload."""

    id: str
    topic: str
    payload: dict[str, Any]
    attempts: int = 0
    # Backend delivery handle (stream entry id for Redis)
    receipt: str | None = None

    @property
    def user_id(self) -> str | None:
        return self.payload.get("userId") or self.payload.get("user_id")

    def status(self, state: JobState, attempts: int, error: str | None = None) -> "JobStatus":
        return JobStatus(self.id, self.topic, state, attempts, error, user_id=self.user_id)


@dataclass
class JobStatus:
    job_id: str
    topic: str
    state: JobState
    attempts: int = 0
    error: str | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Owner taken from the payload's userId, checked before status is shown
    user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "topic": self.topic,
            "state": self.state.value,
            "attempts": self.attempts,
            "error": self.error,
            "updated_at": self.updated_at.isoformat(),
        }


class StalledJobError(Exception):
    """A delivery was never settled because its consumer died mid-job."""

    retryable = True


JobHandler = Callable[[Job], Awaitable[Any]]


@dataclass
class _Registration:
    handler: JobHandler
    concurrency: int


class JobQueue(ABC):
    """Durable work queue with independent topics."""

    def __init__(
        self,
        *,
        job_timeout: float = 300.0,
        max_attempts: int = 3,
        retry_backoff: float = 5.0,
    ):
        self.job_timeout = job_timeout
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff
        self._registrations: dict[str, _Registration] = {}
        self._consumer_tasks: list[asyncio.Task[None]] = []
        self._running = False

    # Lifecycle

    async def connect(self) -> None:
        """Open backend connections."""

    async def close(self) -> None:
        """Stop consumers and release backend connections."""
        await self.stop()

    async def ping(self) -> bool:
        """Whether the backend is reachable."""
        return True

    async def __aenter__(self) -> "JobQueue":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Producer side

    async def enqueue(
        self,
        topic: str,
        payload: dict[str, Any],
        *,
        job_id: str | None = None,
        attempts: int = 0,
    ) -> str:
        """Durably append a job and return its id without waiting for it to run.

        Retries re-add the job under its original id with ``attempts`` > 0 and
        keep the status (including the last error) written by the failure path.
        """
        job = Job(
            id=job_id or uuid.uuid4().hex,
            topic=topic,
            payload=dict(payload),
            attempts=attempts,
        )
        await self._push(job)
        if attempts == 0:
            await self._set_status(job.status(JobState.QUEUED, 0))
        return job.id

    @abstractmethod
    async def get_status(self, job_id: str) -> JobStatus | None:
        """Current state of a job, or None if unknown or expired."""

    # Backend hooks

    @abstractmethod
    async def _push(self, job: Job) -> None:
        """Durably append a job to its topic."""

    @abstractmethod
    async def _next_job(self, topic: str, consumer_name: str) -> Job | None:
        """Wait briefly for the next deliverable job; None when idle."""

    @abstractmethod
    async def _ack(self, job: Job) -> None:
        """Remove a delivered job for good."""

    @abstractmethod
    async def _set_status(self, status: JobStatus) -> None:
        """Persist a job's state."""

    @abstractmethod
    async def _record_failure(self, job: Job, error: str) -> None:
        """Append a terminally failed job to the topic's failed-jobs log."""

    # Consumer side

    def register(self, topic: str, handler: JobHandler, concurrency: int = 1) -> None:
        """Attach the handler for a topic. Must be called before ``start``."""
        if self._running:
            raise RuntimeError("Cannot register handlers on a running queue")
        self._registrations[topic] = _Registration(handler, max(1, concurrency))

    async def start(self) -> None:
        """Spawn consumer tasks for every registered topic."""
        if self._running:
            return
        self._running = True

        for topic, registration in self._registrations.items():
            await self._prepare_topic(topic)
            for index in range(registration.concurrency):
                consumer_name = f"{topic}-{index}"
                task = asyncio.create_task(
                    self._consume(topic, registration.handler, consumer_name),
                    name=consumer_name,
                )
                self._consumer_tasks.append(task)

            logger.info(
                f"Consumers started for {topic}",
                extra={"topic": topic, "concurrency": registration.concurrency}
            )

    async def stop(self) -> None:
        """Cancel consumer tasks. In-flight jobs stay unacknowledged."""
        self._running = False
        tasks, self._consumer_tasks = self._consumer_tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Queue consumers stopped", extra={"consumer_count": len(tasks)})

    async def _prepare_topic(self, topic: str) -> None:
        """Create backend structures for a topic before consumers start."""

    async def _consume(self, topic: str, handler: JobHandler, consumer_name: str) -> None:
        while self._running:
            try:
                job = await self._next_job(topic, consumer_name)
                if job is not None:
                    await self.process(job, handler)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Backend unavailable; unacked jobs are redelivered later
                logger.exception(
                    "Queue backend error",
                    extra={"topic": topic, "consumer": consumer_name}
                )
                await asyncio.sleep(1.0)

    async def process(self, job: Job, handler: JobHandler) -> JobState:
        """Run one job through its handler and settle its outcome."""
        await self._set_status(job.status(JobState.ACTIVE, job.attempts))
        logger.info(
            f"Processing {job.topic} job",
            extra={"job_id": job.id, "topic": job.topic, "attempt": job.attempts + 1}
        )

        try:
            await asyncio.wait_for(handler(job), timeout=self.job_timeout)
        except asyncio.TimeoutError as e:
            state = await self._handle_failure(
                job, e, f"Job exceeded {self.job_timeout:.0f}s deadline"
            )
        except Exception as e:
            state = await self._handle_failure(job, e, str(e) or type(e).__name__)
        else:
            state = JobState.COMPLETED
            await self._set_status(job.status(state, job.attempts + 1))
            logger.info(
                f"{job.topic} job {job.id} completed",
                extra={"job_id": job.id, "topic": job.topic}
            )

        await self._ack(job)
        return state

    def _backoff_delay(self, attempts: int) -> float:
        return self.retry_backoff * (2 ** (attempts - 1))

    async def _handle_failure(self, job: Job, exc: BaseException, error: str) -> JobState:
        attempts = job.attempts + 1
        retryable = getattr(exc, "retryable", True)

        if retryable and attempts < self.max_attempts:
            delay = self._backoff_delay(attempts)
            logger.warning(
                f"{job.topic} job {job.id} failed, retrying",
                extra={
                    "job_id": job.id,
                    "attempt": attempts,
                    "retry_in_seconds": delay,
                    "error": error,
                }
            )
            await self._set_status(
                job.status(JobState.QUEUED, attempts, error)
            )
            # Backoff is spent before the ack, so a crash here still redelivers
            await asyncio.sleep(delay)
            await self.enqueue(job.topic, job.payload, job_id=job.id, attempts=attempts)
            return JobState.QUEUED

        logger.error(
            f"{job.topic} job {job.id} failed",
            exc_info=exc,
            extra={"job_id": job.id, "attempt": attempts, "error": error}
        )
        await self._set_status(job.status(JobState.FAILED, attempts, error))
        await self._record_failure(job, error)
        return JobState.FAILED
