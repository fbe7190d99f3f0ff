"""
Redis Streams job queue.

Layout per topic (``{prefix}`` defaults to QUEUE_KEY_PREFIX):
- ``{prefix}:stream:{topic}``  stream of pending jobs, read by consumer group ``workers``
- ``{prefix}:failed:{topic}``  capped stream of terminally failed jobs
- ``{prefix}:job:{job_id}``    hash with the job's latest status, expires after the TTL

Jobs are acknowledged (XACK + XDEL) only once settled. Entries left pending by
a dead worker are reclaimed with XAUTOCLAIM after ``claim_idle_ms`` and
settled as a failed attempt: retried under the usual backoff, or recorded as
failed once ``max_attempts`` is spent. A job that keeps killing its worker
therefore cannot be redelivered forever.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis

from app.jobs.queue import Job, JobQueue, JobState, JobStatus, StalledJobError

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "workers"
FAILED_STREAM_MAXLEN = 10000


class RedisJobQueue(JobQueue):
    def __init__(
        self,
        url: str,
        *,
        key_prefix: str = "email-copilot",
        claim_idle_ms: int = 900_000,
        block_ms: int = 5000,
        status_ttl_seconds: int = 7 * 24 * 3600,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.url = url
        self.key_prefix = key_prefix
        self.claim_idle_ms = claim_idle_ms
        self.block_ms = block_ms
        self.status_ttl_seconds = status_ttl_seconds
        self._redis: aioredis.Redis | None = None
        self._last_claim: dict[str, float] = {}

    # Keys

    def stream_key(self, topic: str) -> str:
        return f"{self.key_prefix}:stream:{topic}"

    def failed_key(self, topic: str) -> str:
        return f"{self.key_prefix}:failed:{topic}"

    def status_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}"

    # Lifecycle

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError("Redis job queue is not connected")
        return self._redis

    async def connect(self) -> None:
        if self._redis is not None:
            return
        self._redis = aioredis.from_url(self.url, decode_responses=True)
        await self._redis.ping()
        logger.info("Connected to Redis job queue", extra={"key_prefix": self.key_prefix})

    async def ping(self) -> bool:
        return bool(await self.redis.ping())

    async def close(self) -> None:
        await super().close()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def _prepare_topic(self, topic: str) -> None:
        try:
            await self.redis.xgroup_create(
                self.stream_key(topic), CONSUMER_GROUP, id="0", mkstream=True
            )
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    # Producer side

    async def _push(self, job: Job) -> None:
        await self.redis.xadd(
            self.stream_key(job.topic),
            {
                "job_id": job.id,
                "payload": json.dumps(job.payload),
                "attempts": str(job.attempts),
                "enqueued_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    async def get_status(self, job_id: str) -> JobStatus | None:
        data = await self.redis.hgetall(self.status_key(job_id))
        if not data:
            return None
        return JobStatus(
            job_id=job_id,
            topic=data["topic"],
            state=JobState(data["state"]),
            attempts=int(data.get("attempts", 0)),
            error=data.get("error") or None,
            updated_at=datetime.fromisoformat(data["updated_at"]),
            user_id=data.get("user_id") or None,
        )

    # Consumer side

    def _to_job(self, topic: str, entry_id: str, fields: dict[str, str]) -> Job:
        return Job(
            id=fields["job_id"],
            topic=topic,
            payload=json.loads(fields["payload"]),
            attempts=int(fields.get("attempts", 0)),
            receipt=entry_id,
        )

    async def _drop_malformed(self, topic: str, entry_id: str) -> None:
        logger.error(
            "Dropping malformed queue entry",
            extra={"topic": topic, "entry_id": entry_id}
        )
        await self.redis.xack(self.stream_key(topic), CONSUMER_GROUP, entry_id)
        await self.redis.xdel(self.stream_key(topic), entry_id)

    async def _claim_stale(self, topic: str, consumer_name: str) -> int:
        """Settle entries whose consumer died before acknowledging them.

        The stalled delivery counts as one failed attempt. Returns how many
        entries were settled.
        """
        now = time.monotonic()
        last = self._last_claim.get(consumer_name)
        if last is not None and now - last < self.claim_idle_ms / 1000:
            return 0
        self._last_claim[consumer_name] = now

        result = await self.redis.xautoclaim(
            self.stream_key(topic),
            CONSUMER_GROUP,
            consumer_name,
            min_idle_time=self.claim_idle_ms,
            start_id="0-0",
            count=1,
        )
        claimed = result[1] if result and len(result) > 1 else []
        settled = 0
        for entry_id, fields in claimed:
            if not fields:
                # Entry was deleted while pending
                await self.redis.xack(self.stream_key(topic), CONSUMER_GROUP, entry_id)
                continue
            try:
                job = self._to_job(topic, entry_id, fields)
            except (KeyError, ValueError):
                await self._drop_malformed(topic, entry_id)
                continue

            logger.warning(
                "Reclaimed stalled job",
                extra={
                    "topic": topic,
                    "job_id": job.id,
                    "attempt": job.attempts + 1,
                    "consumer": consumer_name,
                }
            )
            error = StalledJobError(
                f"Worker stopped before settling the job (idle over {self.claim_idle_ms // 1000}s)"
            )
            await self._handle_failure(job, error, str(error))
            await self._ack(job)
            settled += 1
        return settled

    async def _next_job(self, topic: str, consumer_name: str) -> Job | None:
        await self._claim_stale(topic, consumer_name)

        response = await self.redis.xreadgroup(
            CONSUMER_GROUP,
            consumer_name,
            {self.stream_key(topic): ">"},
            count=1,
            block=self.block_ms,
        )
        for _stream, entries in response or []:
            for entry_id, fields in entries:
                try:
                    return self._to_job(topic, entry_id, fields)
                except (KeyError, ValueError):
                    await self._drop_malformed(topic, entry_id)
        return None

    async def _ack(self, job: Job) -> None:
        if job.receipt is None:
            return
        stream = self.stream_key(job.topic)
        await self.redis.xack(stream, CONSUMER_GROUP, job.receipt)
        await self.redis.xdel(stream, job.receipt)

    async def _set_status(self, status: JobStatus) -> None:
        key = self.status_key(status.job_id)
        await self.redis.hset(
            key,
            mapping={
                "topic": status.topic,
                "state": status.state.value,
                "attempts": str(status.attempts),
                "error": status.error or "",
                "updated_at": status.updated_at.isoformat(),
                "user_id": status.user_id or "",
            },
        )
        await self.redis.expire(key, self.status_ttl_seconds)

    async def _record_failure(self, job: Job, error: str) -> None:
        await self.redis.xadd(
            self.failed_key(job.topic),
            {
                "job_id": job.id,
                "payload": json.dumps(job.payload),
                "attempts": str(job.attempts + 1),
                "error": error,
                "failed_at": datetime.now(timezone.utc).isoformat(),
            },
            maxlen=FAILED_STREAM_MAXLEN,
            approximate=True,
        )
