"""In-process job queue for development and tests.

Same delivery, concurrency and retry semantics as the Redis backend, but
jobs live in ``asyncio.Queue`` objects and vanish with the process.
"""

import asyncio
from typing import Any

from app.jobs.queue import Job, JobQueue, JobStatus


class InMemoryJobQueue(JobQueue):
    def __init__(self, *, poll_interval: float = 0.1, **kwargs: Any):
        super().__init__(**kwargs)
        self.poll_interval = poll_interval
        self._topics: dict[str, asyncio.Queue[Job]] = {}
        self._statuses: dict[str, JobStatus] = {}
        self.failed_jobs: dict[str, list[dict[str, Any]]] = {}

    def _topic_queue(self, topic: str) -> asyncio.Queue[Job]:
        if topic not in self._topics:
            self._topics[topic] = asyncio.Queue()
        return self._topics[topic]

    def pending_count(self, topic: str) -> int:
        return self._topic_queue(topic).qsize()

    async def join(self, topic: str) -> None:
        """Wait until every job put on ``topic`` has been acknowledged."""
        await self._topic_queue(topic).join()

    async def get_status(self, job_id):
        return self._statuses.get(job_id)

    async def _push(self, job):
        await self._topic_queue(job.topic).put(job)

    async def _next_job(self, topic, consumer_name):
        try:
            return await asyncio.wait_for(
                self._topic_queue(topic).get(), timeout=self.poll_interval
            )
        except asyncio.TimeoutError:
            return None

    async def _ack(self, job):
        self._topic_queue(job.topic).task_done()

    async def _set_status(self, status):
        self._statuses[status.job_id] = status

    async def _record_failure(self, job, error):
        self.failed_jobs.setdefault(job.topic, []).append(
            {"job_id": job.id, "payload": job.payload, "attempts": job.attempts + 1, "error": error}
        )
