"""Unit tests for the job queue runtime, exercised through the in-memory backend."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from app.core.errors import AuthError, TransportError
from app.jobs.memory_queue import InMemoryJobQueue
from app.jobs.queue import Job, JobState

TOPIC = "email-sync"


def _queue(**kwargs) -> InMemoryJobQueue:
    kwargs.setdefault("job_timeout", 5.0)
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("retry_backoff", 0.0)
    return InMemoryJobQueue(poll_interval=0.01, **kwargs)


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_returns_immediately_with_queued_status(self):
        queue = _queue()

        job_id = await queue.enqueue(TOPIC, {"userId": "u1"})

        status = await queue.get_status(job_id)
        assert status.state == JobState.QUEUED
        assert status.attempts == 0
        assert queue.pending_count(TOPIC) == 1
        assert status.user_id == "u1"

    @pytest.mark.asyncio
    async def test_topics_are_independent(self):
        queue = _queue()

        await queue.enqueue("email-sync", {})
        await queue.enqueue("ai-processing", {})
        await queue.enqueue("ai-processing", {})

        assert queue.pending_count("email-sync") == 1
        assert queue.pending_count("ai-processing") == 2

    @pytest.mark.asyncio
    async def test_owner_kept_through_failure(self):
        queue = _queue(max_attempts=1)
        job_id = await queue.enqueue(TOPIC, {"userId": "u1"})
        job = await queue._next_job(TOPIC, "c0")

        await queue.process(job, AsyncMock(side_effect=TransportError("down")))

        status = await queue.get_status(job_id)
        assert status.state == JobState.FAILED
        assert status.user_id == "u1"

    @pytest.mark.asyncio
    async def test_unknown_job_has_no_status(self):
        assert await _queue().get_status("nope") is None


class TestProcess:
    @pytest.mark.asyncio
    async def test_success_marks_completed(self):
        queue = _queue()
        job_id = await queue.enqueue(TOPIC, {"userId": "u1"})
        job = await queue._next_job(TOPIC, "c0")
        handler = AsyncMock(return_value=3)

        state = await queue.process(job, handler)

        assert state == JobState.COMPLETED
        handler.assert_awaited_once_with(job)
        status = await queue.get_status(job_id)
        assert status.state == JobState.COMPLETED
        assert status.attempts == 1

    @pytest.mark.asyncio
    async def test_retryable_failure_is_requeued_with_error(self):
        queue = _queue()
        job_id = await queue.enqueue(TOPIC, {"userId": "u1"})
        job = await queue._next_job(TOPIC, "c0")

        state = await queue.process(job, AsyncMock(side_effect=TransportError("rate limited")))

        assert state == JobState.QUEUED
        status = await queue.get_status(job_id)
        assert status.state == JobState.QUEUED
        assert status.attempts == 1
        assert status.error == "rate limited"

        retried = await queue._next_job(TOPIC, "c0")
        assert retried.id == job_id
        assert retried.attempts == 1
        assert retried.payload == {"userId": "u1"}

    @pytest.mark.asyncio
    async def test_non_retryable_failure_fails_immediately(self):
        queue = _queue()
        job_id = await queue.enqueue(TOPIC, {"userId": "u1"})
        job = await queue._next_job(TOPIC, "c0")

        state = await queue.process(job, AsyncMock(side_effect=AuthError()))

        assert state == JobState.FAILED
        assert queue.pending_count(TOPIC) == 0
        assert (await queue.get_status(job_id)).state == JobState.FAILED
        assert queue.failed_jobs[TOPIC][0]["job_id"] == job_id
        assert queue.failed_jobs[TOPIC][0]["attempts"] == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        queue = _queue(max_attempts=2)
        job_id = await queue.enqueue(TOPIC, {})
        handler = AsyncMock(side_effect=RuntimeError("boom"))

        first = await queue.process(await queue._next_job(TOPIC, "c0"), handler)
        second = await queue.process(await queue._next_job(TOPIC, "c0"), handler)

        assert first == JobState.QUEUED
        assert second == JobState.FAILED
        status = await queue.get_status(job_id)
        assert status.attempts == 2
        assert status.error == "boom"
        assert len(queue.failed_jobs[TOPIC]) == 1

    @pytest.mark.asyncio
    async def test_handler_exceeding_deadline_is_cancelled(self):
        queue = _queue(job_timeout=0.05, max_attempts=1)
        job_id = await queue.enqueue(TOPIC, {})
        cancelled = asyncio.Event()

        async def hang(job: Job):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        state = await queue.process(await queue._next_job(TOPIC, "c0"), hang)

        assert state == JobState.FAILED
        assert cancelled.is_set()
        assert "deadline" in (await queue.get_status(job_id)).error

    @pytest.mark.asyncio
    async def test_backoff_doubles_per_attempt(self):
        queue = _queue(retry_backoff=2.0, max_attempts=5)
        await queue.enqueue(TOPIC, {})
        job = await queue._next_job(TOPIC, "c0")
        job.attempts = 2

        with patch("app.jobs.queue.asyncio.sleep", new=AsyncMock()) as sleep:
            await queue.process(job, AsyncMock(side_effect=TransportError("busy")))

        sleep.assert_awaited_once_with(8.0)


class TestConsumers:
    @pytest.mark.asyncio
    async def test_consumers_drain_the_topic(self):
        queue = _queue()
        seen: list[str] = []

        async def handler(job: Job):
            seen.append(job.payload["n"])

        queue.register(TOPIC, handler, concurrency=2)
        for n in ("a", "b", "c"):
            await queue.enqueue(TOPIC, {"n": n})

        async with queue:
            await queue.start()
            await asyncio.wait_for(queue.join(TOPIC), timeout=2)

        assert sorted(seen) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_concurrency_bounds_in_flight_handlers(self):
        queue = _queue()
        in_flight = 0
        peak = 0

        async def handler(job: Job):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1

        queue.register(TOPIC, handler, concurrency=3)
        for _ in range(10):
            await queue.enqueue(TOPIC, {})

        async with queue:
            await queue.start()
            await asyncio.wait_for(queue.join(TOPIC), timeout=5)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_register_after_start_is_rejected(self):
        queue = _queue()
        queue.register(TOPIC, AsyncMock(), concurrency=1)

        async with queue:
            await queue.start()
            with pytest.raises(RuntimeError):
                queue.register("ai-processing", AsyncMock())

    @pytest.mark.asyncio
    async def test_close_stops_consumer_tasks(self):
        queue = _queue()
        queue.register(TOPIC, AsyncMock(), concurrency=2)

        async with queue:
            await queue.start()
            tasks = list(queue._consumer_tasks)
            assert len(tasks) == 2

        assert all(task.done() for task in tasks)
        assert queue._consumer_tasks == []
