"""
Unit tests for the pipeline worker.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from prcast.models.pipeline import PipelineJob
from prcast.worker import UNKNOWN_PROJECT, Worker


@pytest.fixture
def redis_client():
    return AsyncMock()


@pytest.fixture
def store(sample_event):
    store = AsyncMock()
    store.get_webhook_event.return_value = sample_event
    return store


@pytest.fixture
def orchestrator():
    return AsyncMock()


@pytest.fixture
def worker(redis_client, store, orchestrator):
    return Worker(
        redis_client=redis_client,
        store=store,
        orchestrator=orchestrator,
        max_workers=1,
        max_runs_per_project=1,
        poll_timeout=1,
    )


def make_job(event_id: str = "evt-1"):
    job = PipelineJob(webhook_event_id=event_id)
    return job, job.model_dump_json()


class TestRunJob:
    """Test running and acknowledging a single job."""

    @pytest.mark.asyncio
    async def test_job_is_processed_and_acked(self, worker, orchestrator, redis_client):
        job, raw = make_job()
        await worker._slots.acquire()

        await worker._run_job(job, raw)

        orchestrator.process_job.assert_awaited_once_with(job)
        redis_client.ack_job.assert_awaited_once_with(raw)
        assert not worker._slots.locked()

    @pytest.mark.asyncio
    async def test_failed_run_is_still_acked(self, worker, orchestrator, redis_client):
        job, raw = make_job()
        orchestrator.process_job.side_effect = Exception("pipeline crashed")
        await worker._slots.acquire()

        await worker._run_job(job, raw)

        redis_client.ack_job.assert_awaited_once_with(raw)
        assert not worker._slots.locked()

    @pytest.mark.asyncio
    async def test_ack_failure_releases_slot(self, worker, redis_client):
        job, raw = make_job()
        redis_client.ack_job.side_effect = Exception("connection reset")
        await worker._slots.acquire()

        await worker._run_job(job, raw)

        assert not worker._slots.locked()

    @pytest.mark.asyncio
    async def test_project_lookup(self, worker, store):
        job, _ = make_job()

        assert await worker._project_for(job) == "proj-1"

        store.get_webhook_event.return_value = None
        assert await worker._project_for(job) == UNKNOWN_PROJECT

    @pytest.mark.asyncio
    async def test_runs_for_one_project_are_serialized(self, redis_client, store, orchestrator):
        worker = Worker(
            redis_client=redis_client, store=store, orchestrator=orchestrator,
            max_workers=4, max_runs_per_project=1,
        )
        active = 0
        peak = 0

        async def run(job):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        orchestrator.process_job.side_effect = run
        for _ in range(2):
            await worker._slots.acquire()

        await asyncio.gather(worker._run_job(*make_job("evt-1")), worker._run_job(*make_job("evt-2")))

        assert peak == 1
        assert orchestrator.process_job.await_count == 2


class TestProcessJobs:
    """Test the polling loop."""

    @pytest.mark.asyncio
    async def test_loop_exits_when_stopped(self, worker, redis_client):
        async def claim(timeout):
            worker.running = False
            return None

        redis_client.claim_next_job.side_effect = claim
        worker.running = True

        await worker.process_jobs()

        redis_client.claim_next_job.assert_awaited_once_with(timeout=1)
        assert not worker._slots.locked()

    @pytest.mark.asyncio
    async def test_claimed_job_is_started(self, worker, redis_client, orchestrator):
        job, raw = make_job()
        claims = [(job, raw)]

        async def claim(timeout):
            if claims:
                return claims.pop()
            worker.running = False
            return None

        redis_client.claim_next_job.side_effect = claim
        worker.running = True

        await worker.process_jobs()
        await asyncio.gather(*worker._tasks)

        orchestrator.process_job.assert_awaited_once_with(job)
        redis_client.ack_job.assert_awaited_once_with(raw)

    @pytest.mark.asyncio
    async def test_claim_error_is_retried(self, worker, redis_client):
        calls = []

        async def claim(timeout):
            calls.append(timeout)
            if len(calls) == 1:
                raise ConnectionError("redis unavailable")
            worker.running = False
            return None

        redis_client.claim_next_job.side_effect = claim
        worker.running = True

        with patch("prcast.worker.asyncio.sleep", new=AsyncMock()):
            await worker.process_jobs()

        assert len(calls) == 2


class TestLifecycle:
    """Test start and stop."""

    @pytest.mark.asyncio
    async def test_start_requeues_orphans(self, worker, redis_client, store):
        redis_client.get_queue_length.return_value = 3
        worker._register_signal_handlers = MagicMock()
        worker.process_jobs = AsyncMock()

        await worker.start()

        redis_client.initialize.assert_awaited_once()
        store.initialize.assert_awaited_once()
        redis_client.heartbeat.assert_awaited_once()
        redis_client.requeue_orphaned_jobs.assert_awaited_once()
        worker.process_jobs.assert_awaited_once()
        assert worker.running is True

        await worker.stop()

        assert worker._heartbeat_task is None
        redis_client.clear_heartbeat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_closes_connections(self, worker, redis_client, store):
        worker.running = True

        await worker.stop()

        assert worker.running is False
        store.close.assert_awaited_once()
        redis_client.close.assert_awaited_once()
