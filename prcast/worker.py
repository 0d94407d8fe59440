"""
Worker process for the pipeline job queue.

Claims queued runs from Redis and executes them through the
PipelineOrchestrator with bounded concurrency: at most ``max_workers`` runs
per process and at most ``max_runs_per_project`` runs per project. Jobs stay
on the worker's own processing list until their run ends. The worker keeps a
heartbeat in Redis; once it lapses, the next worker that starts re-queues the
dead worker's jobs. Shuts down gracefully on SIGTERM.

Run with ``python -m prcast.worker``.
"""

import asyncio
import signal
import sys
from collections import defaultdict
from typing import Dict, Optional, Set

from prcast.config import settings
from prcast.models.pipeline import PipelineJob
from prcast.services.orchestrator import PipelineOrchestrator
from prcast.services.redis_client import RedisClient, get_redis_client
from prcast.services.store import EventStore, get_event_store
from prcast.utils.logging import setup_logging, get_logger

logger = get_logger(__name__)

UNKNOWN_PROJECT = "__unknown__"


class Worker:
    """Worker process that polls the Redis job queue and runs pipelines."""

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        store: Optional[EventStore] = None,
        orchestrator: Optional[PipelineOrchestrator] = None,
        max_workers: Optional[int] = None,
        max_runs_per_project: Optional[int] = None,
        poll_timeout: int = 5,
    ):
        self.redis_client = redis_client or get_redis_client()
        self.store = store or get_event_store()
        self.orchestrator = orchestrator or PipelineOrchestrator(store=self.store, redis_client=self.redis_client)
        self.max_workers = max_workers or settings.max_workers
        self.max_runs_per_project = max_runs_per_project or settings.max_runs_per_project
        self.poll_timeout = poll_timeout

        self.running = False
        self._slots = asyncio.Semaphore(self.max_workers)
        self._project_slots: Dict[str, asyncio.Semaphore] = defaultdict(
            lambda: asyncio.Semaphore(self.max_runs_per_project)
        )
        self._tasks: Set[asyncio.Task] = set()
        self._heartbeat_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """
        Start the worker process.

        Initializes connections, re-queues orphaned jobs and begins polling
        the job queue.
        """
        logger.info("Starting worker process...")

        await self.redis_client.initialize()
        await self.store.initialize()
        logger.info("Redis and event store connections initialized")

        await self.redis_client.heartbeat()
        self._heartbeat_task = asyncio.create_task(self._keep_alive())
        await self.redis_client.requeue_orphaned_jobs()
        pending = await self.redis_client.get_queue_length()

        self.running = True
        self._register_signal_handlers()
        logger.info(
            f"Worker started (max_workers={self.max_workers}, "
            f"max_runs_per_project={self.max_runs_per_project}, queued={pending})"
        )

        await self.process_jobs()

    async def stop(self) -> None:
        """
        Stop the worker process gracefully.

        Waits for in-flight runs to finish before closing connections.
        """
        logger.info("Stopping worker process...")
        self.running = False

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} running job(s) to complete...")
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            await asyncio.gather(self._heartbeat_task, return_exceptions=True)
            self._heartbeat_task = None
            try:
                await self.redis_client.clear_heartbeat()
            except Exception as e:
                logger.error(f"Failed to clear worker heartbeat: {e}")

        await self.store.close()
        await self.redis_client.close()
        logger.info("Worker process stopped")

    async def process_jobs(self) -> None:
        """
        Main job processing loop.

        A job is only claimed once a run slot is free, so jobs this process
        cannot start yet remain available to other workers.
        """
        logger.info("Starting job processing loop...")

        while self.running:
            await self._slots.acquire()
            started = False
            try:
                if not self.running:
                    break

                claimed = await self.redis_client.claim_next_job(timeout=self.poll_timeout)
                if claimed is None:
                    continue

                job, raw_job = claimed
                task = asyncio.create_task(self._run_job(job, raw_job))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                started = True

            except asyncio.CancelledError:
                logger.info("Job processing cancelled")
                break

            except Exception as e:
                logger.error(f"Error claiming job: {e}", exc_info=True)
                await asyncio.sleep(1)

            finally:
                if not started:
                    self._slots.release()

        logger.info("Job processing loop stopped")

    async def _run_job(self, job: PipelineJob, raw_job: str) -> None:
        """Run one job under its project's concurrency limit, then acknowledge it."""
        job_logger = logger.with_context(webhook_event_id=job.webhook_event_id)
        try:
            project_id = await self._project_for(job)
            async with self._project_slots[project_id]:
                job_logger.info(f"Processing job for event {job.webhook_event_id}")
                snapshot = await self.orchestrator.process_job(job)
                if snapshot is not None:
                    job_logger.info(f"Run {snapshot.report_key} finished with stage {snapshot.stage.value}")

        except Exception as e:
            job_logger.error(f"Failed to process job for event {job.webhook_event_id}: {e}", exc_info=True)

        finally:
            try:
                await self.redis_client.ack_job(raw_job)
            except Exception as e:
                job_logger.error(f"Failed to acknowledge job: {e}")
            self._slots.release()

    async def _keep_alive(self) -> None:
        """Refresh the heartbeat that keeps this worker's jobs from being recovered."""
        interval = RedisClient.HEARTBEAT_TTL_SECONDS / 3
        while True:
            await asyncio.sleep(interval)
            try:
                await self.redis_client.heartbeat()
            except Exception as e:
                logger.error(f"Heartbeat failed: {e}")

    async def _project_for(self, job: PipelineJob) -> str:
        event = await self.store.get_webhook_event(job.webhook_event_id)
        return event.project_id if event else UNKNOWN_PROJECT

    def _register_signal_handlers(self) -> None:
        """Register signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum: int) -> None:
            logger.info(f"Received signal {signal.Signals(signum).name}, initiating graceful shutdown...")
            self.running = False

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, signal_handler, signum)

        logger.info("Signal handlers registered (SIGTERM, SIGINT)")


async def main():
    """Main entry point for worker process."""
    setup_logging(settings.log_level.upper())
    logger.info("Worker process starting...")

    worker = Worker()

    try:
        await worker.start()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Worker process failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
