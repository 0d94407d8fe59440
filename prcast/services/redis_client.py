"""
Redis client wrapper for the pipeline job queue and run state.

This service provides Redis operations for:
- Durable job queue (list + per-worker processing list, moved atomically with BLMOVE)
- Worker heartbeats so only a dead worker's jobs are recovered
- Per-event claim checks (SET NX EX) so a run executes at most once
- Run snapshots for monitoring in-flight pipelines

Includes connection pooling and retry logic for resilience.
"""

import json
import logging
import asyncio
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple, Dict, Any
from contextlib import asynccontextmanager
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError, ConnectionError, TimeoutError

from prcast.models.pipeline import PipelineJob


logger = logging.getLogger(__name__)


class RedisConnectionError(Exception):
    """Raised when Redis connection fails after retries."""
    pass


class RedisClient:
    """
    Redis client wrapper with connection pooling and retry logic.

    Provides methods for:
    - Job queue operations (enqueue, claim next, acknowledge, recover)
    - Event claim checks
    - Run snapshot storage
    """

    JOB_QUEUE_KEY = "job_queue:pipeline_runs"
    PROCESSING_PREFIX = "job_queue:pipeline_runs:processing:{worker_id}"
    HEARTBEAT_PREFIX = "pipeline:worker:{worker_id}:heartbeat"
    HEARTBEAT_TTL_SECONDS = 30
    CLAIM_PREFIX = "pipeline:claim:{event_id}"
    RUN_STATE_PREFIX = "pipeline:run:{report_key}:state"
    RUN_STATE_TTL_SECONDS = 7 * 24 * 3600

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connection_timeout: int = 5,
        worker_id: Optional[str] = None,
    ):
        """
        Initialize Redis client.

        Args:
            redis_url: Redis connection URL. If None, will load from settings.
            max_retries: Maximum number of retry attempts for transient errors
            retry_delay: Base delay between retries (exponential backoff)
            connection_timeout: Connection timeout in seconds
            worker_id: Owner of the processing list; generated when omitted
        """
        self._redis_url = redis_url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._connection_timeout = connection_timeout
        self.worker_id = worker_id or uuid.uuid4().hex

    async def initialize(self) -> None:
        """
        Initialize Redis connection pool.

        Raises:
            RedisConnectionError: If connection fails
        """
        try:
            if not self._redis_url:
                from prcast.config import settings
                self._redis_url = settings.redis_url

            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=10,
                decode_responses=True,
                socket_timeout=None,  # BLMOVE blocks longer than a normal command
                socket_connect_timeout=self._connection_timeout
            )

            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis connection pool: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}")

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        logger.info("Redis connection pool closed")

    @property
    def processing_key(self) -> str:
        return self.PROCESSING_PREFIX.format(worker_id=self.worker_id)

    @asynccontextmanager
    async def _get_client(self):
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")

        yield self._client

    async def _retry_operation(self, operation, *args, **kwargs):
        """
        Execute Redis operation with retry logic.

        Args:
            operation: Async function to execute
            *args: Positional arguments for operation
            **kwargs: Keyword arguments for operation

        Returns:
            Operation result

        Raises:
            RedisConnectionError: If operation fails after all retries
        """
        last_error = None

        for attempt in range(self._max_retries):
            try:
                return await operation(*args, **kwargs)

            except (ConnectionError, TimeoutError) as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Redis operation failed (attempt {attempt + 1}/{self._max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Redis operation failed after {self._max_retries} attempts: {e}")

            except RedisError as e:
                logger.error(f"Redis operation failed with non-transient error: {e}")
                raise

        raise RedisConnectionError(f"Redis operation failed after {self._max_retries} retries: {last_error}")

    # ========== Job Queue Operations (List) ==========

    async def enqueue_pipeline_run(self, webhook_event_id: str, force: bool = False) -> None:
        """
        Enqueue a pipeline run for a stored webhook event.

        Args:
            webhook_event_id: Event to process
            force: Re-run even if the event already completed

        Raises:
            RedisConnectionError: If operation fails after retries
        """
        job = PipelineJob(
            webhook_event_id=webhook_event_id,
            force=force,
            enqueued_at=datetime.now(timezone.utc),
        )

        async def _enqueue():
            async with self._get_client() as client:
                await client.rpush(self.JOB_QUEUE_KEY, job.model_dump_json())
                logger.info(
                    f"Enqueued pipeline run for event {webhook_event_id}",
                    extra={"webhook_event_id": webhook_event_id, "force": force},
                )

        await self._retry_operation(_enqueue)

    async def claim_next_job(self, timeout: int = 5) -> Optional[Tuple[PipelineJob, str]]:
        """
        Move the next job onto this worker's processing list and return it.

        The job stays on the processing list until ``ack_job`` removes it, so
        a worker that dies mid-run leaves it recoverable.

        Args:
            timeout: Blocking timeout in seconds (0 for non-blocking)

        Returns:
            (job, raw job string) if available, None if the queue is empty
        """
        async def _claim():
            async with self._get_client() as client:
                if timeout > 0:
                    raw = await client.blmove(
                        self.JOB_QUEUE_KEY, self.processing_key, timeout, "LEFT", "RIGHT"
                    )
                else:
                    raw = await client.lmove(
                        self.JOB_QUEUE_KEY, self.processing_key, "LEFT", "RIGHT"
                    )

                if not raw:
                    return None

                try:
                    job = PipelineJob.model_validate_json(raw)
                except ValueError as e:
                    logger.error(f"Discarding malformed job {raw!r}: {e}")
                    await client.lrem(self.processing_key, 1, raw)
                    return None

                logger.info(
                    f"Dequeued pipeline run for event {job.webhook_event_id}",
                    extra={"webhook_event_id": job.webhook_event_id},
                )
                return job, raw

        return await self._retry_operation(_claim)

    async def ack_job(self, raw_job: str) -> None:
        """Remove a finished job from this worker's processing list."""
        async def _ack():
            async with self._get_client() as client:
                await client.lrem(self.processing_key, 1, raw_job)

        await self._retry_operation(_ack)

    async def heartbeat(self) -> None:
        """Mark this worker alive for ``HEARTBEAT_TTL_SECONDS``."""
        async def _beat():
            async with self._get_client() as client:
                await client.set(
                    self.HEARTBEAT_PREFIX.format(worker_id=self.worker_id),
                    datetime.now(timezone.utc).isoformat(),
                    ex=self.HEARTBEAT_TTL_SECONDS,
                )

        await self._retry_operation(_beat)

    async def clear_heartbeat(self) -> None:
        """Drop this worker's heartbeat on a clean shutdown."""
        async def _clear():
            async with self._get_client() as client:
                await client.delete(self.HEARTBEAT_PREFIX.format(worker_id=self.worker_id))

        await self._retry_operation(_clear)

    async def requeue_orphaned_jobs(self) -> int:
        """
        Move jobs of dead workers back onto the queue.

        A processing list is orphaned when its worker's heartbeat has
        expired. Lists of live workers, including this one, are left alone.

        Returns:
            Number of jobs re-queued
        """
        prefix = self.PROCESSING_PREFIX.format(worker_id="")

        async def _requeue():
            async with self._get_client() as client:
                count = 0
                async for key in client.scan_iter(match=f"{prefix}*"):
                    worker_id = key[len(prefix):]
                    if worker_id == self.worker_id:
                        continue
                    if await client.exists(self.HEARTBEAT_PREFIX.format(worker_id=worker_id)):
                        continue

                    while await client.lmove(key, self.JOB_QUEUE_KEY, "RIGHT", "LEFT"):
                        count += 1
                    logger.warning(f"Recovered processing list of dead worker {worker_id}")
                return count

        count = await self._retry_operation(_requeue)
        if count:
            logger.warning(f"Re-queued {count} orphaned pipeline jobs")
        return count

    async def get_queue_length(self) -> int:
        """Get number of jobs waiting in the queue."""
        async def _get_length():
            async with self._get_client() as client:
                return await client.llen(self.JOB_QUEUE_KEY)

        return await self._retry_operation(_get_length)

    # ========== Claim Checks ==========

    def _claim_key(self, event_id: str) -> str:
        return self.CLAIM_PREFIX.format(event_id=event_id)

    async def claim_event(self, event_id: str, ttl_seconds: int) -> bool:
        """
        Claim an event for processing.

        Args:
            event_id: Webhook event ID
            ttl_seconds: Claim lifetime; a crashed worker's claim expires

        Returns:
            True if this caller now owns the event, False if already claimed
        """
        async def _claim():
            async with self._get_client() as client:
                return bool(await client.set(self._claim_key(event_id), "1", nx=True, ex=ttl_seconds))

        claimed = await self._retry_operation(_claim)
        if not claimed:
            logger.info(f"Event {event_id} is already claimed", extra={"webhook_event_id": event_id})
        return claimed

    async def release_event(self, event_id: str) -> None:
        """Release an event claim so it can be retried."""
        async def _release():
            async with self._get_client() as client:
                await client.delete(self._claim_key(event_id))

        await self._retry_operation(_release)

    # ========== Run Snapshots ==========

    def _run_state_key(self, report_key: str) -> str:
        return self.RUN_STATE_PREFIX.format(report_key=report_key)

    async def save_run_snapshot(self, report_key: str, snapshot: Dict[str, Any]) -> None:
        """
        Store the live state of a run.

        Args:
            report_key: Run identifier
            snapshot: JSON-serializable snapshot
        """
        async def _save():
            async with self._get_client() as client:
                await client.set(
                    self._run_state_key(report_key),
                    json.dumps(snapshot, default=str),
                    ex=self.RUN_STATE_TTL_SECONDS,
                )

        await self._retry_operation(_save)

    async def get_run_snapshot(self, report_key: str) -> Optional[Dict[str, Any]]:
        """Get the live state of a run, or None if unknown or expired."""
        async def _get():
            async with self._get_client() as client:
                raw = await client.get(self._run_state_key(report_key))
                return json.loads(raw) if raw else None

        return await self._retry_operation(_get)


_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """
    Get or create the global Redis client instance.

    Returns:
        RedisClient instance
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
