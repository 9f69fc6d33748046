"""Durable at-least-once job queue on Redis.

Layout for a queue named ``video-queue``::

    video-queue:pending     list, LPUSH to enqueue, consumed from the right
    video-queue:processing  list of claimed messages
    video-queue:leases      zset, claimed message -> lease deadline
    video-queue:delayed     zset, retry message -> due time
    video-queue:dead        list of messages that ran out of attempts

A claim moves a message from pending to processing and records its lease in
one server-side script, so a crash never loses it: once the lease expires,
``recover_expired`` redelivers it.
"""

import asyncio
import json
import logging
import time
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from vod_pipeline.core.config import get_settings
from vod_pipeline.core.metrics import JOBS_REQUEUED_TOTAL, update_queue_depth
from vod_pipeline.modules.job.models import JobOutcome, TranscodeJob
from vod_pipeline.modules.job.schemas import JobEnvelope, JobMessage, QueueStats
from vod_pipeline.modules.job.tasks import RetryConfig

logger = logging.getLogger(__name__)

# KEYS: pending, processing, leases. ARGV: lease deadline.
CLAIM_SCRIPT = """
local raw = redis.call("LMOVE", KEYS[1], KEYS[2], "RIGHT", "LEFT")
if raw then
    redis.call("ZADD", KEYS[3], ARGV[1], raw)
end
return raw
"""

DEFAULT_POLL_INTERVAL = 0.25


class RedisJobQueue:
    """Reliable queue of packaging jobs.

    Safe to share between concurrent jobs; every operation is a handful of
    independent Redis commands.
    """

    def __init__(
        self,
        client: redis.Redis,
        name: str = "video-queue",
        lease_seconds: int = 900,
        retry_config: Optional[RetryConfig] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.client = client
        self.name = name
        self.lease_seconds = lease_seconds
        self.retry_config = retry_config or RetryConfig()
        self.poll_interval = poll_interval

        self.pending_key = f"{name}:pending"
        self.processing_key = f"{name}:processing"
        self.leases_key = f"{name}:leases"
        self.delayed_key = f"{name}:delayed"
        self.dead_key = f"{name}:dead"

    @classmethod
    def from_settings(cls, client: redis.Redis, settings=None) -> "RedisJobQueue":
        settings = settings or get_settings()
        return cls(
            client,
            name=settings.JOB_QUEUE_NAME,
            lease_seconds=settings.JOB_LEASE_SECONDS,
            retry_config=RetryConfig.from_settings(settings),
        )

    # ==================== Producer ====================

    async def enqueue(self, message: JobMessage) -> TranscodeJob:
        """Add a job to the pending list.

        Args:
            message: Source path and video id

        Returns:
            TranscodeJob: The queued job
        """
        envelope = JobEnvelope(input_path=message.input_path, video_id=message.video_id)
        raw = envelope.to_json()
        await self.client.lpush(self.pending_key, raw)
        logger.info(f"Enqueued job {envelope.id} for video {envelope.video_id}")
        return envelope.to_job(raw)

    # ==================== Consumer ====================

    async def claim(self, timeout: float = 5.0) -> Optional[TranscodeJob]:
        """Claim the next job, waiting up to ``timeout`` seconds.

        Returns:
            Optional[TranscodeJob]: The claimed job, or None if none arrived
        """
        deadline = time.monotonic() + timeout
        while True:
            await self.promote_due()
            raw = await self._claim_next()
            if raw is not None:
                break
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

        try:
            envelope = JobEnvelope.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(f"Dropping malformed job message to dead list: {e}")
            await self._remove_claim(raw)
            await self.client.lpush(self.dead_key, raw)
            return None

        return envelope.to_job(raw)

    async def extend_lease(self, job: TranscodeJob) -> bool:
        """Push the lease deadline of a claimed job forward.

        Returns:
            bool: False if the job no longer holds a lease
        """
        changed = await self.client.zadd(
            self.leases_key,
            {job.raw: time.time() + self.lease_seconds},
            xx=True,
            ch=True,
        )
        return bool(changed)

    async def ack(self, job: TranscodeJob) -> None:
        """Remove a finished job from the queue."""
        await self._remove_claim(job.raw)

    async def nack(self, job: TranscodeJob, error: str) -> JobOutcome:
        """Record a failed attempt and schedule a retry or dead-letter the job.

        Args:
            job: The claimed job
            error: Why the attempt failed

        Returns:
            JobOutcome.RETRY or JobOutcome.DLQ
        """
        await self._remove_claim(job.raw)
        return await self._requeue(job, error)

    async def release(self, job: TranscodeJob) -> None:
        """Put a claimed but unstarted job back at the front of the queue.

        The attempt is not counted.
        """
        await self._remove_claim(job.raw)
        await self.client.rpush(self.pending_key, job.raw)
        JOBS_REQUEUED_TOTAL.labels(reason="released").inc()
        logger.info(f"Released job {job.id} back to the queue")

    # ==================== Housekeeping ====================

    async def promote_due(self) -> int:
        """Move retries whose delay has passed back to pending."""
        due = await self.client.zrangebyscore(self.delayed_key, "-inf", time.time())
        promoted = 0
        for raw in due:
            # Only the worker that removes it pushes it
            if await self.client.zrem(self.delayed_key, raw):
                await self.client.lpush(self.pending_key, raw)
                promoted += 1
        return promoted

    async def recover_expired(self) -> int:
        """Redeliver jobs whose lease expired. The lost attempt is counted.

        Returns:
            int: Number of jobs recovered
        """
        expired = await self.client.zrangebyscore(self.leases_key, "-inf", time.time())
        recovered = 0
        for raw in expired:
            if not await self.client.zrem(self.leases_key, raw):
                continue
            await self.client.lrem(self.processing_key, 1, raw)
            try:
                job = JobEnvelope.model_validate_json(raw).to_job(raw)
            except PydanticValidationError:
                await self.client.lpush(self.dead_key, raw)
                continue
            outcome = await self._requeue(job, "lease expired")
            JOBS_REQUEUED_TOTAL.labels(reason="lease_expired").inc()
            logger.warning(f"Job {job.id} lease expired, outcome: {outcome.value}")
            recovered += 1
        return recovered

    async def stats(self) -> QueueStats:
        """Count messages per state and update the queue gauges."""
        stats = QueueStats(
            pending=await self.client.llen(self.pending_key),
            processing=await self.client.llen(self.processing_key),
            delayed=await self.client.zcard(self.delayed_key),
            dead=await self.client.llen(self.dead_key),
        )
        update_queue_depth(stats.pending, stats.processing, stats.delayed, stats.dead)
        return stats

    async def dead_letters(self, limit: int = 100) -> list[dict]:
        """Peek at dead-lettered messages, newest first."""
        raws = await self.client.lrange(self.dead_key, 0, limit - 1)
        return [json.loads(raw) for raw in raws]

    # ==================== Internals ====================

    async def _claim_next(self) -> Optional[str]:
        """Move one message to processing together with its lease."""
        return await self.client.eval(
            CLAIM_SCRIPT,
            3,
            self.pending_key,
            self.processing_key,
            self.leases_key,
            time.time() + self.lease_seconds,
        )

    async def _remove_claim(self, raw: str) -> None:
        await self.client.lrem(self.processing_key, 1, raw)
        await self.client.zrem(self.leases_key, raw)

    async def _requeue(self, job: TranscodeJob, error: str) -> JobOutcome:
        envelope = JobEnvelope.from_job(job)
        envelope.attempts = job.attempts + 1
        envelope.last_error = error[:2000]
        raw = envelope.to_json()

        if self.retry_config.should_retry(envelope.attempts):
            delay = self.retry_config.calculate_delay(envelope.attempts)
            await self.client.zadd(self.delayed_key, {raw: time.time() + delay})
            JOBS_REQUEUED_TOTAL.labels(reason="retry").inc()
            logger.info(
                f"Job {job.id} attempt {envelope.attempts} failed, retrying in {delay:.1f}s"
            )
            return JobOutcome.RETRY

        await self.client.lpush(self.dead_key, raw)
        logger.error(
            f"Job {job.id} for video {job.video_id} moved to dead letters "
            f"after {envelope.attempts} attempts: {error}"
        )
        return JobOutcome.DLQ
