"""Retry policy and Celery tasks for the packaging queue."""

import asyncio
import logging
import math

from vod_pipeline.core.celery_app import celery_app

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: The current attempt number (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)

    def should_retry(self, attempts: int) -> bool:
        """Whether a job that has failed ``attempts`` times gets another delivery."""
        return attempts < self.max_attempts

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.JOB_MAX_ATTEMPTS,
            initial_delay=settings.JOB_RETRY_INITIAL_DELAY,
            max_delay=settings.JOB_RETRY_MAX_DELAY,
            backoff_multiplier=settings.JOB_RETRY_BACKOFF,
        )


@celery_app.task(bind=True, name="job.recover_expired_jobs")
def recover_expired_jobs_task(self) -> dict:
    """Requeue jobs whose worker stopped heartbeating.

    Scheduled by Celery beat; see ``core.celery_app``.
    """
    return asyncio.run(_recover_expired_jobs_async())


async def _recover_expired_jobs_async() -> dict:
    from vod_pipeline.core.redis import create_redis
    from vod_pipeline.modules.job.queue import RedisJobQueue

    client = create_redis()
    try:
        queue = RedisJobQueue.from_settings(client)
        recovered = await queue.recover_expired()
        stats = await queue.stats()
    finally:
        await client.aclose()

    if recovered:
        logger.info(f"Recovered {recovered} job(s) with expired leases")
    return {"recovered": recovered, "stats": stats.model_dump()}


async def enqueue_transcode_job(input_path: str, video_id: str) -> str:
    """Enqueue a packaging job for an uploaded file.

    Producer side helper for the upload handler. The video record must
    already exist with status PROCESSING.

    Args:
        input_path: Path of the uploaded source file, readable by the workers
        video_id: Video the package is for

    Returns:
        The job id
    """
    from vod_pipeline.core.redis import get_redis
    from vod_pipeline.modules.job.queue import RedisJobQueue
    from vod_pipeline.modules.job.schemas import JobMessage

    queue = RedisJobQueue.from_settings(await get_redis())
    job = await queue.enqueue(JobMessage(input_path=input_path, video_id=video_id))
    return job.id
