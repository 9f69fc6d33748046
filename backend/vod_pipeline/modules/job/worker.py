"""Job worker pool.

Claims jobs from the durable queue and runs up to ``concurrency`` of them at
once. A stop request ends intake; jobs already running are allowed to
finish, since cancelling a transcode or upload midway would leave
half-written storage behind.
"""

import asyncio
import logging
import time
from typing import Optional, Protocol

from vod_pipeline.core.logging import clear_correlation_id, log_error, set_correlation_id
from vod_pipeline.core.metrics import WORKER_ACTIVE_JOBS, WORKER_MAX_CAPACITY, record_job
from vod_pipeline.modules.job.models import JobOutcome, TranscodeJob

logger = logging.getLogger(__name__)

CLAIM_ERROR_BACKOFF_SECONDS = 1.0


class JobQueue(Protocol):
    """Queue operations used by the pool."""

    async def claim(self, timeout: float = 5.0) -> Optional[TranscodeJob]:
        ...

    async def extend_lease(self, job: TranscodeJob) -> bool:
        ...

    async def ack(self, job: TranscodeJob) -> None:
        ...

    async def nack(self, job: TranscodeJob, error: str) -> JobOutcome:
        ...

    async def release(self, job: TranscodeJob) -> None:
        ...


class JobHandler(Protocol):
    """Per-job pipeline.

    ``handle`` processes a job; when it raises, ``fail`` must bring the
    job's video into its failed state before the job counts as handled.
    """

    async def handle(self, job: TranscodeJob) -> None:
        ...

    async def fail(self, job: TranscodeJob, error: Exception) -> None:
        ...


class JobWorkerPool:
    """Bounded-concurrency consumer of the job queue."""

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int = 4,
        poll_timeout: float = 5.0,
        lease_seconds: float = 900,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency
        self.poll_timeout = poll_timeout
        self.heartbeat_interval = max(1.0, lease_seconds / 3)
        self._stop_event = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Stop taking new jobs. ``run`` returns once in-flight jobs finish."""
        if not self._stop_event.is_set():
            logger.info(f"Shutdown requested, waiting for {self.in_flight} in-flight job(s)")
        self._stop_event.set()

    async def run(self) -> None:
        """Process jobs until ``stop`` is called, then drain."""
        WORKER_MAX_CAPACITY.set(self.concurrency)
        logger.info(f"Worker pool started with concurrency {self.concurrency}")
        stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        try:
            while not self.stopping:
                if self.in_flight >= self.concurrency:
                    await asyncio.wait(
                        {*self._in_flight, stop_waiter},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    continue

                job = await self._claim(stop_waiter)
                if job is None:
                    continue
                if self.stopping:
                    await self.queue.release(job)
                    break

                task = asyncio.create_task(self._process(job), name=f"job-{job.id}")
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
        finally:
            stop_waiter.cancel()
            await self._drain()
        logger.info("Worker pool stopped")

    async def _claim(self, stop_waiter: asyncio.Future) -> Optional[TranscodeJob]:
        # A claim is never cancelled midway; the message could be lost
        try:
            return await self.queue.claim(timeout=self.poll_timeout)
        except Exception as e:
            log_error(logger, f"Failed to claim a job: {e}", e)
            await asyncio.wait({stop_waiter}, timeout=CLAIM_ERROR_BACKOFF_SECONDS)
            return None

    async def _drain(self) -> None:
        if self._in_flight:
            logger.info(f"Draining {self.in_flight} in-flight job(s)")
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def _process(self, job: TranscodeJob) -> None:
        set_correlation_id(job.id)
        WORKER_ACTIVE_JOBS.inc()
        heartbeat = asyncio.create_task(self._heartbeat(job))
        started = time.monotonic()
        status = "completed"
        logger.info(
            f"Processing job {job.id} for video {job.video_id} (attempt {job.attempts + 1})",
            extra={"video_id": job.video_id, "source": job.source_file_path},
        )
        try:
            try:
                await self.handler.handle(job)
            except Exception as e:
                status = "failed"
                log_error(logger, f"Job {job.id} for video {job.video_id} failed: {e}", e)
                try:
                    await self.handler.fail(job, e)
                except Exception as fail_error:
                    status = "requeued"
                    log_error(
                        logger,
                        f"Could not mark video {job.video_id} failed, returning job to the queue",
                        fail_error,
                    )
                    await self._nack(job, f"{e}; marking failed: {fail_error}")
                    return
            await self._ack(job)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            WORKER_ACTIVE_JOBS.dec()
            record_job(status, time.monotonic() - started)
            logger.info(f"Job {job.id} finished: {status}")
            clear_correlation_id()

    async def _heartbeat(self, job: TranscodeJob) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                if not await self.queue.extend_lease(job):
                    logger.warning(f"Job {job.id} lost its lease; it may be redelivered")
            except Exception as e:
                logger.warning(f"Lease heartbeat for job {job.id} failed: {e}")

    async def _ack(self, job: TranscodeJob) -> None:
        try:
            await self.queue.ack(job)
        except Exception as e:
            # Lease expiry will redeliver it; the pipeline is idempotent
            log_error(logger, f"Failed to ack job {job.id}", e)

    async def _nack(self, job: TranscodeJob, error: str) -> None:
        try:
            await self.queue.nack(job, error)
        except Exception as e:
            log_error(logger, f"Failed to requeue job {job.id}", e)
