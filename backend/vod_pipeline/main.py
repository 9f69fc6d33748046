"""Packaging worker entry point.

Run with ``python -m vod_pipeline.main`` or the ``vod-pipeline-worker``
console script. Exits 0 after a graceful shutdown (SIGINT/SIGTERM, in-flight
jobs drained) and 1 if start-up fails.
"""

import asyncio
import logging
import signal
import sys

from vod_pipeline.core.config import Settings, get_settings
from vod_pipeline.core.database import async_session_maker, dispose_engine
from vod_pipeline.core.logging import setup_logging
from vod_pipeline.core.metrics import set_app_info, start_metrics_server
from vod_pipeline.core.redis import create_redis
from vod_pipeline.core.storage import get_storage
from vod_pipeline.core.tracing import setup_tracing, shutdown_tracing
from vod_pipeline.modules.job.queue import RedisJobQueue
from vod_pipeline.modules.job.worker import JobWorkerPool
from vod_pipeline.modules.transcoding.schemas import PipelineConfig
from vod_pipeline.modules.transcoding.service import TranscodingPipeline
from vod_pipeline.modules.video.service import VideoRecordService

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, pool: JobWorkerPool) -> list:
    installed = []
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, pool.stop)
            installed.append(sig)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still ends the process
            logger.warning(f"Cannot install handler for {sig.name} on this platform")
    return installed


async def run_worker(settings: Settings) -> None:
    """Build every collaborator, run the pool until stopped, then clean up.

    Args:
        settings: Application settings
    """
    config = PipelineConfig.from_settings(settings)
    redis_client = create_redis(settings.REDIS_URL)
    try:
        await redis_client.ping()

        queue = RedisJobQueue.from_settings(redis_client, settings)
        records = VideoRecordService(async_session_maker())
        pipeline = TranscodingPipeline.create(config, get_storage(settings), records)
        pool = JobWorkerPool(
            queue,
            pipeline,
            concurrency=config.concurrency,
            poll_timeout=config.poll_timeout,
            lease_seconds=config.lease_seconds,
        )

        recovered = await queue.recover_expired()
        if recovered:
            logger.info(f"Recovered {recovered} job(s) left behind by a previous worker")
        await queue.stats()

        loop = asyncio.get_running_loop()
        installed = _install_signal_handlers(loop, pool)
        try:
            await pool.run()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
    finally:
        await redis_client.aclose()
        await dispose_engine()


def main() -> int:
    """Console entry point. Returns the process exit code."""
    try:
        settings = get_settings()
    except Exception:
        logging.basicConfig(level=logging.INFO)
        logger.exception("Invalid configuration")
        return 1

    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    setup_tracing(
        service_name="vod-pipeline-worker",
        service_version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        otlp_endpoint=settings.OTLP_ENDPOINT,
    )
    set_app_info(settings.VERSION, settings.ENVIRONMENT)

    try:
        if start_metrics_server(settings.METRICS_PORT):
            logger.info(f"Metrics available on port {settings.METRICS_PORT}")
        asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception:
        logger.exception("Worker failed")
        return 1
    finally:
        shutdown_tracing()

    logger.info("Worker exited cleanly")
    return 0


if __name__ == "__main__":
    sys.exit(main())
