"""Celery application configuration.

The worker pool consumes the Redis job queue directly; Celery only drives
periodic housekeeping such as lease recovery.
"""

from celery import Celery

from vod_pipeline.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "vod_pipeline",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "recover-expired-jobs": {
            "task": "job.recover_expired_jobs",
            "schedule": 60.0,
        },
    },
)

celery_app.autodiscover_tasks(["vod_pipeline.modules.job"])
