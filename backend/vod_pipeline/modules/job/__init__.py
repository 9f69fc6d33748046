"""Job module: queue messages, the durable Redis queue and the worker pool."""

from vod_pipeline.modules.job.models import JobOutcome, TranscodeJob
from vod_pipeline.modules.job.schemas import JobEnvelope, JobMessage, QueueStats

__all__ = [
    "JobOutcome",
    "TranscodeJob",
    "JobEnvelope",
    "JobMessage",
    "QueueStats",
]
