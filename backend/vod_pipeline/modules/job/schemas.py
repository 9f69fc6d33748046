"""Pydantic schemas for queue messages."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from vod_pipeline.modules.job.models import TranscodeJob


class JobMessage(BaseModel):
    """Job message as produced by the upload handler."""

    model_config = ConfigDict(populate_by_name=True)

    input_path: str = Field(..., alias="inputPath", min_length=1)
    video_id: str = Field(..., alias="videoId", min_length=1)


class JobEnvelope(JobMessage):
    """Job message plus the bookkeeping the queue adds to it."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="enqueuedAt"
    )
    attempts: int = Field(0, ge=0)
    last_error: Optional[str] = Field(None, alias="lastError")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_job(self, raw: str) -> TranscodeJob:
        return TranscodeJob(
            id=self.id,
            source_file_path=self.input_path,
            video_id=self.video_id,
            enqueued_at=self.enqueued_at,
            attempts=self.attempts,
            last_error=self.last_error,
            raw=raw,
        )

    @classmethod
    def from_job(cls, job: TranscodeJob) -> "JobEnvelope":
        return cls(
            id=job.id,
            input_path=job.source_file_path,
            video_id=job.video_id,
            enqueued_at=job.enqueued_at,
            attempts=job.attempts,
            last_error=job.last_error,
        )


class QueueStats(BaseModel):
    """Number of messages in each queue state."""
    pending: int = 0
    processing: int = 0
    delayed: int = 0
    dead: int = 0
