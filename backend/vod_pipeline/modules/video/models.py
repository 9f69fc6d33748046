"""Video record model.

Mirrors the columns of the CMS ``videos`` table that the packaging worker
reads and writes.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Integer, String, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from vod_pipeline.core.database import Base


class VideoStatus(str, Enum):
    """Lifecycle status of a video's streaming package."""

    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


class Video(Base):
    """A video whose HLS package is produced by this worker."""

    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    video_url: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VideoStatus.PROCESSING.value, index=True
    )

    # Scrubbing preview track
    sprites: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    vtt_files: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)

    # Bumped on every update by this worker
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Video(id={self.id}, status={self.status}, version={self.version})>"
