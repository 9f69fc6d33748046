"""Pydantic schemas for video record updates."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from vod_pipeline.modules.video.models import VideoStatus


class VideoUpdate(BaseModel):
    """Fields the worker may change on a video record.

    Only fields that were explicitly set are written, so a sprite update
    leaves the status and URLs alone.
    """

    model_config = ConfigDict(populate_by_name=True)

    video_url: Optional[str] = Field(None, alias="videoUrl")
    thumbnail_url: Optional[str] = Field(None, alias="thumbnailUrl")
    status: Optional[VideoStatus] = None
    sprites: Optional[list[str]] = None
    vtt_files: Optional[list[str]] = Field(None, alias="vttFiles")

    def changes(self) -> dict:
        """Column values to write, keyed by attribute name."""
        data = self.model_dump(exclude_unset=True)
        if "status" in data and data["status"] is not None:
            data["status"] = VideoStatus(data["status"]).value
        return data


class VideoRecord(BaseModel):
    """Read view of a video record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    video_url: str
    thumbnail_url: Optional[str] = None
    status: VideoStatus
    sprites: Optional[list[str]] = None
    vtt_files: Optional[list[str]] = None
    version: int = 1
