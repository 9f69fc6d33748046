"""Video record update interface used by the state reconciler."""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vod_pipeline.modules.video.models import Video
from vod_pipeline.modules.video.repository import VideoRepository
from vod_pipeline.modules.video.schemas import VideoRecord, VideoUpdate

logger = logging.getLogger(__name__)


class VideoServiceError(Exception):
    """Base exception for video service errors."""

    pass


class VideoNotFoundError(VideoServiceError):
    """Raised when video is not found."""

    pass


class VideoRecordService:
    """Applies packaging outcomes to video records.

    Each call runs in its own short transaction, so the service is safe to
    share between concurrently running jobs. Concurrent updates of the same
    video are last-write-wins.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        """Initialize with a session factory.

        Args:
            session_factory: Callable returning a new AsyncSession
                (an ``async_sessionmaker`` instance)
        """
        self._session_factory = session_factory

    async def update(self, video_id: str, changes: VideoUpdate) -> VideoRecord:
        """Apply the explicitly set fields of ``changes`` to a video.

        Args:
            video_id: Video ID
            changes: Fields to write

        Returns:
            VideoRecord: The record after the update

        Raises:
            VideoNotFoundError: If no such video exists
            VideoServiceError: If the database rejected the update
        """
        values = changes.changes()
        try:
            async with self._session_factory() as session:
                repo = VideoRepository(session)
                video = await repo.get_by_id(video_id)
                if video is None:
                    raise VideoNotFoundError(f"Video {video_id} not found")
                video = await repo.update(video, **values)
                await session.commit()
                record = VideoRecord.model_validate(video)
        except SQLAlchemyError as e:
            raise VideoServiceError(f"Could not update video {video_id}: {e}") from e

        logger.info(
            f"Video {video_id} updated",
            extra={"video_id": video_id, "fields": sorted(values), "status": record.status.value},
        )
        return record

    async def get(self, video_id: str) -> Optional[VideoRecord]:
        """Get the current state of a video record."""
        async with self._session_factory() as session:
            video: Optional[Video] = await VideoRepository(session).get_by_id(video_id)
            return VideoRecord.model_validate(video) if video else None
