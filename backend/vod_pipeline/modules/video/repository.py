"""Video repository for database operations."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vod_pipeline.modules.video.models import Video


class VideoRepository:
    """Repository for Video reads and updates."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_by_id(self, video_id: str, for_update: bool = False) -> Optional[Video]:
        """Get video by ID.

        Args:
            video_id: Video ID
            for_update: Lock the row until the transaction ends

        Returns:
            Optional[Video]: Video if found, None otherwise
        """
        query = select(Video).where(Video.id == video_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def update(self, video: Video, **kwargs) -> Video:
        """Update video attributes and bump its version.

        Args:
            video: Video instance to update
            **kwargs: Attributes to update

        Returns:
            Video: Updated video instance
        """
        for key, value in kwargs.items():
            if hasattr(video, key):
                setattr(video, key, value)
        video.version = (video.version or 0) + 1
        await self.session.flush()
        return video
