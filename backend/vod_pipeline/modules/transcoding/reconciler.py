"""State reconciliation: reflect a job's outcome in the video record.

Success sets READY with the published URLs; failure sets FAILED and clears
the URLs. Either way the local working directory is removed afterwards.
"""

import logging
import shutil
from typing import Optional, Protocol

from vod_pipeline.modules.transcoding.exceptions import FinalizeFailed
from vod_pipeline.modules.transcoding.schemas import FinalizeOutcome
from vod_pipeline.modules.video.models import VideoStatus
from vod_pipeline.modules.video.schemas import VideoRecord, VideoUpdate

logger = logging.getLogger(__name__)


class VideoRecordUpdater(Protocol):
    """The part of VideoRecordService the reconciler needs."""

    async def update(self, video_id: str, changes: VideoUpdate) -> VideoRecord:
        ...


def remove_work_dir(work_dir: Optional[str]) -> bool:
    """Delete a job's working directory. Failures are logged, never raised."""
    if not work_dir:
        return False
    try:
        shutil.rmtree(work_dir)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Could not remove working directory {work_dir}: {e}")
        return False
    logger.debug(f"Removed working directory {work_dir}")
    return True


class StateReconciler:
    """Writes terminal job outcomes to the video record store."""

    def __init__(self, records: VideoRecordUpdater):
        self.records = records

    @staticmethod
    def build_update(outcome: FinalizeOutcome) -> VideoUpdate:
        if outcome.success:
            return VideoUpdate(
                status=VideoStatus.READY,
                video_url=outcome.video_url,
                thumbnail_url=outcome.thumbnail_url,
            )
        return VideoUpdate(
            status=VideoStatus.FAILED,
            video_url="",
            thumbnail_url=None,
        )

    async def finalize(
        self,
        video_id: str,
        outcome: FinalizeOutcome,
        work_dir: Optional[str] = None,
    ) -> VideoRecord:
        """Update the record for a finished job and drop its working directory.

        Running it twice with the same outcome leaves the record in the same state.

        Args:
            video_id: Video the job produced
            outcome: Success with URLs, or failure
            work_dir: Job working directory to delete (if any)

        Returns:
            VideoRecord: The updated record

        Raises:
            FinalizeFailed: If the record update failed
        """
        try:
            record = await self.records.update(video_id, self.build_update(outcome))
        except Exception as e:
            raise FinalizeFailed(
                f"Could not mark video {video_id} "
                f"{'READY' if outcome.success else 'FAILED'}: {e}",
                video_id=video_id,
                work_dir=work_dir,
            ) from e
        finally:
            remove_work_dir(work_dir)

        if outcome.success:
            logger.info(f"Video {video_id} is READY: {outcome.video_url}")
        else:
            logger.info(f"Video {video_id} marked FAILED: {outcome.error}")
        return record
