"""Tests for video record updates."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, settings, strategies as st
from sqlalchemy.exc import SQLAlchemyError

from vod_pipeline.modules.video.models import Video, VideoStatus
from vod_pipeline.modules.video.schemas import VideoUpdate
from vod_pipeline.modules.video.service import (
    VideoNotFoundError,
    VideoRecordService,
    VideoServiceError,
)


def _session_factory(video=None):
    session = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = video
    session.execute.return_value = result

    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    factory.return_value.__aexit__.return_value = False
    return factory, session


def _video(**overrides) -> Video:
    values = {
        "id": "v1",
        "video_url": "",
        "thumbnail_url": None,
        "status": VideoStatus.PROCESSING.value,
        "version": 1,
    }
    values.update(overrides)
    return Video(**values)


class TestVideoUpdate:
    def test_only_set_fields_are_written(self) -> None:
        changes = VideoUpdate(sprites=["s.jpg"], vtt_files=["s.vtt"]).changes()
        assert changes == {"sprites": ["s.jpg"], "vtt_files": ["s.vtt"]}

    def test_explicit_none_clears_a_field(self) -> None:
        changes = VideoUpdate(status=VideoStatus.FAILED, video_url="", thumbnail_url=None).changes()
        assert changes == {"status": "FAILED", "video_url": "", "thumbnail_url": None}

    def test_accepts_camel_case_aliases(self) -> None:
        update = VideoUpdate.model_validate({"videoUrl": "https://cdn/m.m3u8", "status": "READY"})
        assert update.changes() == {"video_url": "https://cdn/m.m3u8", "status": "READY"}

    @given(
        status=st.sampled_from(list(VideoStatus)),
        url=st.text(min_size=0, max_size=50),
    )
    @settings(max_examples=50)
    def test_status_is_always_written_as_its_value(self, status: VideoStatus, url: str) -> None:
        changes = VideoUpdate(status=status, video_url=url).changes()
        assert changes["status"] == status.value
        assert isinstance(changes["status"], str)


class TestVideoRecordService:
    @pytest.mark.asyncio
    async def test_update_applies_changes_and_commits(self) -> None:
        video = _video()
        factory, session = _session_factory(video)
        service = VideoRecordService(factory)

        record = await service.update(
            "v1",
            VideoUpdate(status=VideoStatus.READY, video_url="https://cdn/m.m3u8", thumbnail_url="https://cdn/t.png"),
        )

        assert record.status == VideoStatus.READY
        assert record.video_url == "https://cdn/m.m3u8"
        assert record.thumbnail_url == "https://cdn/t.png"
        assert record.version == 2
        session.flush.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_leaves_unset_fields_alone(self) -> None:
        video = _video(status=VideoStatus.READY.value, video_url="https://cdn/m.m3u8")
        factory, _ = _session_factory(video)

        record = await VideoRecordService(factory).update("v1", VideoUpdate(sprites=["https://cdn/s.jpg"]))

        assert record.status == VideoStatus.READY
        assert record.video_url == "https://cdn/m.m3u8"
        assert record.sprites == ["https://cdn/s.jpg"]

    @pytest.mark.asyncio
    async def test_update_missing_video(self) -> None:
        factory, session = _session_factory(None)

        with pytest.raises(VideoNotFoundError):
            await VideoRecordService(factory).update("v404", VideoUpdate(status=VideoStatus.FAILED))
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self) -> None:
        factory, session = _session_factory(_video())
        session.commit.side_effect = SQLAlchemyError("connection reset")

        with pytest.raises(VideoServiceError, match="connection reset"):
            await VideoRecordService(factory).update("v1", VideoUpdate(status=VideoStatus.FAILED))

    @pytest.mark.asyncio
    async def test_get(self) -> None:
        factory, _ = _session_factory(_video())

        record = await VideoRecordService(factory).get("v1")

        assert record.id == "v1"
        assert record.status == VideoStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_get_missing(self) -> None:
        factory, _ = _session_factory(None)
        assert await VideoRecordService(factory).get("v404") is None
