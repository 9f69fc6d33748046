"""Tests for writing job outcomes to video records."""

import os

import pytest

from vod_pipeline.modules.transcoding.exceptions import FinalizeFailed
from vod_pipeline.modules.transcoding.reconciler import StateReconciler, remove_work_dir
from vod_pipeline.modules.transcoding.schemas import FinalizeOutcome
from vod_pipeline.modules.video.models import VideoStatus


@pytest.fixture
def work_dir(tmp_path) -> str:
    path = tmp_path / "v1-job"
    (path / "stream_0").mkdir(parents=True)
    (path / "stream_0" / "playlist.m3u8").write_text("#EXTM3U\n")
    return str(path)


@pytest.mark.asyncio
async def test_success_sets_ready_with_urls(fakes, work_dir) -> None:
    records = fakes.VideoRecords("v1")
    outcome = FinalizeOutcome.succeeded(
        "https://cdn.example.com/videos/v1/hls/master.m3u8",
        "https://cdn.example.com/videos/v1/thumbnails/thumbnail.png",
    )

    record = await StateReconciler(records).finalize("v1", outcome, work_dir)

    assert record.status == VideoStatus.READY
    assert record.video_url == "https://cdn.example.com/videos/v1/hls/master.m3u8"
    assert record.thumbnail_url == "https://cdn.example.com/videos/v1/thumbnails/thumbnail.png"
    assert not os.path.exists(work_dir)


@pytest.mark.asyncio
async def test_failure_sets_failed_and_clears_urls(fakes, work_dir) -> None:
    records = fakes.VideoRecords("v1")
    records.records["v1"] = records.records["v1"].model_copy(
        update={"video_url": "https://old/master.m3u8", "thumbnail_url": "https://old/t.png"}
    )

    record = await StateReconciler(records).finalize("v1", FinalizeOutcome.failed("boom"), work_dir)

    assert record.status == VideoStatus.FAILED
    assert record.video_url == ""
    assert record.thumbnail_url is None
    assert not os.path.exists(work_dir)


@pytest.mark.asyncio
async def test_finalize_is_idempotent(fakes) -> None:
    records = fakes.VideoRecords("v1")
    reconciler = StateReconciler(records)
    outcome = FinalizeOutcome.succeeded("https://cdn/master.m3u8", None)

    first = await reconciler.finalize("v1", outcome)
    second = await reconciler.finalize("v1", outcome)

    assert first.model_dump(exclude={"version"}) == \
        second.model_dump(exclude={"version"})
    assert records.updates[0] == records.updates[1]


@pytest.mark.asyncio
async def test_store_failure_raises_and_still_removes_work_dir(fakes, work_dir) -> None:
    records = fakes.VideoRecords("v1", fail=True)

    with pytest.raises(FinalizeFailed) as exc_info:
        await StateReconciler(records).finalize("v1", FinalizeOutcome.failed("boom"), work_dir)

    assert exc_info.value.video_id == "v1"
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert not os.path.exists(work_dir)


@pytest.mark.asyncio
async def test_unknown_video_raises_finalize_failed(fakes) -> None:
    with pytest.raises(FinalizeFailed, match="v404"):
        await StateReconciler(fakes.VideoRecords("v1")).finalize(
            "v404", FinalizeOutcome.failed("boom")
        )


def test_remove_work_dir_tolerates_missing(tmp_path) -> None:
    assert remove_work_dir(None) is False
    assert remove_work_dir(str(tmp_path / "gone")) is False
    (tmp_path / "here").mkdir()
    assert remove_work_dir(str(tmp_path / "here")) is True
