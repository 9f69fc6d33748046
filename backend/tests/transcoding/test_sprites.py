"""Tests for sprite sheet and WebVTT generation."""

from dataclasses import replace

import pytest
from PIL import Image

from vod_pipeline.modules.transcoding.exceptions import SpriteGenerationError
from vod_pipeline.modules.transcoding.process import ProcessResult
from vod_pipeline.modules.transcoding.sprites import (
    SpriteGenerator,
    build_sprite_command,
    build_vtt,
    format_timestamp,
    plan_sheets,
)


class SheetRunner:
    """Writes a blank JPEG of the tiled sheet size for every sprite command."""

    def __init__(self, tile_size=(320, 180), columns=5, fail=False):
        self.tile_size = tile_size
        self.columns = columns
        self.fail = fail
        self.calls = []

    async def run(self, args, *, on_stderr_line=None, timeout=None):
        self.calls.append(list(args))
        if self.fail:
            return ProcessResult(returncode=1, diagnostics=["Invalid data found"])
        rows = int(args[args.index("-vf") + 1].rsplit("x", 1)[1])
        width, height = self.tile_size
        Image.new("RGB", (width * self.columns, height * rows)).save(args[-1], "JPEG")
        return ProcessResult(returncode=0)


@pytest.mark.parametrize("seconds,expected", [
    (0, "00:00:00.000"),
    (10.5, "00:00:10.500"),
    (3725.25, "01:02:05.250"),
])
def test_format_timestamp(seconds, expected) -> None:
    assert format_timestamp(seconds) == expected


def test_plan_sheets_splits_by_max_thumbs() -> None:
    assert plan_sheets(250, 10, 10) == [(0.0, 10), (100.0, 10), (200.0, 5)]
    assert plan_sheets(3, 10, 100) == [(0.0, 1)]


def test_build_vtt_positions_tiles() -> None:
    vtt = build_vtt("sprite_v1_0.jpg", 0, 7, 10, 320, 180, 5, duration=65)
    lines = vtt.split("\n")

    assert lines[0] == "WEBVTT"
    assert "00:00:00.000 --> 00:00:10.000" in lines
    assert "sprite_v1_0.jpg#xywh=0,0,320,180" in lines
    assert "sprite_v1_0.jpg#xywh=320,180,320,180" in lines
    # last cue is clipped to the source duration
    assert "00:01:00.000 --> 00:01:05.000" in lines


def test_build_sprite_command() -> None:
    cmd = build_sprite_command("ffmpeg", "/in.mp4", "/out/s.jpg", 100.0, 12, 10, 320, 5)
    assert cmd[cmd.index("-ss") + 1] == "100"
    assert cmd[cmd.index("-t") + 1] == "120"
    assert cmd[cmd.index("-vf") + 1] == "fps=1/10,scale=320:-1,tile=5x3"
    assert cmd[-1] == "/out/s.jpg"


@pytest.mark.asyncio
async def test_generate_uploads_sheets_and_tracks(pipeline_config, source_file, fakes) -> None:
    config = replace(pipeline_config, sprites_enabled=True, sprite_interval=10, sprite_max_thumbs=10)
    storage = fakes.Storage()
    runner = SheetRunner()

    track = await SpriteGenerator(config, runner, storage).generate(source_file, "v1", 150.0)

    assert len(runner.calls) == 2
    assert track.sprite_urls == [
        "https://cdn.example.com/videos/v1/sprites/sprite_v1_0.jpg",
        "https://cdn.example.com/videos/v1/sprites/sprite_v1_1.jpg",
    ]
    assert len(track.vtt_urls) == 2
    vtt = storage.objects["videos/v1/sprites/sprite_v1_1.vtt"].decode()
    assert vtt.startswith("WEBVTT")
    assert "00:01:40.000 --> 00:01:50.000" in vtt
    assert "sprite_v1_1.jpg#xywh=0,0,320,180" in vtt


@pytest.mark.asyncio
async def test_generate_skips_without_duration(pipeline_config, source_file, fakes) -> None:
    config = replace(pipeline_config, sprites_enabled=True)
    runner = SheetRunner()

    assert await SpriteGenerator(config, runner, fakes.Storage()).generate(source_file, "v1", None) is None
    assert runner.calls == []


@pytest.mark.asyncio
async def test_generate_raises_on_ffmpeg_failure(pipeline_config, source_file, fakes) -> None:
    config = replace(pipeline_config, sprites_enabled=True)

    with pytest.raises(SpriteGenerationError) as exc_info:
        await SpriteGenerator(config, SheetRunner(fail=True), fakes.Storage()).generate(source_file, "v1", 30.0)
    assert exc_info.value.diagnostics == ["Invalid data found"]
