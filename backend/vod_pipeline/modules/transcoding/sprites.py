"""Sprite sheets and WebVTT thumbnail tracks for scrubbing previews.

One tile is taken every ``interval`` seconds and packed into JPEG sheets of
at most ``max_thumbs`` tiles. Each sheet has a WebVTT file whose cues point
at a tile with a ``#xywh=`` media fragment.
"""

import asyncio
import logging
import math
import os
import tempfile
from dataclasses import dataclass, field
from typing import Optional

from PIL import Image

from vod_pipeline.core.storage import AsyncStorage
from vod_pipeline.modules.transcoding.exceptions import SpriteGenerationError
from vod_pipeline.modules.transcoding.process import ProcessRunner
from vod_pipeline.modules.transcoding.schemas import PipelineConfig
from vod_pipeline.modules.transcoding.storage import content_type_for, video_prefix

logger = logging.getLogger(__name__)


def format_timestamp(seconds: float) -> str:
    """Format seconds as a WebVTT timestamp (HH:MM:SS.mmm)."""
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def build_vtt(
    image_name: str,
    start: float,
    tile_count: int,
    interval: float,
    tile_width: int,
    tile_height: int,
    columns: int,
    duration: Optional[float] = None,
) -> str:
    """Build the WebVTT document for one sprite sheet.

    Args:
        image_name: Sheet file name the cues refer to
        start: Source time of the first tile
        tile_count: Number of tiles in the sheet
        interval: Seconds covered by each tile
        tile_width: Tile width in pixels
        tile_height: Tile height in pixels
        columns: Tiles per row
        duration: Source duration; the last cue is clipped to it

    Returns:
        WebVTT text
    """
    lines = ["WEBVTT", ""]
    for k in range(tile_count):
        cue_start = start + k * interval
        cue_end = cue_start + interval
        if duration is not None:
            cue_end = min(cue_end, duration)
        x = (k % columns) * tile_width
        y = (k // columns) * tile_height
        lines.append(f"{format_timestamp(cue_start)} --> {format_timestamp(cue_end)}")
        lines.append(f"{image_name}#xywh={x},{y},{tile_width},{tile_height}")
        lines.append("")
    return "\n".join(lines)


def build_sprite_command(
    ffmpeg_path: str,
    input_path: str,
    output_path: str,
    start: float,
    tile_count: int,
    interval: int,
    thumb_width: int,
    columns: int,
) -> list[str]:
    """Build the ffmpeg command rendering one tiled sprite sheet."""
    rows = max(1, math.ceil(tile_count / columns))
    return [
        ffmpeg_path,
        "-hide_banner",
        "-y",
        "-ss", f"{start:g}",
        "-t", f"{tile_count * interval:g}",
        "-i", input_path,
        "-vf", f"fps=1/{interval},scale={thumb_width}:-1,tile={columns}x{rows}",
        "-frames:v", "1",
        "-q:v", "5",
        output_path,
    ]


def plan_sheets(duration: float, interval: int, max_thumbs: int) -> list[tuple[float, int]]:
    """Split a source into (start, tile count) per sheet."""
    total = max(1, math.ceil(duration / interval))
    sheets = []
    taken = 0
    while taken < total:
        count = min(max_thumbs, total - taken)
        sheets.append((float(taken * interval), count))
        taken += count
    return sheets


@dataclass
class SpriteTrack:
    """Published sprite sheets and their WebVTT files."""
    sprite_urls: list[str] = field(default_factory=list)
    vtt_urls: list[str] = field(default_factory=list)


class SpriteGenerator:
    """Renders sprite sheets from the source and publishes them."""

    def __init__(self, config: PipelineConfig, runner: ProcessRunner, storage: AsyncStorage):
        self.config = config
        self.runner = runner
        self.storage = storage

    async def generate(
        self,
        input_path: str,
        video_id: str,
        duration: Optional[float],
    ) -> Optional[SpriteTrack]:
        """Render and upload every sheet for a video.

        Args:
            input_path: Source video
            video_id: Video the sprites belong to
            duration: Probed source duration

        Returns:
            SpriteTrack, or None when sprites are disabled or the duration is unknown
        """
        if not self.config.sprites_enabled:
            return None
        if not duration:
            logger.info(f"Skipping sprites for {video_id}: source duration unknown")
            return None

        os.makedirs(self.config.work_dir, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix=f"{video_id}-sprites-", dir=self.config.work_dir) as tmp_dir:
            return await self._generate_into(tmp_dir, input_path, video_id, duration)

    async def _generate_into(
        self,
        tmp_dir: str,
        input_path: str,
        video_id: str,
        duration: float,
    ) -> SpriteTrack:
        track = SpriteTrack()
        prefix = f"{video_prefix(video_id)}/sprites"
        columns = self.config.sprite_columns
        interval = self.config.sprite_interval

        for n, (start, count) in enumerate(plan_sheets(duration, interval, self.config.sprite_max_thumbs)):
            image_name = f"sprite_{video_id}_{n}.jpg"
            vtt_name = f"sprite_{video_id}_{n}.vtt"
            image_path = os.path.join(tmp_dir, image_name)
            vtt_path = os.path.join(tmp_dir, vtt_name)

            cmd = build_sprite_command(
                self.config.ffmpeg_path,
                input_path,
                image_path,
                start,
                count,
                interval,
                self.config.sprite_thumb_width,
                columns,
            )
            result = await self.runner.run(cmd, timeout=self.config.transcode_timeout)
            if not result.ok or not os.path.isfile(image_path):
                raise SpriteGenerationError(
                    f"Sprite sheet {n} failed with exit code {result.returncode}",
                    video_id=video_id,
                    diagnostics=result.diagnostics,
                )

            width, height = await asyncio.to_thread(_image_size, image_path)
            rows = max(1, math.ceil(count / columns))
            vtt = build_vtt(
                image_name,
                start,
                count,
                interval,
                width // columns,
                height // rows,
                columns,
                duration=duration,
            )
            with open(vtt_path, "w", encoding="utf-8") as f:
                f.write(vtt)

            image = await self.storage.upload(image_path, f"{prefix}/{image_name}", content_type_for(image_path))
            track.sprite_urls.append(image.url)
            cues = await self.storage.upload(vtt_path, f"{prefix}/{vtt_name}", content_type_for(vtt_path))
            track.vtt_urls.append(cues.url)

        logger.info(f"Published {len(track.sprite_urls)} sprite sheet(s) for video {video_id}")
        return track


def _image_size(path: str) -> tuple[int, int]:
    with Image.open(path) as img:
        return img.size
