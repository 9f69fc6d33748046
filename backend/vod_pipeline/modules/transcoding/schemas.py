"""Configuration and value types for the packaging pipeline."""

import os
from dataclasses import dataclass, field
from typing import Optional

from vod_pipeline.core.config import Settings
from vod_pipeline.modules.transcoding.abr import (
    MASTER_MANIFEST_NAME,
    VARIANT_MANIFEST_NAME,
    RenditionLadder,
    load_ladder,
    stream_dir_name,
)


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a job needs to know, resolved once at start-up.

    Built from settings by the entry point and handed to the engine, the
    uploader and the pool, so nothing reads the environment while a job runs.
    """
    ffmpeg_path: str
    ffprobe_path: str
    ladder: RenditionLadder = field(default_factory=RenditionLadder.create_default_ladder)
    segment_seconds: int = 15
    video_encoder: str = "libx264"
    encoder_preset: str = "veryfast"
    work_dir: str = "./storage/work"
    transcode_timeout: Optional[float] = None
    upload_timeout: Optional[float] = None
    thumbnail_offset: float = 5.0
    thumbnail_width: int = 320
    min_manifest_bytes: int = 50
    upload_file_concurrency: int = 4
    sprites_enabled: bool = True
    sprite_interval: int = 10
    sprite_max_thumbs: int = 100
    sprite_columns: int = 5
    sprite_thumb_width: int = 320
    concurrency: int = 4
    poll_timeout: float = 5.0
    lease_seconds: int = 900

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        """Resolve executables and the ladder from settings.

        Raises:
            ValueError: If the configured ladder is invalid
        """
        from vod_pipeline.modules.transcoding.ffmpeg import discover_ffmpeg, discover_ffprobe

        ffmpeg_path = discover_ffmpeg(settings.FFMPEG_PATH)
        return cls(
            ffmpeg_path=ffmpeg_path,
            ffprobe_path=discover_ffprobe(settings.FFPROBE_PATH, ffmpeg_path),
            ladder=load_ladder(settings.RENDITION_LADDER),
            segment_seconds=settings.HLS_SEGMENT_SECONDS,
            video_encoder=settings.VIDEO_ENCODER,
            encoder_preset=settings.VIDEO_ENCODER_PRESET,
            work_dir=settings.WORK_DIR,
            transcode_timeout=settings.TRANSCODE_TIMEOUT_SECONDS,
            upload_timeout=settings.UPLOAD_TIMEOUT_SECONDS,
            thumbnail_offset=settings.THUMBNAIL_OFFSET_SECONDS,
            thumbnail_width=settings.THUMBNAIL_WIDTH,
            min_manifest_bytes=settings.MIN_MANIFEST_BYTES,
            upload_file_concurrency=settings.UPLOAD_FILE_CONCURRENCY,
            sprites_enabled=settings.SPRITES_ENABLED,
            sprite_interval=settings.SPRITE_INTERVAL_SECONDS,
            sprite_max_thumbs=settings.SPRITE_MAX_THUMBS,
            sprite_columns=settings.SPRITE_COLUMNS,
            sprite_thumb_width=settings.SPRITE_THUMB_WIDTH,
            concurrency=settings.JOB_CONCURRENCY,
            poll_timeout=settings.JOB_POLL_TIMEOUT_SECONDS,
            lease_seconds=settings.JOB_LEASE_SECONDS,
        )


@dataclass
class ProbeResult:
    """What ffprobe reported about a source file."""
    duration: Optional[float] = None
    has_audio: bool = True


@dataclass
class WorkingPackage:
    """The job-local HLS package produced by the transcoding engine."""
    video_id: str
    source_path: str
    work_dir: str
    rendition_count: int
    thumbnail_path: Optional[str] = None
    duration: Optional[float] = None
    has_audio: bool = True
    warnings: list[str] = field(default_factory=list)

    @property
    def master_manifest_path(self) -> str:
        return os.path.join(self.work_dir, MASTER_MANIFEST_NAME)

    def stream_dir(self, ordinal: int) -> str:
        return os.path.join(self.work_dir, stream_dir_name(ordinal))

    def variant_manifest_path(self, ordinal: int) -> str:
        return os.path.join(self.stream_dir(ordinal), VARIANT_MANIFEST_NAME)


@dataclass
class FinalizeOutcome:
    """Terminal outcome handed to the state reconciler."""
    success: bool
    video_url: str = ""
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, video_url: str, thumbnail_url: Optional[str]) -> "FinalizeOutcome":
        return cls(success=True, video_url=video_url, thumbnail_url=thumbnail_url)

    @classmethod
    def failed(cls, error: str) -> "FinalizeOutcome":
        return cls(success=False, error=error)
