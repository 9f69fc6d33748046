"""FFmpeg HLS packaging.

Fans one source out into every rendition of the ladder with a single ffmpeg
process (one ``split`` plus a ``scale`` per branch), writes segmented HLS
with one playlist per rendition and a master playlist, then grabs a poster
thumbnail with a second short ffmpeg run.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import uuid
from typing import Optional

from vod_pipeline.core.metrics import TRANSCODER_WARNINGS_TOTAL
from vod_pipeline.modules.transcoding.abr import (
    MASTER_MANIFEST_NAME,
    SEGMENT_FILENAME_PATTERN,
    STREAM_DIR_PREFIX,
    VARIANT_MANIFEST_NAME,
    RenditionLadder,
)
from vod_pipeline.modules.transcoding.exceptions import (
    InputNotFound,
    PipelineError,
    TranscodeFailed,
)
from vod_pipeline.modules.transcoding.process import ProcessRunner
from vod_pipeline.modules.transcoding.schemas import (
    PipelineConfig,
    ProbeResult,
    WorkingPackage,
)

logger = logging.getLogger(__name__)

FFMPEG_ENV_VAR = "FFMPEG_BINARY"
FFPROBE_ENV_VAR = "FFPROBE_BINARY"
THUMBNAIL_FILENAME = "thumbnail.png"
PROGRESS_LOG_STEP = 10.0
MAX_RECORDED_WARNINGS = 20

_TIME_RE = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_ERROR_RE = re.compile(r"\b(error|invalid)\b", re.IGNORECASE)


# ============================================
# Executable discovery
# ============================================

def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def discover_ffmpeg(configured_path: Optional[str] = None) -> str:
    """Resolve the ffmpeg executable.

    Order: configured path, then the FFMPEG_BINARY environment variable,
    then ``ffmpeg`` on PATH. The source used is logged.

    Args:
        configured_path: Explicit path from configuration

    Returns:
        Path or command name to invoke
    """
    if configured_path:
        if not _is_executable(configured_path):
            logger.warning(f"Configured FFMPEG_PATH {configured_path} is not an executable file")
        logger.info(f"Using ffmpeg from configuration: {configured_path}")
        return configured_path

    env_path = os.environ.get(FFMPEG_ENV_VAR)
    if env_path:
        logger.info(f"Using ffmpeg from {FFMPEG_ENV_VAR}: {env_path}")
        return env_path

    found = shutil.which("ffmpeg")
    if found:
        logger.info(f"Using ffmpeg from PATH: {found}")
        return found

    logger.warning("ffmpeg not found in configuration, environment or PATH; falling back to 'ffmpeg'")
    return "ffmpeg"


def discover_ffprobe(configured_path: Optional[str], ffmpeg_path: str) -> str:
    """Resolve the ffprobe executable, preferring the one next to ffmpeg."""
    if configured_path:
        logger.info(f"Using ffprobe from configuration: {configured_path}")
        return configured_path

    env_path = os.environ.get(FFPROBE_ENV_VAR)
    if env_path:
        logger.info(f"Using ffprobe from {FFPROBE_ENV_VAR}: {env_path}")
        return env_path

    ffmpeg_dir = os.path.dirname(ffmpeg_path)
    if ffmpeg_dir:
        name = "ffprobe.exe" if ffmpeg_path.lower().endswith(".exe") else "ffprobe"
        sibling = os.path.join(ffmpeg_dir, name)
        if _is_executable(sibling):
            logger.info(f"Using ffprobe next to ffmpeg: {sibling}")
            return sibling

    found = shutil.which("ffprobe")
    if found:
        logger.info(f"Using ffprobe from PATH: {found}")
        return found

    return "ffprobe"


# ============================================
# Command builders
# ============================================

def build_hls_command(
    config: PipelineConfig,
    input_path: str,
    output_dir: str,
    has_audio: bool = True,
) -> list[str]:
    """Build the single ffmpeg invocation that writes the whole HLS package.

    Args:
        config: Pipeline configuration (ladder, encoder, segment length)
        input_path: Source video
        output_dir: Working directory with stream_i subdirectories
        has_audio: Whether to map an audio track into every rendition

    Returns:
        FFmpeg command as list of arguments
    """
    ladder: RenditionLadder = config.ladder
    count = len(ladder)

    split_outputs = "".join(f"[v{i + 1}]" for i in range(count))
    filters = [f"[0:v]split={count}{split_outputs}"]
    for i, rendition in enumerate(ladder):
        filters.append(f"[v{i + 1}]scale=w={rendition.width}:h={rendition.height}[v{i + 1}out]")

    cmd = [
        config.ffmpeg_path,
        "-hide_banner",
        "-y",
        "-i", input_path,
        "-filter_complex", ";".join(filters),
    ]

    # Video mappings
    for i, rendition in enumerate(ladder):
        cmd.extend([
            "-map", f"[v{i + 1}out]",
            f"-c:v:{i}", config.video_encoder,
            f"-b:v:{i}", f"{rendition.video_bitrate_kbps}k",
            f"-maxrate:v:{i}", f"{rendition.max_bitrate_kbps}k",
            f"-bufsize:v:{i}", f"{rendition.buffer_size_kbps}k",
            f"-preset:v:{i}", config.encoder_preset,
        ])

    # Audio mappings
    if has_audio:
        for i, rendition in enumerate(ladder):
            cmd.extend([
                "-map", "a:0",
                f"-c:a:{i}", "aac",
                f"-b:a:{i}", f"{rendition.audio_bitrate_kbps}k",
            ])
        cmd.extend(["-ac", "2"])

    if has_audio:
        stream_map = " ".join(f"v:{i},a:{i}" for i in range(count))
    else:
        stream_map = " ".join(f"v:{i}" for i in range(count))

    variant_dir = os.path.join(output_dir, f"{STREAM_DIR_PREFIX}%v")
    cmd.extend([
        "-f", "hls",
        "-hls_time", str(config.segment_seconds),
        "-hls_playlist_type", "vod",
        "-hls_flags", "independent_segments",
        "-hls_segment_type", "mpegts",
        "-hls_segment_filename", os.path.join(variant_dir, SEGMENT_FILENAME_PATTERN),
        "-master_pl_name", MASTER_MANIFEST_NAME,
        "-var_stream_map", stream_map,
        "-hls_list_size", "0",
        "-threads", "0",
        os.path.join(variant_dir, VARIANT_MANIFEST_NAME),
    ])
    return cmd


def build_probe_command(ffprobe_path: str, input_path: str) -> list[str]:
    return [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        input_path,
    ]


def build_thumbnail_command(
    ffmpeg_path: str,
    input_path: str,
    output_path: str,
    offset_seconds: float,
    width: int,
) -> list[str]:
    """Build the ffmpeg command that extracts one scaled still frame."""
    return [
        ffmpeg_path,
        "-hide_banner",
        "-y",
        "-ss", f"{offset_seconds:g}",
        "-i", input_path,
        "-vframes", "1",
        "-vf", f"scale={width}:-1",
        output_path,
    ]


# ============================================
# Output parsing
# ============================================

def parse_probe_output(stdout: str) -> ProbeResult:
    """Read duration and audio presence from ffprobe JSON output.

    Unparseable output yields an unknown duration with audio assumed.
    """
    try:
        info = json.loads(stdout)
    except (json.JSONDecodeError, TypeError):
        return ProbeResult()
    if not isinstance(info, dict):
        return ProbeResult()

    duration = None
    raw_duration = info.get("format", {}).get("duration")
    if raw_duration is not None:
        try:
            duration = float(raw_duration)
        except (TypeError, ValueError):
            duration = None
        if duration is not None and duration <= 0:
            duration = None

    streams = info.get("streams")
    if not isinstance(streams, list):
        return ProbeResult(duration=duration)

    has_audio = any(s.get("codec_type") == "audio" for s in streams if isinstance(s, dict))
    return ProbeResult(duration=duration, has_audio=has_audio)


def parse_progress_time(line: str) -> Optional[float]:
    """Extract the ``time=HH:MM:SS.ss`` position from an ffmpeg stats line."""
    match = _TIME_RE.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def is_error_line(line: str) -> bool:
    return bool(_ERROR_RE.search(line))


def thumbnail_offset(configured: float, duration: Optional[float]) -> float:
    """Offset of the poster frame, kept inside short sources."""
    if duration is not None and duration <= configured:
        return duration / 2
    return configured


class ProgressTracker:
    """Turns ffmpeg diagnostic lines into logs and soft-failure warnings.

    Progress is logged at most once per PROGRESS_LOG_STEP percent.
    """

    def __init__(self, video_id: str, duration: Optional[float]):
        self.video_id = video_id
        self.duration = duration
        self.percent = 0.0
        self.warnings: list[str] = []
        self._last_logged = -PROGRESS_LOG_STEP

    def __call__(self, line: str) -> None:
        logger.debug(line)

        if is_error_line(line):
            TRANSCODER_WARNINGS_TOTAL.inc()
            logger.warning(f"Transcoder reported: {line}")
            if len(self.warnings) < MAX_RECORDED_WARNINGS:
                self.warnings.append(line)
            return

        if not self.duration:
            return
        position = parse_progress_time(line)
        if position is None:
            return
        self.percent = min(100.0, position / self.duration * 100)
        if self.percent - self._last_logged >= PROGRESS_LOG_STEP:
            self._last_logged = self.percent
            logger.info(
                f"Transcoding {self.video_id}: {self.percent:.0f}%",
                extra={"video_id": self.video_id, "progress": round(self.percent, 1)},
            )


# ============================================
# Transcoder
# ============================================

class HLSTranscoder:
    """Produces a WorkingPackage from a source file."""

    def __init__(self, config: PipelineConfig, runner: ProcessRunner):
        self.config = config
        self.runner = runner

    async def probe(self, input_path: str) -> ProbeResult:
        """Probe the source. Never fails the job; unknowns get defaults."""
        try:
            result = await self.runner.run(
                build_probe_command(self.config.ffprobe_path, input_path),
                timeout=60,
            )
        except PipelineError as e:
            logger.warning(f"ffprobe unavailable, continuing without probe data: {e}")
            return ProbeResult()

        if not result.ok:
            logger.warning(f"ffprobe exited with {result.returncode}, continuing without probe data")
            return ProbeResult()
        return parse_probe_output(result.stdout)

    def create_work_dir(self, video_id: str) -> str:
        """Create a fresh job directory with one subdirectory per rendition."""
        work_dir = os.path.join(self.config.work_dir, f"{video_id}-{uuid.uuid4().hex}")
        for stream_dir in self.config.ladder.stream_dirs:
            # ffmpeg does not create the %v directories itself on every platform
            os.makedirs(os.path.join(work_dir, stream_dir), exist_ok=True)
        return os.path.abspath(work_dir)

    async def transcode(self, input_path: str, video_id: str) -> WorkingPackage:
        """Transcode a source file into an HLS working package.

        Args:
            input_path: Source video
            video_id: Video the package belongs to

        Returns:
            WorkingPackage rooted in a new working directory

        Raises:
            InputNotFound: If the source is missing or unreadable
            TranscoderUnavailable: If ffmpeg could not be started
            TranscodeFailed: If ffmpeg exited non-zero, timed out or the run
                broke down unexpectedly
        """
        if not os.path.isfile(input_path) or not os.access(input_path, os.R_OK):
            raise InputNotFound(f"Input file not found: {input_path}", video_id=video_id)

        work_dir = self.create_work_dir(video_id)
        try:
            return await self._transcode_into(input_path, video_id, work_dir)
        except PipelineError as e:
            e.video_id = e.video_id or video_id
            e.work_dir = e.work_dir or work_dir
            raise
        except asyncio.CancelledError:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise
        except Exception as e:
            raise TranscodeFailed(
                f"Transcoding video {video_id} failed unexpectedly: {e}",
                video_id=video_id,
                work_dir=work_dir,
                diagnostics=[repr(e)],
            ) from e

    async def _transcode_into(self, input_path: str, video_id: str, work_dir: str) -> WorkingPackage:
        probe = await self.probe(input_path)
        if not probe.has_audio:
            logger.info(f"Source {input_path} has no audio stream, packaging video only")

        cmd = build_hls_command(self.config, input_path, work_dir, has_audio=probe.has_audio)
        logger.info(f"Starting ffmpeg for video {video_id} ({len(self.config.ladder)} renditions)")
        logger.debug("Command: " + " ".join(cmd))

        tracker = ProgressTracker(video_id, probe.duration)
        result = await self.runner.run(
            cmd,
            on_stderr_line=tracker,
            timeout=self.config.transcode_timeout,
        )

        if result.timed_out:
            raise TranscodeFailed(
                f"ffmpeg timed out after {self.config.transcode_timeout}s",
                exit_code=result.returncode,
                timed_out=True,
                video_id=video_id,
                work_dir=work_dir,
                diagnostics=result.diagnostics,
            )
        if result.returncode != 0:
            raise TranscodeFailed(
                f"ffmpeg exited with code {result.returncode}",
                exit_code=result.returncode,
                video_id=video_id,
                work_dir=work_dir,
                diagnostics=result.diagnostics,
            )

        logger.info(f"ffmpeg finished for video {video_id}")

        package = WorkingPackage(
            video_id=video_id,
            source_path=input_path,
            work_dir=work_dir,
            rendition_count=len(self.config.ladder),
            duration=probe.duration,
            has_audio=probe.has_audio,
            warnings=list(tracker.warnings),
        )
        await self.extract_thumbnail(package)
        return package

    async def extract_thumbnail(self, package: WorkingPackage) -> None:
        """Write the poster frame into the package.

        A failure leaves ``thumbnail_path`` unset and adds a warning; the job
        carries on without a thumbnail.
        """
        output_path = os.path.join(package.work_dir, THUMBNAIL_FILENAME)
        offset = thumbnail_offset(self.config.thumbnail_offset, package.duration)
        cmd = build_thumbnail_command(
            self.config.ffmpeg_path,
            package.source_path,
            output_path,
            offset,
            self.config.thumbnail_width,
        )

        try:
            result = await self.runner.run(cmd, timeout=self.config.transcode_timeout)
        except PipelineError as e:
            package.warnings.append(f"thumbnail: {e}")
            logger.warning(f"Thumbnail extraction could not start for {package.video_id}: {e}")
            return

        if result.ok and os.path.isfile(output_path):
            package.thumbnail_path = output_path
            return

        reason = f"exit code {result.returncode}" if not result.ok else "no output file"
        package.warnings.append(f"thumbnail: {reason}")
        logger.warning(
            f"Thumbnail extraction failed for {package.video_id} ({reason})",
            extra={"diagnostics": result.diagnostics[-5:]},
        )
