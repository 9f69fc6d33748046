"""Per-job packaging pipeline.

transcode -> validate -> upload (variants, thumbnail, then master) ->
finalize -> optional sprites. Each stage runs in its own span and is timed.
"""

import logging
import time
from contextlib import contextmanager
from typing import Optional

from vod_pipeline.core.logging import log_error, log_warning
from vod_pipeline.core.metrics import (
    THUMBNAIL_FAILURES_TOTAL,
    record_stage,
    record_stage_failure,
)
from vod_pipeline.core.storage import AsyncStorage
from vod_pipeline.core.tracing import create_span
from vod_pipeline.modules.job.models import TranscodeJob
from vod_pipeline.modules.transcoding.exceptions import PipelineError
from vod_pipeline.modules.transcoding.ffmpeg import HLSTranscoder
from vod_pipeline.modules.transcoding.process import AsyncProcessRunner, ProcessRunner
from vod_pipeline.modules.transcoding.reconciler import StateReconciler, VideoRecordUpdater
from vod_pipeline.modules.transcoding.schemas import FinalizeOutcome, PipelineConfig, WorkingPackage
from vod_pipeline.modules.transcoding.sprites import SpriteGenerator
from vod_pipeline.modules.transcoding.storage import HLSPackageUploader
from vod_pipeline.modules.transcoding.validator import validate_package
from vod_pipeline.modules.video.schemas import VideoUpdate

logger = logging.getLogger(__name__)

DIAGNOSTIC_TAIL_LINES = 20


@contextmanager
def pipeline_stage(name: str, video_id: str):
    """Time a stage, trace it and count its failures."""
    started = time.monotonic()
    with create_span(f"packaging.{name}", {"video.id": video_id}):
        try:
            yield
        except Exception:
            record_stage_failure(name)
            raise
        finally:
            record_stage(name, time.monotonic() - started)


class TranscodingPipeline:
    """Turns one queued job into a published HLS package and a final record state."""

    def __init__(
        self,
        config: PipelineConfig,
        transcoder: HLSTranscoder,
        uploader: HLSPackageUploader,
        reconciler: StateReconciler,
        records: VideoRecordUpdater,
        sprites: Optional[SpriteGenerator] = None,
    ):
        self.config = config
        self.transcoder = transcoder
        self.uploader = uploader
        self.reconciler = reconciler
        self.records = records
        self.sprites = sprites

    @classmethod
    def create(
        cls,
        config: PipelineConfig,
        storage: AsyncStorage,
        records: VideoRecordUpdater,
        runner: Optional[ProcessRunner] = None,
    ) -> "TranscodingPipeline":
        """Wire the pipeline from its collaborators."""
        runner = runner or AsyncProcessRunner()
        return cls(
            config=config,
            transcoder=HLSTranscoder(config, runner),
            uploader=HLSPackageUploader(
                storage,
                file_concurrency=config.upload_file_concurrency,
                timeout=config.upload_timeout,
            ),
            reconciler=StateReconciler(records),
            records=records,
            sprites=SpriteGenerator(config, runner, storage) if config.sprites_enabled else None,
        )

    async def handle(self, job: TranscodeJob) -> None:
        """Run every stage for a job.

        Raises:
            PipelineError: From the first stage that failed, carrying the
                working directory when one was created
        """
        video_id = job.video_id
        with create_span("packaging.job", {"job.id": job.id, "video.id": video_id}):
            with pipeline_stage("transcode", video_id):
                package = await self.transcoder.transcode(job.source_file_path, video_id)

            try:
                outcome = await self._publish(package)
            except PipelineError:
                raise
            except Exception as e:
                raise PipelineError(str(e), video_id=video_id, work_dir=package.work_dir) from e

            with pipeline_stage("finalize", video_id):
                await self.reconciler.finalize(video_id, outcome, package.work_dir)

        if self.sprites is not None:
            await self._publish_sprites(package)

    async def _publish(self, package: WorkingPackage) -> FinalizeOutcome:
        video_id = package.video_id

        with pipeline_stage("validate", video_id):
            validate_package(package, self.config.min_manifest_bytes)

        if package.thumbnail_path is None:
            THUMBNAIL_FAILURES_TOTAL.inc()
            log_warning(
                logger,
                f"Video {video_id} will be published without a thumbnail",
                warnings=package.warnings,
            )

        with pipeline_stage("upload", video_id):
            uploaded = await self.uploader.upload(package)

        return FinalizeOutcome.succeeded(uploaded.master_url, uploaded.thumbnail_url)

    async def _publish_sprites(self, package: WorkingPackage) -> None:
        """Best effort: the video is already READY, so failures only get logged."""
        video_id = package.video_id
        try:
            with pipeline_stage("sprites", video_id):
                track = await self.sprites.generate(package.source_path, video_id, package.duration)
                if track is None:
                    return
                await self.records.update(
                    video_id,
                    VideoUpdate(sprites=track.sprite_urls, vtt_files=track.vtt_urls),
                )
        except Exception as e:
            log_warning(logger, f"Sprite generation failed for video {video_id}: {e}")

    async def fail(self, job: TranscodeJob, error: Exception) -> None:
        """Mark the job's video FAILED and remove whatever it left on disk.

        Raises:
            FinalizeFailed: If the record could not be updated
        """
        diagnostics = getattr(error, "diagnostics", None) or []
        if diagnostics:
            log_error(
                logger,
                f"Transcoder output for video {job.video_id} (last {DIAGNOSTIC_TAIL_LINES} lines)",
                diagnostics=diagnostics[-DIAGNOSTIC_TAIL_LINES:],
            )

        with pipeline_stage("finalize", job.video_id):
            await self.reconciler.finalize(
                job.video_id,
                FinalizeOutcome.failed(str(error)),
                getattr(error, "work_dir", None),
            )
