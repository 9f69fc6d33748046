"""Publishing of validated HLS packages to object storage.

Requirements on the key layout are fixed by the players:

    videos/{video_id}/hls/master.m3u8
    videos/{video_id}/hls/stream_{i}/playlist.m3u8
    videos/{video_id}/hls/stream_{i}/data{seq}.ts
    videos/{video_id}/thumbnails/thumbnail.png

The master manifest is uploaded last, after every variant file and the
thumbnail, so it never references objects that are not there yet.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from vod_pipeline.core.metrics import record_upload
from vod_pipeline.core.storage import AsyncStorage, StorageResult
from vod_pipeline.modules.transcoding.abr import MASTER_MANIFEST_NAME, stream_dir_name
from vod_pipeline.modules.transcoding.exceptions import UploadFailed
from vod_pipeline.modules.transcoding.schemas import WorkingPackage

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/MP2T",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".vtt": "text/vtt",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(path: str) -> str:
    """MIME type derived from the file extension."""
    return CONTENT_TYPES.get(os.path.splitext(path)[1].lower(), DEFAULT_CONTENT_TYPE)


def video_prefix(video_id: str) -> str:
    return f"videos/{video_id}"


def master_manifest_key(prefix: str) -> str:
    return f"{prefix}/hls/{MASTER_MANIFEST_NAME}"


def variant_key(prefix: str, ordinal: int, filename: str) -> str:
    return f"{prefix}/hls/{stream_dir_name(ordinal)}/{filename}"


def thumbnail_key(prefix: str) -> str:
    return f"{prefix}/thumbnails/thumbnail.png"


@dataclass
class UploadedPackage:
    """Where a package ended up."""
    master_key: str
    master_url: str
    thumbnail_url: Optional[str] = None
    results: list[StorageResult] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(r.file_size for r in self.results)


class HLSPackageUploader:
    """Uploads a working package under a deterministic key layout.

    Files of one package are uploaded with bounded concurrency; each large
    file is additionally split into parts by the storage backend.
    """

    def __init__(
        self,
        storage: AsyncStorage,
        file_concurrency: int = 4,
        timeout: Optional[float] = None,
    ):
        self.storage = storage
        self.file_concurrency = max(1, file_concurrency)
        self.timeout = timeout

    def plan(self, package: WorkingPackage, prefix: str) -> list[tuple[str, str]]:
        """List (local path, key) pairs for everything except the master manifest.

        Variant files come first in ordinal order, then the thumbnail.
        """
        uploads = []
        for i in range(package.rendition_count):
            stream_dir = package.stream_dir(i)
            for filename in sorted(os.listdir(stream_dir)):
                path = os.path.join(stream_dir, filename)
                if os.path.isfile(path):
                    uploads.append((path, variant_key(prefix, i, filename)))
        if package.thumbnail_path:
            uploads.append((package.thumbnail_path, thumbnail_key(prefix)))
        return uploads

    async def upload(
        self,
        package: WorkingPackage,
        destination_prefix: Optional[str] = None,
    ) -> UploadedPackage:
        """Upload the whole package.

        Args:
            package: A validated working package
            destination_prefix: Key prefix (defaults to ``videos/{video_id}``)

        Returns:
            UploadedPackage with the master manifest and thumbnail URLs

        Raises:
            UploadFailed: If any file failed or the upload timed out; objects
                already uploaded for this job are deleted on a best-effort
                basis first
        """
        prefix = destination_prefix or video_prefix(package.video_id)
        started: dict[str, asyncio.Future] = {}
        work = asyncio.ensure_future(self._upload_all(package, prefix, started))
        try:
            done, _ = await asyncio.wait({work}, timeout=self.timeout)
        except asyncio.CancelledError:
            work.cancel()
            raise
        if work in done:
            return work.result()

        # No new file may start, the master manifest included. Transfers
        # already handed to a worker thread cannot be interrupted, so wait for
        # them to land before deleting what they wrote.
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        await asyncio.gather(*started.values(), return_exceptions=True)
        cleaned = await self._cleanup(list(started))
        record_upload(0, success=False)
        raise UploadFailed(
            f"Upload timed out after {self.timeout}s",
            cleaned_keys=cleaned,
            video_id=package.video_id,
            work_dir=package.work_dir,
        )

    async def _upload_all(
        self,
        package: WorkingPackage,
        prefix: str,
        started: dict[str, asyncio.Future],
    ) -> UploadedPackage:
        semaphore = asyncio.Semaphore(self.file_concurrency)
        uploaded: list[StorageResult] = []

        async def upload_one(path: str, key: str) -> StorageResult:
            async with semaphore:
                transfer = asyncio.ensure_future(
                    self.storage.upload(path, key, content_type_for(path))
                )
                started[key] = transfer
                # Shielded so a timeout leaves the transfer to be awaited
                result = await asyncio.shield(transfer)
            uploaded.append(result)
            record_upload(result.file_size)
            return result

        planned = self.plan(package, prefix)
        results = await asyncio.gather(
            *(upload_one(path, key) for path, key in planned),
            return_exceptions=True,
        )

        for (path, key), result in zip(planned, results):
            if isinstance(result, Exception):
                raise await self._upload_error(package, key, result, started) from result
            elif isinstance(result, BaseException):
                raise result

        thumbnail_url = None
        if package.thumbnail_path:
            thumbnail_url = self.storage.get_url(thumbnail_key(prefix))

        master_key = master_manifest_key(prefix)
        try:
            master = await upload_one(package.master_manifest_path, master_key)
        except Exception as e:
            raise await self._upload_error(package, master_key, e, started) from e

        logger.info(
            f"Uploaded {len(uploaded)} files for video {package.video_id}",
            extra={"video_id": package.video_id, "bytes": sum(r.file_size for r in uploaded)},
        )
        return UploadedPackage(
            master_key=master_key,
            master_url=master.url,
            thumbnail_url=thumbnail_url,
            results=list(uploaded),
        )

    async def _upload_error(
        self,
        package: WorkingPackage,
        key: str,
        error: Exception,
        started: dict[str, asyncio.Future],
    ) -> UploadFailed:
        record_upload(0, success=False)
        cleaned = await self._cleanup(list(started))
        return UploadFailed(
            f"Upload of {key} failed: {error}",
            key=key,
            cleaned_keys=cleaned,
            video_id=package.video_id,
            work_dir=package.work_dir,
        )

    async def _cleanup(self, keys: list[str]) -> int:
        """Best-effort removal of every key this job started writing.

        Returns how many objects were actually deleted.
        """
        cleaned = 0
        for key in keys:
            try:
                if await self.storage.delete(key):
                    cleaned += 1
            except Exception as e:
                logger.warning(f"Could not delete {key} during upload cleanup: {e}")
        if keys:
            logger.info(f"Removed {cleaned} objects after failed upload of {len(keys)} files")
        return cleaned
