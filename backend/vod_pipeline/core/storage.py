"""Universal storage module supporting multiple backends.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Backends are blocking; AsyncStorage runs them in worker threads so many
uploads can be in flight from the event loop.
"""

import asyncio
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from vod_pipeline.core.config import Settings

MB = 1024 * 1024


class StorageError(Exception):
    """A storage backend operation failed."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


@dataclass
class StorageResult:
    """Result of a storage operation."""
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage/objects"
    public_base_url: Optional[str] = None
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False
    part_size_mb: int = 10
    part_concurrency: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
            public_base_url=settings.STORAGE_PUBLIC_BASE_URL,
            cdn_domain=settings.CDN_DOMAIN,
            cdn_enabled=settings.CDN_ENABLED,
            part_size_mb=settings.UPLOAD_PART_SIZE_MB,
            part_concurrency=settings.UPLOAD_PART_CONCURRENCY,
        )


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file to storage.

        Raises:
            StorageError: If the upload did not complete
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a file from storage. Returns False if nothing was deleted."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if a file exists in storage."""

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Get the public URL for a key."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.config = config

    def _get_full_path(self, key: str) -> Path:
        """Get full path for a key."""
        return self.base_path / key

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file to local storage."""
        dest_path = self._get_full_path(key)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            # Copy then rename so a reader never sees a half-written object
            tmp_path = dest_path.with_name(dest_path.name + ".part")
            shutil.copyfile(file_path, tmp_path)
            os.replace(tmp_path, dest_path)
            file_size = dest_path.stat().st_size
        except OSError as e:
            raise StorageError(f"Local upload failed for {key}: {e}", key=key) from e

        return StorageResult(
            key=key,
            url=self.get_url(key),
            file_size=file_size,
        )

    def delete(self, key: str) -> bool:
        """Delete a file from local storage."""
        file_path = self._get_full_path(key)
        if not file_path.exists():
            return False
        try:
            file_path.unlink()
        except OSError as e:
            raise StorageError(f"Local delete failed for {key}: {e}", key=key) from e
        return True

    def exists(self, key: str) -> bool:
        """Check if a file exists in local storage."""
        return self._get_full_path(key).exists()

    def get_url(self, key: str) -> str:
        """Get URL for a file."""
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{key}"
        return f"file://{self._get_full_path(key).absolute()}"


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend.

    Files above the part size are sent as multipart uploads with a bounded
    number of parts in flight per file.
    """

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client = None
        self._transfer_config = None

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key or None,
                "aws_secret_access_key": self.config.secret_key or None,
            }

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                    max_pool_connections=max(10, self.config.part_concurrency * 4),
                )

            if not self.config.use_ssl and self.config.endpoint_url:
                # Allow non-SSL for local MinIO
                client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def _get_transfer_config(self):
        if self._transfer_config is None:
            from boto3.s3.transfer import TransferConfig

            part_size = self.config.part_size_mb * MB
            self._transfer_config = TransferConfig(
                multipart_threshold=part_size,
                multipart_chunksize=part_size,
                max_concurrency=self.config.part_concurrency,
                use_threads=True,
            )
        return self._transfer_config

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file to S3/MinIO."""
        from botocore.exceptions import BotoCoreError, ClientError
        from boto3.exceptions import S3UploadFailedError

        client = self._get_client()
        try:
            file_size = os.path.getsize(file_path)
            client.upload_file(
                file_path,
                self.config.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Config=self._get_transfer_config(),
            )
            head = client.head_object(Bucket=self.config.bucket, Key=key)
        except (OSError, BotoCoreError, ClientError, S3UploadFailedError) as e:
            raise StorageError(f"S3 upload failed for {key}: {e}", key=key) from e

        return StorageResult(
            key=key,
            url=self.get_url(key),
            file_size=file_size,
            etag=head.get("ETag", "").strip('"') or None,
        )

    def delete(self, key: str) -> bool:
        """Delete a file from S3/MinIO."""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 delete failed for {key}: {e}", key=key) from e
        return True

    def exists(self, key: str) -> bool:
        """Check if a file exists in S3/MinIO."""
        from botocore.exceptions import ClientError

        try:
            self._get_client().head_object(Bucket=self.config.bucket, Key=key)
            return True
        except ClientError:
            return False

    def get_url(self, key: str) -> str:
        """Get the public URL for a key."""
        # Use CDN if enabled
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        region = self.config.region or "us-east-1"
        return f"https://{self.config.bucket}.s3.{region}.amazonaws.com/{key}"


def create_backend(config: StorageConfig) -> StorageBackend:
    """Create appropriate storage backend."""
    backend_type = config.backend.lower()

    if backend_type == "local":
        return LocalStorage(config)
    elif backend_type in ("s3", "minio", "aws"):
        return S3Storage(config)
    else:
        raise ValueError(f"Unsupported storage backend: {backend_type}")


class AsyncStorage:
    """Async-compatible wrapper around a blocking storage backend.

    The backend is shared by every job; boto3 clients are thread-safe.
    """

    def __init__(self, backend: StorageBackend):
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    async def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a local file under the given key."""
        return await asyncio.to_thread(self._backend.upload, file_path, key, content_type)

    async def delete(self, key: str) -> bool:
        """Delete a key from storage."""
        return await asyncio.to_thread(self._backend.delete, key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._backend.exists, key)

    def get_url(self, key: str) -> str:
        return self._backend.get_url(key)


def get_storage(settings: Settings) -> AsyncStorage:
    """Build the storage client described by settings."""
    return AsyncStorage(create_backend(StorageConfig.from_settings(settings)))
