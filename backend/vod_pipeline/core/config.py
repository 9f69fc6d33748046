"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "VOD Packaging Worker"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Database (videos table owned by the CMS) - REQUIRED
    DATABASE_URL: str

    # Redis (job queue and Celery broker) - REQUIRED
    REDIS_URL: str

    # Job queue
    JOB_QUEUE_NAME: str = "video-queue"
    JOB_CONCURRENCY: int = 4
    JOB_POLL_TIMEOUT_SECONDS: float = 5.0
    JOB_LEASE_SECONDS: int = 900
    JOB_MAX_ATTEMPTS: int = 3
    JOB_RETRY_INITIAL_DELAY: float = 1.0
    JOB_RETRY_MAX_DELAY: float = 300.0
    JOB_RETRY_BACKOFF: float = 2.0

    # Transcoder
    # Explicit path wins over the FFMPEG_BINARY environment variable and PATH lookup
    FFMPEG_PATH: Optional[str] = None
    FFPROBE_PATH: Optional[str] = None
    RENDITION_LADDER: Optional[str] = None  # JSON list, see modules.transcoding.abr
    HLS_SEGMENT_SECONDS: int = 15
    VIDEO_ENCODER: str = "libx264"
    VIDEO_ENCODER_PRESET: str = "veryfast"
    WORK_DIR: str = "./storage/work"
    TRANSCODE_TIMEOUT_SECONDS: Optional[float] = None
    UPLOAD_TIMEOUT_SECONDS: Optional[float] = None

    # Thumbnail and validation
    THUMBNAIL_OFFSET_SECONDS: float = 5.0
    THUMBNAIL_WIDTH: int = 320
    MIN_MANIFEST_BYTES: int = 50

    # Sprite sheets (seek preview)
    SPRITES_ENABLED: bool = True
    SPRITE_INTERVAL_SECONDS: int = 10
    SPRITE_MAX_THUMBS: int = 100
    SPRITE_COLUMNS: int = 5
    SPRITE_THUMB_WIDTH: int = 320

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./storage/objects"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True
    STORAGE_PUBLIC_BASE_URL: Optional[str] = None

    # CDN Configuration (optional, for any backend)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    # Multipart upload tuning
    UPLOAD_PART_SIZE_MB: int = 10
    UPLOAD_PART_CONCURRENCY: int = 5
    UPLOAD_FILE_CONCURRENCY: int = 4

    # Observability
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    METRICS_PORT: Optional[int] = None
    OTLP_ENDPOINT: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Load settings once and reuse them.

    Loading is deferred so that importing modules never requires a complete
    environment (tests build their own configuration objects).
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
