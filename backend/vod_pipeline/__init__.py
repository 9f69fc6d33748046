"""VOD packaging worker.

Turns uploaded video files into HLS adaptive-bitrate packages, stores them in
object storage and reports the outcome on the video record.

Modules:
    - core: Configuration, logging, metrics, tracing, Redis, database, Celery setup
    - modules.transcoding: Rendition ladder, ffmpeg orchestration, validation, upload, finalize
    - modules.job: Durable job queue, retry policy and the worker pool
    - modules.video: Video record model and update interface
"""

__version__ = "0.1.0"
