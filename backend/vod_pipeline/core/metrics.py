"""Prometheus metrics for the packaging worker.

Tracks job outcomes, per-stage latency, upload volume and queue depth.
Exposed over HTTP when METRICS_PORT is configured.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    start_http_server,
)
from typing import Optional

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "vod_pipeline_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Worker Metrics
# ============================================
WORKER_ACTIVE_JOBS = Gauge(
    "vod_worker_active_jobs",
    "Number of jobs currently being processed by this worker",
    registry=REGISTRY,
)

WORKER_MAX_CAPACITY = Gauge(
    "vod_worker_max_capacity",
    "Configured job concurrency of this worker",
    registry=REGISTRY,
)


# ============================================
# Job Metrics
# ============================================
JOBS_TOTAL = Counter(
    "vod_jobs_total",
    "Total packaging jobs by outcome",
    ["status"],
    registry=REGISTRY,
)

JOB_DURATION_SECONDS = Histogram(
    "vod_job_duration_seconds",
    "End to end job duration in seconds",
    ["status"],
    buckets=[10, 30, 60, 120, 300, 600, 1200, 1800, 3600, 7200],
    registry=REGISTRY,
)

STAGE_DURATION_SECONDS = Histogram(
    "vod_stage_duration_seconds",
    "Pipeline stage duration in seconds",
    ["stage"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300, 900, 1800, 3600],
    registry=REGISTRY,
)

STAGE_FAILURES_TOTAL = Counter(
    "vod_stage_failures_total",
    "Pipeline failures by stage",
    ["stage"],
    registry=REGISTRY,
)

THUMBNAIL_FAILURES_TOTAL = Counter(
    "vod_thumbnail_failures_total",
    "Jobs that finished without a thumbnail",
    registry=REGISTRY,
)

TRANSCODER_WARNINGS_TOTAL = Counter(
    "vod_transcoder_warnings_total",
    "Transcoder diagnostic lines matching an error pattern",
    registry=REGISTRY,
)


# ============================================
# Upload Metrics
# ============================================
UPLOAD_BYTES_TOTAL = Counter(
    "vod_upload_bytes_total",
    "Bytes uploaded to object storage",
    registry=REGISTRY,
)

UPLOAD_OBJECTS_TOTAL = Counter(
    "vod_upload_objects_total",
    "Objects uploaded to object storage by result",
    ["result"],
    registry=REGISTRY,
)


# ============================================
# Queue Metrics
# ============================================
QUEUE_DEPTH = Gauge(
    "vod_queue_depth",
    "Number of jobs per queue state",
    ["state"],
    registry=REGISTRY,
)

JOBS_REQUEUED_TOTAL = Counter(
    "vod_jobs_requeued_total",
    "Jobs returned to the queue",
    ["reason"],
    registry=REGISTRY,
)

DLQ_SIZE = Gauge(
    "vod_dlq_size",
    "Number of jobs in the dead letter list",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics."""
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })


def start_metrics_server(port: Optional[int]) -> bool:
    """Serve the registry over HTTP.

    Args:
        port: Port to listen on, or None to skip

    Returns:
        True if the server was started
    """
    if not port:
        return False
    start_http_server(port, registry=REGISTRY)
    return True


def record_job(status: str, duration_seconds: float) -> None:
    """Record a finished job."""
    JOBS_TOTAL.labels(status=status).inc()
    JOB_DURATION_SECONDS.labels(status=status).observe(duration_seconds)


def record_stage(stage: str, duration_seconds: float) -> None:
    """Record a finished pipeline stage."""
    STAGE_DURATION_SECONDS.labels(stage=stage).observe(duration_seconds)


def record_stage_failure(stage: str) -> None:
    STAGE_FAILURES_TOTAL.labels(stage=stage).inc()


def record_upload(size_bytes: int, success: bool = True) -> None:
    """Record an object upload attempt."""
    UPLOAD_OBJECTS_TOTAL.labels(result="success" if success else "failure").inc()
    if success:
        UPLOAD_BYTES_TOTAL.inc(size_bytes)


def update_queue_depth(pending: int, processing: int, delayed: int, dead: int) -> None:
    """Update queue depth gauges from a stats snapshot."""
    QUEUE_DEPTH.labels(state="pending").set(pending)
    QUEUE_DEPTH.labels(state="processing").set(processing)
    QUEUE_DEPTH.labels(state="delayed").set(delayed)
    DLQ_SIZE.set(dead)
