"""Job models for the packaging queue."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class JobOutcome(str, Enum):
    """How a delivery attempt ended, as seen by the queue."""
    RETRY = "retry"
    DLQ = "dlq"


@dataclass
class TranscodeJob:
    """A claimed packaging job.

    ``raw`` is the exact message text held by the queue; acking and
    requeueing operate on it.
    """
    id: str
    source_file_path: str
    video_id: str
    enqueued_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None
    raw: str = field(default="", repr=False, compare=False)
