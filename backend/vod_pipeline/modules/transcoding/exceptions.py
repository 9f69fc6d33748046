"""Exceptions raised by the packaging pipeline.

Every error carries the video id and, once it exists, the job's working
directory, so the failure path can report on and remove it.
"""

from typing import Optional, Sequence


class PipelineError(Exception):
    """Base exception for packaging pipeline errors."""

    stage = "pipeline"

    def __init__(
        self,
        message: str,
        *,
        video_id: Optional[str] = None,
        work_dir: Optional[str] = None,
        diagnostics: Sequence[str] = (),
    ):
        super().__init__(message)
        self.message = message
        self.video_id = video_id
        self.work_dir = work_dir
        self.diagnostics = list(diagnostics)

    def __str__(self) -> str:
        return self.message


class InputNotFound(PipelineError):
    """Raised when the source file is missing or unreadable."""
    stage = "transcode"


class TranscoderUnavailable(PipelineError):
    """Raised when the transcoder executable could not be started."""
    stage = "transcode"


class TranscodeFailed(PipelineError):
    """Raised when the transcoder exits non-zero or times out."""

    stage = "transcode"

    def __init__(
        self,
        message: str,
        *,
        exit_code: Optional[int] = None,
        timed_out: bool = False,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.timed_out = timed_out


class ValidationError(PipelineError):
    """Raised when the working package is incomplete or broken."""

    stage = "validate"

    def __init__(self, errors: Sequence[str], **kwargs):
        self.errors = list(errors)
        super().__init__(
            f"Package validation failed: {'; '.join(self.errors)}",
            **kwargs,
        )


class UploadFailed(PipelineError):
    """Raised when any file of the package could not be uploaded."""

    stage = "upload"

    def __init__(
        self,
        message: str,
        *,
        key: Optional[str] = None,
        cleaned_keys: int = 0,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.key = key
        self.cleaned_keys = cleaned_keys


class FinalizeFailed(PipelineError):
    """Raised when the video record could not be updated."""
    stage = "finalize"


class SpriteGenerationError(PipelineError):
    """Raised when a sprite sheet could not be rendered."""
    stage = "sprites"
