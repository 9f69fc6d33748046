"""Adaptive Bitrate (ABR) rendition ladder and HLS package layout.

A rendition's position in the ladder is its stream ordinal: rendition ``i``
is written to ``stream_i/`` locally and under ``hls/stream_i/`` in storage,
and is the ``i``-th entry of the master manifest. Players depend on this
layout, so the names below must stay stable.
"""

import json
from dataclasses import dataclass
from typing import Iterator, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

MASTER_MANIFEST_NAME = "master.m3u8"
VARIANT_MANIFEST_NAME = "playlist.m3u8"
SEGMENT_FILENAME_PATTERN = "data%03d.ts"
STREAM_DIR_PREFIX = "stream_"


def stream_dir_name(ordinal: int) -> str:
    """Directory name of the rendition at ``ordinal`` (``stream_0``, ...)."""
    return f"{STREAM_DIR_PREFIX}{ordinal}"


@dataclass(frozen=True)
class RenditionSpec:
    """A single rendition of the ladder. Bitrates are in kbps."""
    label: str
    width: int
    height: int
    video_bitrate_kbps: int
    max_bitrate_kbps: int
    buffer_size_kbps: int
    audio_bitrate_kbps: int


class RenditionSpecModel(BaseModel):
    """Schema of one rendition in the RENDITION_LADDER setting."""
    label: str = Field(..., min_length=1)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    video_bitrate_kbps: int = Field(..., gt=0)
    max_bitrate_kbps: Optional[int] = Field(None, gt=0)
    buffer_size_kbps: Optional[int] = Field(None, gt=0)
    audio_bitrate_kbps: int = Field(128, gt=0)

    def to_spec(self) -> RenditionSpec:
        # Same headroom ratios as the default ladder when not given
        return RenditionSpec(
            label=self.label,
            width=self.width,
            height=self.height,
            video_bitrate_kbps=self.video_bitrate_kbps,
            max_bitrate_kbps=self.max_bitrate_kbps or round(self.video_bitrate_kbps * 1.07),
            buffer_size_kbps=self.buffer_size_kbps or round(self.video_bitrate_kbps * 1.5),
            audio_bitrate_kbps=self.audio_bitrate_kbps,
        )


@dataclass(frozen=True)
class RenditionLadder:
    """Ordered list of renditions, highest quality first."""
    renditions: tuple[RenditionSpec, ...]

    def __post_init__(self):
        if not self.renditions:
            raise ValueError("Rendition ladder must contain at least one rendition")
        labels = [r.label for r in self.renditions]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Rendition labels must be unique: {labels}")

    def __len__(self) -> int:
        return len(self.renditions)

    def __iter__(self) -> Iterator[RenditionSpec]:
        return iter(self.renditions)

    def __getitem__(self, ordinal: int) -> RenditionSpec:
        return self.renditions[ordinal]

    @property
    def stream_dirs(self) -> list[str]:
        """Directory names of every rendition, in ordinal order."""
        return [stream_dir_name(i) for i in range(len(self.renditions))]

    @classmethod
    def create_default_ladder(cls) -> "RenditionLadder":
        """Create the standard 1080p / 720p / 480p VOD ladder."""
        return cls(
            renditions=(
                RenditionSpec(
                    label="1080p",
                    width=1920,
                    height=1080,
                    video_bitrate_kbps=5000,
                    max_bitrate_kbps=5350,
                    buffer_size_kbps=7500,
                    audio_bitrate_kbps=192,
                ),
                RenditionSpec(
                    label="720p",
                    width=1280,
                    height=720,
                    video_bitrate_kbps=2800,
                    max_bitrate_kbps=2996,
                    buffer_size_kbps=4200,
                    audio_bitrate_kbps=128,
                ),
                RenditionSpec(
                    label="480p",
                    width=854,
                    height=480,
                    video_bitrate_kbps=1400,
                    max_bitrate_kbps=1498,
                    buffer_size_kbps=2100,
                    audio_bitrate_kbps=96,
                ),
            ),
        )

    @classmethod
    def from_json(cls, raw: str) -> "RenditionLadder":
        """Parse a ladder from a JSON list of rendition objects.

        Args:
            raw: JSON text, e.g. ``[{"label": "720p", "width": 1280, ...}]``

        Returns:
            The parsed ladder, in the order given

        Raises:
            ValueError: If the JSON is malformed or a rendition is invalid
        """
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"RENDITION_LADDER is not valid JSON: {e}") from e
        if not isinstance(items, list):
            raise ValueError("RENDITION_LADDER must be a JSON list")
        try:
            specs = tuple(RenditionSpecModel.model_validate(item).to_spec() for item in items)
        except PydanticValidationError as e:
            raise ValueError(f"Invalid rendition in RENDITION_LADDER: {e}") from e
        return cls(renditions=specs)


def load_ladder(raw: Optional[str]) -> RenditionLadder:
    """Ladder from the RENDITION_LADDER setting, or the default one."""
    if not raw:
        return RenditionLadder.create_default_ladder()
    return RenditionLadder.from_json(raw)
