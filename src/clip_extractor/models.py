"""Data models for clip-extractor."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .errors import InvalidRangeError

MP4_MEDIA_TYPE = "video/mp4"


class EngineState(str, Enum):
    """Lifecycle state of a clip extraction engine."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    TERMINATED = "terminated"


class ProcessingStep(str, Enum):
    """Stage of the clip workflow."""

    LOAD_ENGINE = "load_engine"
    READ_SOURCE = "read_source"
    CUT = "cut"
    SAVE = "save"


def check_time_range(start_seconds: float, end_seconds: float) -> None:
    """
    Validate a cut range.

    Raises:
        InvalidRangeError: If either bound is not finite, start is negative,
            or end is not strictly after start.
    """
    if not (math.isfinite(start_seconds) and math.isfinite(end_seconds)):
        raise InvalidRangeError(
            f"Time range must be finite: {start_seconds} to {end_seconds}",
            ctx={"start": start_seconds, "end": end_seconds},
        )
    if start_seconds < 0:
        raise InvalidRangeError(
            f"Start time cannot be negative: {start_seconds}",
            ctx={"start": start_seconds, "end": end_seconds},
        )
    if end_seconds <= start_seconds:
        raise InvalidRangeError(
            f"End time ({end_seconds}) must be greater than start time ({start_seconds})",
            ctx={"start": start_seconds, "end": end_seconds},
        )


@dataclass(frozen=True)
class ClipRequest:
    """A single contiguous cut of a source video."""

    source: bytes = field(repr=False)
    start_seconds: float
    end_seconds: float

    def __post_init__(self):
        check_time_range(self.start_seconds, self.end_seconds)

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass(frozen=True)
class ClipResult:
    """Encoded clip bytes (MP4, H.264/AAC)."""

    data: bytes = field(repr=False)
    start_seconds: float
    end_seconds: float
    media_type: str = MP4_MEDIA_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def duration_seconds(self) -> float:
        """Requested duration; the encoded duration may differ by encoder rounding."""
        return self.end_seconds - self.start_seconds


class EngineStatus(BaseModel):
    """Snapshot of an engine for status endpoints."""

    state: EngineState
    loaded: bool
    runtime_version: str | None = None
    binary_path: str | None = None
    workspace: str | None = None


class ClipJob(BaseModel):
    """A clip saved to disk by the clip workflow."""

    output_path: str
    poster_path: str | None = None
    start_seconds: float
    end_seconds: float
    duration_seconds: float | None = None
    size_bytes: int
    media_type: str = MP4_MEDIA_TYPE
    created_at: datetime = Field(default_factory=datetime.now)
