from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QualityTier(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class JobState(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class FailureReason(StrEnum):
    RENDER_FAILED = "render_failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    STALLED = "stalled"
    SHUTDOWN = "shutdown"


class ProgressStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class CaptionPosition(StrEnum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


@dataclass(slots=True, frozen=True)
class MediaMetadata:
    path: Path
    duration_sec: float
    width: int
    height: int
    container_format: str
    size_bytes: int
    fps: float = 0.0


@dataclass(slots=True, frozen=True)
class VideoRecord:
    video_id: str
    path: Path
    title: str = ""


@dataclass(slots=True, frozen=True)
class CaptionStyle:
    font_size: int = 24
    font_color: str = "white"
    border_color: str = "black"
    border_width: int = 2
    position: CaptionPosition = CaptionPosition.BOTTOM
    margin: int = 12
    font_file: str = ""


@dataclass(slots=True, frozen=True)
class Caption:
    text: str
    style: CaptionStyle = field(default_factory=CaptionStyle)


@dataclass(slots=True, frozen=True)
class ClipRequest:
    source: Path
    start_sec: float
    end_sec: float
    quality: QualityTier = QualityTier.MEDIUM
    fps: int | None = None
    scale: int | None = None
    caption: Caption | None = None

    @property
    def duration(self) -> float:
        return max(0.0, self.end_sec - self.start_sec)


@dataclass(slots=True)
class RenderJob:
    job_id: str
    request: ClipRequest
    state: JobState = JobState.PENDING
    progress_percent: int = 0
    output_path: Path | None = None
    error_detail: str = ""
    failure_reason: FailureReason | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass(slots=True, frozen=True)
class SuggestedMoment:
    start_sec: float
    end_sec: float
    caption: str
    confidence: float

    @property
    def duration(self) -> float:
        return max(0.0, self.end_sec - self.start_sec)


@dataclass(slots=True, frozen=True)
class CleanupTarget:
    directory: Path
    max_age_minutes: float
    pattern: str | None = None


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    job_id: str
    percent: int
    status: ProgressStatus
    error_message: str = ""

    @property
    def is_final(self) -> bool:
        return self.status is not ProgressStatus.PROCESSING
