from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from .models import RenderJob, TranscriptSegment, VideoRecord


class Transcriber(Protocol):
    def transcribe(self, audio_path: Path) -> list[TranscriptSegment]:
        """Return time-aligned segments for the audio file."""


class MomentAnalyzer(Protocol):
    def propose_moments(
        self,
        transcript_text: str,
        prompt: str,
        min_sec: int,
        max_sec: int,
        caption_max_chars: int,
        max_moments: int,
    ) -> list[dict[str, Any]]:
        """Return raw, unvalidated candidate dicts from the generative collaborator."""


class Repository(Protocol):
    def get_video(self, video_id: str) -> VideoRecord: ...

    def save_job(self, job: RenderJob) -> None: ...

    def get_job(self, job_id: str) -> RenderJob: ...

    def save_transcript(self, video_id: str, segments: list[TranscriptSegment]) -> None: ...

    def get_transcript(self, video_id: str) -> list[TranscriptSegment] | None: ...
