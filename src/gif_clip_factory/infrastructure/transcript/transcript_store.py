from __future__ import annotations

import math
import re
from pathlib import Path

from gif_clip_factory.domain.errors import UpstreamAnalysisError
from gif_clip_factory.domain.models import MediaMetadata, TranscriptSegment
from gif_clip_factory.domain.protocols import Repository, Transcriber
from gif_clip_factory.utils.media import CommandError, extract_audio
from gif_clip_factory.utils.paths import ensure_dir, unique_name

_SRT_TIME_RE = re.compile(r"(\d+):(\d{1,2}):(\d{1,2}(?:[.,]\d+)?)")


def normalize_segments(segments: list[TranscriptSegment]) -> list[TranscriptSegment]:
    """Order segments by start time and drop the ones with negative length.

    Overlaps and gaps are left as they are; consumers read the result as a
    timeline, not as a partition.
    """
    cleaned = [
        TranscriptSegment(start=max(0.0, float(s.start)), end=float(s.end), text=(s.text or "").strip())
        for s in segments
        if math.isfinite(s.start) and math.isfinite(s.end) and s.end >= s.start
    ]
    cleaned.sort(key=lambda s: (s.start, s.end))
    return cleaned


def placeholder_segments(duration_sec: float, bucket_sec: float) -> list[TranscriptSegment]:
    if duration_sec <= 0 or bucket_sec <= 0:
        return []
    segments: list[TranscriptSegment] = []
    cursor = 0.0
    while cursor < duration_sec:
        end = min(duration_sec, cursor + bucket_sec)
        segments.append(TranscriptSegment(start=cursor, end=end, text=""))
        cursor = end
    return segments


def _srt_time_to_seconds(value: str) -> float | None:
    match = _SRT_TIME_RE.search(value)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds.replace(",", "."))


def parse_srt(text: str) -> list[TranscriptSegment]:
    segments: list[TranscriptSegment] = []
    for block in re.split(r"\r?\n\s*\r?\n", text.strip()):
        lines = [line for line in block.splitlines() if line.strip()]
        timing_idx = next((i for i, line in enumerate(lines) if "-->" in line), None)
        if timing_idx is None:
            continue
        start_raw, _, end_raw = lines[timing_idx].partition("-->")
        start = _srt_time_to_seconds(start_raw)
        end = _srt_time_to_seconds(end_raw)
        if start is None or end is None:
            continue
        body = " ".join(line.strip() for line in lines[timing_idx + 1 :])
        segments.append(TranscriptSegment(start=start, end=end, text=body))
    return normalize_segments(segments)


class TranscriptStore:
    """Transcript segments for a video: stored, transcribed, or placeholder buckets."""

    def __init__(
        self,
        repo: Repository,
        bucket_sec: float,
        transcriber: Transcriber | None = None,
        ffmpeg_bin: str = "ffmpeg",
        temp_dir: Path | None = None,
        audio_timeout_sec: float | None = None,
        logger=None,
    ) -> None:
        self.repo = repo
        self.bucket_sec = bucket_sec
        self.transcriber = transcriber
        self.ffmpeg_bin = ffmpeg_bin
        self.temp_dir = temp_dir
        self.audio_timeout_sec = audio_timeout_sec
        self.logger = logger

    def get_or_create_transcript(self, video_id: str, media: MediaMetadata) -> list[TranscriptSegment]:
        stored = self.repo.get_transcript(video_id)
        if stored:
            return normalize_segments(stored)

        if self.transcriber is not None and self.temp_dir is not None:
            try:
                segments = normalize_segments(self._transcribe(video_id, media))
            except UpstreamAnalysisError as exc:
                if self.logger:
                    self.logger.warning("transcript.transcriber_failed", video_id=video_id, error=str(exc))
            else:
                if segments:
                    self.repo.save_transcript(video_id, segments)
                    return segments

        if self.logger:
            self.logger.info("transcript.placeholder", video_id=video_id, bucket_sec=self.bucket_sec)
        return placeholder_segments(media.duration_sec, self.bucket_sec)

    def save_transcript(self, video_id: str, segments: list[TranscriptSegment]) -> list[TranscriptSegment]:
        normalized = normalize_segments(segments)
        self.repo.save_transcript(video_id, normalized)
        return normalized

    def _transcribe(self, video_id: str, media: MediaMetadata) -> list[TranscriptSegment]:
        audio_path = ensure_dir(self.temp_dir) / unique_name(video_id, ".wav")
        try:
            try:
                extract_audio(self.ffmpeg_bin, media.path, audio_path, timeout_sec=self.audio_timeout_sec)
            except CommandError as exc:
                raise UpstreamAnalysisError(f"audio extraction failed: {exc}") from exc
            return self.transcriber.transcribe(audio_path)
        finally:
            audio_path.unlink(missing_ok=True)
