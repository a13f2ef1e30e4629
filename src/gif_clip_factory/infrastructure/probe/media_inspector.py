from __future__ import annotations

import json
import threading
from pathlib import Path

from gif_clip_factory.domain.errors import (
    DurationExceeded,
    InvalidMedia,
    ProbeError,
    ProbeTimeout,
    ResolutionExceeded,
)
from gif_clip_factory.domain.models import MediaMetadata
from gif_clip_factory.utils.config import PolicyConfig
from gif_clip_factory.utils.media import CommandError, CommandTimeout, run_command


def _parse_rate(value: str | None) -> float:
    if not value or "/" not in value:
        try:
            return float(value or 0.0)
        except ValueError:
            return 0.0
    num, den = value.split("/", 1)
    try:
        denominator = float(den)
        return float(num) / denominator if denominator else 0.0
    except ValueError:
        return 0.0


class MediaInspector:
    """Reads technical metadata with ffprobe and applies the upload policy.

    Results are cached per path and keyed on mtime and size, so an unchanged
    file is never probed twice and a rewritten one is probed again.
    """

    def __init__(self, ffprobe_bin: str, policy: PolicyConfig, logger=None) -> None:
        self.ffprobe_bin = ffprobe_bin
        self.policy = policy
        self.logger = logger
        self._cache: dict[Path, tuple[int, int, MediaMetadata]] = {}
        self._lock = threading.Lock()

    def probe(self, media_path: Path) -> MediaMetadata:
        metadata = self.inspect(media_path)
        self.validate(metadata)
        return metadata

    def inspect(self, media_path: Path) -> MediaMetadata:
        path = Path(media_path)
        try:
            stat = path.stat()
        except OSError as exc:
            raise InvalidMedia(f"Media file is not readable: {path}") from exc

        with self._lock:
            cached = self._cache.get(path)
        if cached and cached[0] == stat.st_mtime_ns and cached[1] == stat.st_size:
            return cached[2]

        metadata = self._run_probe(path, stat.st_size)
        with self._lock:
            self._cache[path] = (stat.st_mtime_ns, stat.st_size, metadata)
        return metadata

    def validate(self, metadata: MediaMetadata) -> None:
        if metadata.duration_sec > self.policy.max_duration_sec:
            raise DurationExceeded(
                f"Video duration {metadata.duration_sec:.1f}s exceeds {self.policy.max_duration_sec:.0f}s"
            )
        if metadata.height > self.policy.max_height:
            raise ResolutionExceeded(f"Video resolution {metadata.height}p exceeds {self.policy.max_height}p")

    def _run_probe(self, path: Path, size_bytes: int) -> MediaMetadata:
        cmd = [
            self.ffprobe_bin,
            "-v",
            "error",
            "-show_entries",
            "stream=codec_type,width,height,r_frame_rate",
            "-show_entries",
            "format=duration,format_name,size",
            "-of",
            "json",
            str(path),
        ]
        try:
            stdout = run_command(cmd, timeout_sec=self.policy.probe_timeout_sec)
        except CommandTimeout as exc:
            raise ProbeTimeout(f"Probe timed out after {self.policy.probe_timeout_sec:.0f}s: {path.name}") from exc
        except CommandError as exc:
            if self.logger:
                self.logger.warning("probe.failed", path=str(path), error=str(exc))
            raise InvalidMedia(f"Invalid video file: {path.name}") from exc

        try:
            payload = json.loads(stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ProbeError(f"Probe output was not valid JSON: {path.name}") from exc

        video = next(
            (s for s in payload.get("streams", []) if s.get("codec_type") == "video"),
            None,
        )
        if video is None:
            raise InvalidMedia(f"No video stream found: {path.name}")

        fmt = payload.get("format", {})
        try:
            duration = float(fmt.get("duration") or 0.0)
        except (TypeError, ValueError):
            duration = 0.0
        try:
            reported_size = int(fmt.get("size") or size_bytes)
        except (TypeError, ValueError):
            reported_size = size_bytes

        metadata = MediaMetadata(
            path=path,
            duration_sec=duration,
            width=int(video.get("width") or 0),
            height=int(video.get("height") or 0),
            container_format=str(fmt.get("format_name") or "unknown"),
            size_bytes=reported_size,
            fps=_parse_rate(video.get("r_frame_rate")),
        )
        if metadata.width <= 0 or metadata.height <= 0:
            raise InvalidMedia(f"Video stream has no dimensions: {path.name}")
        if self.logger:
            self.logger.info(
                "probe.completed",
                path=str(path),
                duration_sec=metadata.duration_sec,
                width=metadata.width,
                height=metadata.height,
                format=metadata.container_format,
            )
        return metadata
