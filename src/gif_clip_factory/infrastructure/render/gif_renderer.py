from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from uuid import uuid4

from gif_clip_factory.domain.errors import RenderCancelled, RenderFailed, RenderTimeout
from gif_clip_factory.domain.models import ClipRequest
from gif_clip_factory.infrastructure.render.ffmpeg_builder import GifCommandBuilder
from gif_clip_factory.utils.media import CommandCancelled, CommandError, CommandTimeout, stream_command
from gif_clip_factory.utils.paths import ensure_dir, sanitize_filename

ProgressCallback = Callable[[int], None]


class ProgressParser:
    """Turns ffmpeg ``-progress`` key=value lines into monotonic percentages.

    Values are held at 99 until the engine reports ``progress=end`` so that
    100 always means the encoder has finished writing.
    """

    def __init__(self, duration_sec: float) -> None:
        self.duration_sec = max(duration_sec, 0.001)
        self.percent = 0
        self.finished = False

    def feed(self, line: str) -> int | None:
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None
        value = value.strip()

        if key == "progress":
            if value != "end":
                return None
            self.finished = True
            return self._advance(100)

        if key in ("out_time_us", "out_time_ms"):
            try:
                seconds = int(value) / 1_000_000
            except ValueError:
                return None
        elif key == "out_time":
            seconds = self._parse_clock(value)
            if seconds is None:
                return None
        else:
            return None

        return self._advance(min(99, int(seconds / self.duration_sec * 100)))

    def _advance(self, percent: int) -> int | None:
        if percent <= self.percent:
            return None
        self.percent = percent
        return percent

    @staticmethod
    def _parse_clock(value: str) -> float | None:
        parts = value.split(":")
        if len(parts) != 3:
            return None
        try:
            hours, minutes = int(parts[0]), int(parts[1])
            seconds = float(parts[2])
        except ValueError:
            return None
        return max(0.0, hours * 3600 + minutes * 60 + seconds)


class GifRenderer:
    def __init__(
        self,
        command_builder: GifCommandBuilder,
        output_dir: Path,
        temp_dir: Path,
        render_timeout_sec: float,
        stall_timeout_sec: float | None = None,
        logger=None,
    ) -> None:
        self.command_builder = command_builder
        self.output_dir = output_dir
        self.temp_dir = temp_dir
        self.render_timeout_sec = render_timeout_sec
        self.stall_timeout_sec = stall_timeout_sec
        self.logger = logger

    def render(
        self,
        request: ClipRequest,
        on_progress: ProgressCallback | None = None,
        job_id: str | None = None,
        cancel_event=None,
    ) -> Path:
        job_id = job_id or uuid4().hex[:12]
        stem = f"{sanitize_filename(job_id)}_{uuid4().hex[:8]}"
        partial = ensure_dir(self.temp_dir) / f"{stem}.gif.part"
        final = ensure_dir(self.output_dir) / f"{stem}.gif"

        cmd = self.command_builder.build(request, partial)
        parser = ProgressParser(request.duration)

        def on_line(line: str) -> None:
            percent = parser.feed(line)
            if percent is not None and on_progress:
                on_progress(percent)

        if self.logger:
            self.logger.info(
                "render.started",
                job_id=job_id,
                source=str(request.source),
                start_sec=request.start_sec,
                end_sec=request.end_sec,
                quality=request.quality.value,
            )

        try:
            stream_command(
                cmd,
                on_line=on_line,
                cancel_event=cancel_event,
                timeout_sec=self.render_timeout_sec,
                stall_timeout_sec=self.stall_timeout_sec,
            )
            if not partial.exists() or partial.stat().st_size == 0:
                raise RenderFailed("transcoder produced no output")
            os.replace(partial, final)
        except CommandCancelled as exc:
            self._discard(partial)
            raise RenderCancelled("cancelled") from exc
        except CommandTimeout as exc:
            self._discard(partial)
            raise RenderTimeout(str(exc)) from exc
        except CommandError as exc:
            self._discard(partial)
            if self.logger:
                self.logger.warning(
                    "render.engine_failed",
                    job_id=job_id,
                    returncode=exc.returncode,
                    stderr=exc.stderr,
                )
            raise RenderFailed(f"transcoder exited with code {exc.returncode}") from exc
        except OSError as exc:
            self._discard(partial)
            raise RenderFailed(f"could not finalize output: {exc}") from exc
        except BaseException:
            self._discard(partial)
            raise

        if not parser.finished and on_progress:
            on_progress(100)
        if self.logger:
            self.logger.info("render.completed", job_id=job_id, output=str(final), size=final.stat().st_size)
        return final

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            if self.logger:
                self.logger.warning("render.partial_cleanup_failed", path=str(path), error=str(exc))
