from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path

from gif_clip_factory.application.job_tracker import JobTracker
from gif_clip_factory.application.moment_selector import MomentSelector
from gif_clip_factory.application.progress_broadcaster import ChannelSession, ProgressBroadcaster, Subscription
from gif_clip_factory.application.retention_sweeper import RetentionSweeper
from gif_clip_factory.domain.errors import (
    ClipFactoryError,
    InvalidTransition,
    QueueFullError,
    RenderCancelled,
    RenderFailed,
    RenderTimeout,
)
from gif_clip_factory.domain.moment_rules import ClipPolicy, validate_clip_request
from gif_clip_factory.domain.models import (
    Caption,
    CaptionStyle,
    ClipRequest,
    FailureReason,
    MediaMetadata,
    QualityTier,
    RenderJob,
    SuggestedMoment,
)
from gif_clip_factory.domain.protocols import Repository
from gif_clip_factory.infrastructure.probe.media_inspector import MediaInspector
from gif_clip_factory.infrastructure.render.gif_renderer import GifRenderer
from gif_clip_factory.infrastructure.transcript.transcript_store import TranscriptStore
from gif_clip_factory.utils.paths import sanitize_filename


@dataclass(slots=True)
class _ActiveJob:
    job_id: str
    cancel_event: threading.Event = field(default_factory=threading.Event)
    reason: FailureReason = FailureReason.CANCELLED
    detail: str = "cancelled"


class JobProcessor:
    """Owns the render worker pool and everything a job touches on its way through it.

    ``submit`` validates synchronously and returns the job id at once; the
    outcome is observed through ``subscribe`` or ``get_job``. One instance is
    built per process by ``build_processor`` and handed to callers.
    """

    def __init__(
        self,
        repo: Repository,
        inspector: MediaInspector,
        transcripts: TranscriptStore,
        selector: MomentSelector,
        renderer: GifRenderer,
        tracker: JobTracker,
        broadcaster: ProgressBroadcaster,
        sweeper: RetentionSweeper,
        policy: ClipPolicy,
        caption_style: CaptionStyle,
        render_parallelism: int,
        queue_size: int,
        stall_timeout_sec: float,
        watchdog_interval_sec: float = 5.0,
        logger=None,
    ) -> None:
        self.repo = repo
        self.inspector = inspector
        self.transcripts = transcripts
        self.selector = selector
        self.renderer = renderer
        self.tracker = tracker
        self.broadcaster = broadcaster
        self.sweeper = sweeper
        self.policy = policy
        self.caption_style = caption_style
        self.render_parallelism = max(1, render_parallelism)
        self.stall_timeout_sec = stall_timeout_sec
        self.watchdog_interval_sec = watchdog_interval_sec
        self.logger = logger

        self._slots = threading.BoundedSemaphore(self.render_parallelism + max(0, queue_size))
        self._active: dict[str, _ActiveJob] = {}
        self._lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._stop = threading.Event()
        self._watchdog: threading.Thread | None = None
        if self.sweeper.is_protected is None:
            self.sweeper.is_protected = self.is_active_file

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        if self.running:
            return
        self.sweeper.ensure_directories(extra=[self.renderer.temp_dir, self.renderer.output_dir])
        self._stop.clear()
        self._executor = ThreadPoolExecutor(max_workers=self.render_parallelism, thread_name_prefix="render")
        self._watchdog = threading.Thread(target=self._watch, name="render-watchdog", daemon=True)
        self._watchdog.start()
        self.sweeper.start()
        if self.logger:
            self.logger.info("processor.started", parallelism=self.render_parallelism)

    def probe_video(self, video_id: str) -> MediaMetadata:
        record = self.repo.get_video(video_id)
        return self.inspector.probe(record.path)

    def submit(self, video_id: str, request: ClipRequest, job_id: str | None = None) -> str:
        record = self.repo.get_video(video_id)
        return self.submit_request(replace(request, source=record.path), job_id=job_id)

    def submit_request(self, request: ClipRequest, job_id: str | None = None) -> str:
        executor = self._executor
        if executor is None:
            raise ClipFactoryError("job processor is not running")

        media = self.inspector.probe(request.source)
        validate_clip_request(request, self.policy, media)
        request = replace(request, quality=QualityTier(request.quality))

        if not self._slots.acquire(blocking=False):
            raise QueueFullError("render queue is full, try again later")
        try:
            job = self.tracker.create(request, job_id=job_id)
        except BaseException:
            self._slots.release()
            raise

        active = _ActiveJob(job.job_id)
        with self._lock:
            self._active[job.job_id] = active
        try:
            future = executor.submit(self._run, job.job_id, request, active)
        except RuntimeError as exc:
            self._finish(job.job_id)
            self.tracker.fail(job.job_id, "job processor is shutting down", FailureReason.SHUTDOWN)
            raise ClipFactoryError("job processor is shutting down") from exc
        future.add_done_callback(lambda f, job_id=job.job_id: self._on_done(job_id, f))

        if self.logger:
            self.logger.info(
                "job.created",
                job_id=job.job_id,
                source=str(request.source),
                start_sec=request.start_sec,
                end_sec=request.end_sec,
            )
        return job.job_id

    def suggest_moments(self, video_id: str, prompt: str) -> list[SuggestedMoment]:
        record = self.repo.get_video(video_id)
        media = self.inspector.probe(record.path)
        transcript = self.transcripts.get_or_create_transcript(video_id, media)
        return self.selector.select_moments(transcript, prompt)

    def render_moments(
        self,
        video_id: str,
        moments: list[SuggestedMoment],
        quality: QualityTier = QualityTier.MEDIUM,
        with_captions: bool = True,
    ) -> list[str]:
        record = self.repo.get_video(video_id)
        job_ids: list[str] = []
        for moment in moments:
            caption = Caption(moment.caption, self.caption_style) if with_captions and moment.caption else None
            request = ClipRequest(
                source=record.path,
                start_sec=moment.start_sec,
                end_sec=moment.end_sec,
                quality=quality,
                caption=caption,
            )
            job_ids.append(self.submit_request(request))
        return job_ids

    def get_job(self, job_id: str) -> RenderJob:
        return self.tracker.get(job_id)

    def forget_job(self, job_id: str) -> bool:
        return self.tracker.release(job_id)

    def subscribe(self, job_id: str) -> Subscription:
        return self.broadcaster.subscribe(job_id, seed=self.tracker.current_event)

    def open_channel(self, send: Callable[[str], None]) -> ChannelSession:
        return ChannelSession(self.broadcaster, send, initial_event=self.tracker.current_event, logger=self.logger)

    def cancel(self, job_id: str) -> bool:
        """Cancel a queued or running job. Raises ``JobNotFound`` for ids the tracker does not hold."""
        return self._abort(job_id, FailureReason.CANCELLED, "cancelled")

    def is_active_file(self, path: Path) -> bool:
        with self._lock:
            prefixes = [f"{sanitize_filename(job_id)}_" for job_id in self._active]
        return any(path.name.startswith(prefix) for prefix in prefixes)

    def cleanup_after_job(self, job_id: str) -> int:
        """Remove leftover temporary files named after ``job_id``; the finished output is kept."""
        temp_dir = self.renderer.temp_dir
        if not temp_dir.is_dir():
            return 0
        prefix = f"{sanitize_filename(job_id)}_"
        return self.sweeper.remove_files(p for p in temp_dir.iterdir() if p.is_file() and p.name.startswith(prefix))

    def get_cleanup_stats(self) -> dict[str, int]:
        return self.sweeper.stats()

    def shutdown(self, wait: bool = True) -> int:
        executor, self._executor = self._executor, None
        self._stop.set()
        with self._lock:
            handles = list(self._active.values())
        for handle in handles:
            self._signal(handle, FailureReason.SHUTDOWN, "job processor shut down")
        aborted = sum(
            self.tracker.fail(job_id, "job processor shut down", FailureReason.SHUTDOWN)
            for job_id in self.tracker.unfinished()
        )
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=True)
        if self._watchdog is not None:
            self._watchdog.join(timeout=5)
            self._watchdog = None

        removed = self.sweeper.shutdown()
        if self.logger:
            self.logger.info("processor.stopped", aborted=aborted, swept=removed)
        return removed

    def _abort(self, job_id: str, reason: FailureReason, detail: str) -> bool:
        """Stop ``job_id`` and fail it; False when the job had already finished."""
        with self._lock:
            handle = self._active.get(job_id)
        if handle is not None:
            self._signal(handle, reason, detail)
        # a job still waiting in the queue has no process to kill
        aborted = self.tracker.fail(job_id, detail, reason)
        if aborted and self.logger:
            self.logger.info("job.abort_requested", job_id=job_id, reason=reason.value)
        return aborted

    @staticmethod
    def _signal(handle: _ActiveJob, reason: FailureReason, detail: str) -> None:
        handle.reason = reason
        handle.detail = detail
        handle.cancel_event.set()

    def _run(self, job_id: str, request: ClipRequest, active: _ActiveJob) -> None:
        if active.cancel_event.is_set():
            self.tracker.fail(job_id, active.detail, active.reason)
            return
        try:
            self.tracker.start(job_id)
        except InvalidTransition:
            # cancelled after the check above; the job is already failed
            return
        try:
            output = self.renderer.render(
                request,
                on_progress=lambda percent: self.tracker.progress(job_id, percent),
                job_id=job_id,
                cancel_event=active.cancel_event,
            )
        except RenderCancelled:
            self.tracker.fail(job_id, active.detail, active.reason)
        except RenderTimeout as exc:
            self.tracker.fail(job_id, exc.cause, FailureReason.TIMEOUT)
        except RenderFailed as exc:
            self.tracker.fail(job_id, exc.cause, FailureReason.RENDER_FAILED)
        except Exception as exc:
            if self.logger:
                self.logger.exception("job.unexpected_error", job_id=job_id, error=str(exc))
            self.tracker.fail(job_id, "internal render error", FailureReason.RENDER_FAILED)
        else:
            if not self.tracker.complete(job_id, output):
                # the job was failed while the engine was finishing; its output is orphaned
                output.unlink(missing_ok=True)

    def _on_done(self, job_id: str, future: Future) -> None:
        self._finish(job_id)
        self.cleanup_after_job(job_id)
        if future.cancelled():
            self.tracker.fail(job_id, "job processor shut down", FailureReason.SHUTDOWN)
        self.tracker.release(job_id)

    def _finish(self, job_id: str) -> None:
        with self._lock:
            if self._active.pop(job_id, None) is None:
                return
        self._slots.release()

    def _watch(self) -> None:
        while not self._stop.wait(self.watchdog_interval_sec):
            for job_id in self.tracker.stalled(self.stall_timeout_sec):
                if self.logger:
                    self.logger.warning("job.stalled", job_id=job_id, stall_timeout_sec=self.stall_timeout_sec)
                self._abort(job_id, FailureReason.STALLED, f"no progress for {self.stall_timeout_sec:g}s")
