from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from gif_clip_factory.application.progress_broadcaster import ProgressBroadcaster
from gif_clip_factory.domain.errors import InvalidTransition, JobNotFound, ValidationError
from gif_clip_factory.domain.models import (
    ClipRequest,
    FailureReason,
    JobState,
    ProgressEvent,
    ProgressStatus,
    RenderJob,
    utc_now,
)
from gif_clip_factory.domain.protocols import Repository


def event_for(job: RenderJob) -> ProgressEvent:
    if job.state is JobState.COMPLETED:
        return ProgressEvent(job.job_id, 100, ProgressStatus.COMPLETED)
    if job.state is JobState.FAILED:
        return ProgressEvent(job.job_id, job.progress_percent, ProgressStatus.ERROR, job.error_detail)
    return ProgressEvent(job.job_id, job.progress_percent, ProgressStatus.PROCESSING)


class JobTracker:
    """State machine for render jobs: pending -> processing -> completed | failed.

    Terminal states are final. ``complete`` and ``fail`` on a terminal job are
    ignored and return False, which lets a watchdog and the render thread race
    to finish a job without either one overwriting the other.
    """

    def __init__(
        self,
        broadcaster: ProgressBroadcaster | None = None,
        repo: Repository | None = None,
        logger=None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.broadcaster = broadcaster
        self.repo = repo
        self.logger = logger
        self.clock = clock
        self._jobs: dict[str, RenderJob] = {}
        self._unsaved: set[str] = set()
        self._lock = threading.RLock()

    def create(self, request: ClipRequest, job_id: str | None = None) -> RenderJob:
        job_id = job_id or uuid4().hex[:12]
        with self._lock:
            if job_id in self._jobs:
                raise ValidationError(f"job id already in use: {job_id}")
            now = self.clock()
            job = RenderJob(job_id=job_id, request=request, created_at=now, updated_at=now)
            self._jobs[job_id] = job
            self._persist(job)
            return replace(job)

    def get(self, job_id: str) -> RenderJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                return replace(job)
        if self.repo is not None:
            return self.repo.get_job(job_id)
        raise JobNotFound(f"Job not found: {job_id}")

    def start(self, job_id: str) -> RenderJob:
        with self._lock:
            job = self._require(job_id)
            if job.state is not JobState.PENDING:
                raise InvalidTransition(f"cannot start job {job_id} in state {job.state.value}")
            job.state = JobState.PROCESSING
            job.updated_at = self.clock()
            self._commit(job)
            return replace(job)

    def progress(self, job_id: str, percent: int | float) -> bool:
        with self._lock:
            job = self._require(job_id)
            if job.state is not JobState.PROCESSING:
                return False
            job.updated_at = self.clock()
            value = max(0, min(100, int(percent)))
            if value <= job.progress_percent:
                return False
            job.progress_percent = value
            self._commit(job)
            return True

    def complete(self, job_id: str, output_path: Path) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return self._released(job_id)
            if job.state is not JobState.PROCESSING:
                self._ignored(job, JobState.COMPLETED)
                return False
            now = self.clock()
            job.state = JobState.COMPLETED
            job.progress_percent = 100
            job.output_path = output_path
            job.updated_at = now
            job.completed_at = now
            self._commit(job)
        if self.logger:
            self.logger.info("job.completed", job_id=job_id, output=str(output_path))
        return True

    def fail(self, job_id: str, detail: str, reason: FailureReason = FailureReason.RENDER_FAILED) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return self._released(job_id)
            if job.state.is_terminal:
                self._ignored(job, JobState.FAILED)
                return False
            now = self.clock()
            job.state = JobState.FAILED
            job.error_detail = detail or reason.value
            job.failure_reason = reason
            job.updated_at = now
            job.completed_at = now
            self._commit(job)
        if self.logger:
            self.logger.warning("job.failed", job_id=job_id, reason=reason.value, detail=detail)
        return True

    def current_event(self, job_id: str) -> ProgressEvent | None:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None and self.repo is not None:
            try:
                job = self.repo.get_job(job_id)
            except JobNotFound:
                return None
        return event_for(job) if job is not None else None

    def stalled(self, older_than_sec: float) -> list[str]:
        now = self.clock()
        with self._lock:
            return [
                job.job_id
                for job in self._jobs.values()
                if job.state is JobState.PROCESSING
                and (now - job.updated_at).total_seconds() > older_than_sec
            ]

    def unfinished(self) -> list[str]:
        with self._lock:
            return [job.job_id for job in self._jobs.values() if not job.state.is_terminal]

    def release(self, job_id: str) -> bool:
        """Drop a terminal job from memory; the persisted record is untouched.

        A job whose last save failed stays in memory, since it is the only copy.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not job.state.is_terminal or job_id in self._unsaved:
                return False
            del self._jobs[job_id]
            return True

    def _released(self, job_id: str) -> bool:
        # only terminal jobs leave memory, so a stored one cannot transition again
        self.get(job_id)
        return False

    def _require(self, job_id: str) -> RenderJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}")
        return job

    def _ignored(self, job: RenderJob, target: JobState) -> None:
        if self.logger:
            self.logger.info(
                "job.transition_ignored",
                job_id=job.job_id,
                state=job.state.value,
                target=target.value,
            )

    def _commit(self, job: RenderJob) -> None:
        self._persist(job)
        if self.broadcaster is not None:
            self.broadcaster.publish(job.job_id, event_for(job))

    def _persist(self, job: RenderJob) -> None:
        if self.repo is None:
            return
        try:
            self.repo.save_job(replace(job))
        except Exception as exc:
            self._unsaved.add(job.job_id)
            if self.logger:
                self.logger.exception("job.persist_failed", job_id=job.job_id, error=str(exc))
        else:
            self._unsaved.discard(job.job_id)
