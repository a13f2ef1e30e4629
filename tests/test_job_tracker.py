from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from gif_clip_factory.application.job_tracker import JobTracker
from gif_clip_factory.application.progress_broadcaster import ProgressBroadcaster
from gif_clip_factory.domain.errors import InvalidTransition, JobNotFound, ValidationError
from gif_clip_factory.domain.models import ClipRequest, FailureReason, JobState, ProgressStatus
from gif_clip_factory.infrastructure.storage.sqlite_repo import SQLiteRepository

REQUEST = ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=3)


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class RecordingRepo:
    def __init__(self, fail=False):
        self.saved = []
        self.fail = fail

    def save_job(self, job):
        if self.fail:
            raise OSError("disk full")
        self.saved.append((job.job_id, job.state, job.progress_percent))

    def get_job(self, job_id):
        raise JobNotFound(job_id)


def test_happy_path_transitions_and_events():
    broadcaster = ProgressBroadcaster()
    repo = RecordingRepo()
    tracker = JobTracker(broadcaster=broadcaster, repo=repo)
    job = tracker.create(REQUEST, job_id="j1")
    sub = broadcaster.subscribe("j1")

    tracker.start("j1")
    assert tracker.progress("j1", 40)
    assert tracker.complete("j1", Path("out.gif"))

    events = list(sub)
    assert [(e.percent, e.status) for e in events] == [
        (0, ProgressStatus.PROCESSING),
        (40, ProgressStatus.PROCESSING),
        (100, ProgressStatus.COMPLETED),
    ]
    final = tracker.get("j1")
    assert final.state is JobState.COMPLETED
    assert final.output_path == Path("out.gif")
    assert final.completed_at is not None
    assert job.state is JobState.PENDING
    assert [state for _, state, _ in repo.saved] == [
        JobState.PENDING,
        JobState.PROCESSING,
        JobState.PROCESSING,
        JobState.COMPLETED,
    ]


def test_progress_never_regresses_and_is_clamped():
    tracker = JobTracker()
    tracker.create(REQUEST, job_id="j1")
    tracker.start("j1")

    assert tracker.progress("j1", 60)
    assert not tracker.progress("j1", 30)
    assert tracker.progress("j1", 250)
    assert tracker.get("j1").progress_percent == 100


def test_terminal_states_are_final(logger):
    tracker = JobTracker(logger=logger)
    tracker.create(REQUEST, job_id="j1")
    tracker.start("j1")
    assert tracker.fail("j1", "boom")

    assert not tracker.complete("j1", Path("late.gif"))
    assert not tracker.fail("j1", "again", FailureReason.STALLED)
    assert not tracker.progress("j1", 90)
    with pytest.raises(InvalidTransition):
        tracker.start("j1")

    job = tracker.get("j1")
    assert job.state is JobState.FAILED
    assert job.error_detail == "boom"
    assert job.failure_reason is FailureReason.RENDER_FAILED
    assert job.output_path is None
    assert "job.transition_ignored" in logger.names()


def test_pending_job_can_be_failed_but_not_completed():
    tracker = JobTracker()
    tracker.create(REQUEST, job_id="j1")

    assert not tracker.complete("j1", Path("x.gif"))
    assert tracker.fail("j1", "cancelled", FailureReason.CANCELLED)
    assert tracker.current_event("j1").status is ProgressStatus.ERROR


def test_duplicate_and_unknown_ids():
    tracker = JobTracker()
    tracker.create(REQUEST, job_id="j1")
    with pytest.raises(ValidationError):
        tracker.create(REQUEST, job_id="j1")
    with pytest.raises(JobNotFound):
        tracker.get("missing")
    with pytest.raises(JobNotFound):
        tracker.start("missing")


def test_stalled_reports_processing_jobs_without_recent_progress():
    clock = FakeClock()
    tracker = JobTracker(clock=clock)
    for job_id in ("a", "b", "c"):
        tracker.create(REQUEST, job_id=job_id)
    tracker.start("a")
    tracker.start("b")

    clock.advance(30)
    tracker.progress("b", 10)
    clock.advance(40)

    assert tracker.stalled(60) == ["a"]
    assert sorted(tracker.unfinished()) == ["a", "b", "c"]


def test_persist_failure_does_not_break_transitions(logger):
    tracker = JobTracker(repo=RecordingRepo(fail=True), logger=logger)
    tracker.create(REQUEST, job_id="j1")
    tracker.start("j1")
    assert tracker.complete("j1", Path("o.gif"))
    assert "job.persist_failed" in logger.names()


def test_release_only_drops_terminal_jobs():
    tracker = JobTracker()
    tracker.create(REQUEST, job_id="j1")
    tracker.release("j1")
    assert tracker.get("j1").state is JobState.PENDING

    tracker.fail("j1", "x")
    tracker.release("j1")
    with pytest.raises(JobNotFound):
        tracker.get("j1")


def test_released_job_is_served_from_the_repository(tmp_path):
    tracker = JobTracker(repo=SQLiteRepository(tmp_path / "jobs.db"))
    tracker.create(REQUEST, job_id="j1")
    tracker.start("j1")
    tracker.complete("j1", tmp_path / "j1.gif")

    assert tracker.release("j1")
    assert tracker.unfinished() == []
    assert tracker.get("j1").output_path == tmp_path / "j1.gif"
    event = tracker.current_event("j1")
    assert (event.status, event.percent) == (ProgressStatus.COMPLETED, 100)
    assert not tracker.fail("j1", "late cancel", FailureReason.CANCELLED)
    assert tracker.get("j1").state is JobState.COMPLETED

    assert tracker.current_event("nope") is None
    with pytest.raises(JobNotFound):
        tracker.fail("nope", "x")


def test_unsaved_jobs_are_not_released(logger):
    tracker = JobTracker(repo=RecordingRepo(fail=True), logger=logger)
    tracker.create(REQUEST, job_id="j1")
    tracker.fail("j1", "boom")

    assert not tracker.release("j1")
    assert tracker.get("j1").error_detail == "boom"
