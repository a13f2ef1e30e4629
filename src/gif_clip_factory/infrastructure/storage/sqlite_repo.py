from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from gif_clip_factory.domain.errors import JobNotFound, VideoNotFound
from gif_clip_factory.domain.models import (
    Caption,
    CaptionPosition,
    CaptionStyle,
    ClipRequest,
    FailureReason,
    JobState,
    QualityTier,
    RenderJob,
    TranscriptSegment,
    VideoRecord,
    utc_now,
)


def _request_to_json(request: ClipRequest) -> str:
    caption = None
    if request.caption is not None:
        style = request.caption.style
        caption = {
            "text": request.caption.text,
            "font_size": style.font_size,
            "font_color": style.font_color,
            "border_color": style.border_color,
            "border_width": style.border_width,
            "position": style.position.value,
            "margin": style.margin,
            "font_file": style.font_file,
        }
    return json.dumps(
        {
            "source": str(request.source),
            "start_sec": request.start_sec,
            "end_sec": request.end_sec,
            "quality": request.quality.value,
            "fps": request.fps,
            "scale": request.scale,
            "caption": caption,
        },
        ensure_ascii=False,
    )


def _request_from_json(raw: str) -> ClipRequest:
    payload = json.loads(raw)
    caption = None
    if payload.get("caption"):
        c = payload["caption"]
        caption = Caption(
            text=str(c["text"]),
            style=CaptionStyle(
                font_size=int(c["font_size"]),
                font_color=str(c["font_color"]),
                border_color=str(c["border_color"]),
                border_width=int(c["border_width"]),
                position=CaptionPosition(c["position"]),
                margin=int(c["margin"]),
                font_file=str(c.get("font_file") or ""),
            ),
        )
    return ClipRequest(
        source=Path(payload["source"]),
        start_sec=float(payload["start_sec"]),
        end_sec=float(payload["end_sec"]),
        quality=QualityTier(payload["quality"]),
        fps=payload.get("fps"),
        scale=payload.get("scale"),
        caption=caption,
    )


class SQLiteRepository:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=10)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS videos (
                    video_id TEXT PRIMARY KEY,
                    path TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    request TEXT NOT NULL,
                    state TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    output_path TEXT NOT NULL DEFAULT '',
                    error_detail TEXT NOT NULL DEFAULT '',
                    failure_reason TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS transcripts (
                    video_id TEXT PRIMARY KEY,
                    segments TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

    def register_video(self, path: Path, title: str = "", video_id: str | None = None) -> VideoRecord:
        record = VideoRecord(video_id=video_id or uuid4().hex[:12], path=Path(path), title=title or Path(path).stem)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO videos (video_id, path, title, created_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(video_id) DO UPDATE SET path = excluded.path, title = excluded.title
                """,
                (record.video_id, str(record.path), record.title, utc_now().isoformat()),
            )
        return record

    def get_video(self, video_id: str) -> VideoRecord:
        with self._connect() as conn:
            row = conn.execute("SELECT video_id, path, title FROM videos WHERE video_id = ?", (video_id,)).fetchone()
        if not row:
            raise VideoNotFound(f"Video not found: {video_id}")
        return VideoRecord(video_id=row[0], path=Path(row[1]), title=row[2])

    def save_job(self, job: RenderJob) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO jobs (
                    job_id, request, state, progress, output_path, error_detail,
                    failure_reason, created_at, updated_at, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(job_id) DO UPDATE SET
                    state = excluded.state,
                    progress = excluded.progress,
                    output_path = excluded.output_path,
                    error_detail = excluded.error_detail,
                    failure_reason = excluded.failure_reason,
                    updated_at = excluded.updated_at,
                    completed_at = excluded.completed_at
                """,
                (
                    job.job_id,
                    _request_to_json(job.request),
                    job.state.value,
                    job.progress_percent,
                    str(job.output_path) if job.output_path else "",
                    job.error_detail,
                    job.failure_reason.value if job.failure_reason else "",
                    job.created_at.isoformat(),
                    job.updated_at.isoformat(),
                    job.completed_at.isoformat() if job.completed_at else "",
                ),
            )

    def get_job(self, job_id: str) -> RenderJob:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT job_id, request, state, progress, output_path, error_detail,
                       failure_reason, created_at, updated_at, completed_at
                FROM jobs WHERE job_id = ?
                """,
                (job_id,),
            ).fetchone()
        if not row:
            raise JobNotFound(f"Job not found: {job_id}")
        return RenderJob(
            job_id=row[0],
            request=_request_from_json(row[1]),
            state=JobState(row[2]),
            progress_percent=int(row[3]),
            output_path=Path(row[4]) if row[4] else None,
            error_detail=row[5],
            failure_reason=FailureReason(row[6]) if row[6] else None,
            created_at=datetime.fromisoformat(row[7]),
            updated_at=datetime.fromisoformat(row[8]),
            completed_at=datetime.fromisoformat(row[9]) if row[9] else None,
        )

    def save_transcript(self, video_id: str, segments: list[TranscriptSegment]) -> None:
        payload = json.dumps([{"start": s.start, "end": s.end, "text": s.text} for s in segments], ensure_ascii=False)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO transcripts (video_id, segments, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(video_id) DO UPDATE SET segments = excluded.segments, updated_at = excluded.updated_at
                """,
                (video_id, payload, utc_now().isoformat()),
            )

    def get_transcript(self, video_id: str) -> list[TranscriptSegment] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT segments FROM transcripts WHERE video_id = ?", (video_id,)).fetchone()
        if not row:
            return None
        return [
            TranscriptSegment(start=float(s["start"]), end=float(s["end"]), text=str(s["text"]))
            for s in json.loads(row[0])
        ]
