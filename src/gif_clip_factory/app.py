from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

from gif_clip_factory.application.job_processor import JobProcessor
from gif_clip_factory.application.job_tracker import JobTracker
from gif_clip_factory.application.moment_selector import MomentSelector
from gif_clip_factory.application.progress_broadcaster import ProgressBroadcaster
from gif_clip_factory.application.retention_sweeper import RetentionSweeper
from gif_clip_factory.domain.moment_rules import ClipPolicy, MomentRuleEngine
from gif_clip_factory.infrastructure.llm.gemini_client import GeminiMomentAnalyzer
from gif_clip_factory.infrastructure.probe.media_inspector import MediaInspector
from gif_clip_factory.infrastructure.render.ffmpeg_builder import GifCommandBuilder
from gif_clip_factory.infrastructure.render.gif_renderer import GifRenderer
from gif_clip_factory.infrastructure.storage.sqlite_repo import SQLiteRepository
from gif_clip_factory.infrastructure.transcriber.faster_whisper import FasterWhisperTranscriber
from gif_clip_factory.infrastructure.transcript.transcript_store import TranscriptStore
from gif_clip_factory.utils.config import Settings, load_settings
from gif_clip_factory.utils.logger import configure_logger, get_logger


def default_root() -> Path:
    return Path(__file__).resolve().parents[2]


def build_processor(root_dir: Path, settings: Settings | None = None) -> JobProcessor:
    load_dotenv(root_dir / ".env")
    configure_logger()
    logger = get_logger()
    settings = settings or load_settings(root_dir)

    repo = SQLiteRepository(settings.app.work_dir / "jobs.db")
    policy = ClipPolicy(
        min_clip_sec=settings.policy.min_clip_sec,
        max_clip_sec=settings.policy.max_clip_sec,
        caption_max_chars=settings.policy.caption_max_chars,
    )

    inspector = MediaInspector(settings.render.ffprobe_bin, settings.policy, logger=logger)

    transcriber = None
    if settings.transcript.use_transcriber:
        transcriber = FasterWhisperTranscriber(model=settings.transcript.transcriber_model)
    transcripts = TranscriptStore(
        repo=repo,
        bucket_sec=settings.transcript.bucket_sec,
        transcriber=transcriber,
        ffmpeg_bin=settings.render.ffmpeg_bin,
        temp_dir=settings.temp_dir,
        audio_timeout_sec=settings.policy.render_timeout_sec,
        logger=logger,
    )

    selector = MomentSelector(
        analyzer=GeminiMomentAnalyzer(
            api_key=settings.llm.gemini_api_key,
            model=settings.llm.gemini_model,
            prompt_path=root_dir / "prompts" / "moment_selector.md",
            json_repair=settings.llm.json_repair,
        ),
        rule_engine=MomentRuleEngine(policy, logger=logger),
        max_prompt_chars=settings.llm.max_prompt_chars,
        max_moments=settings.llm.max_moments,
        max_retries=settings.llm.max_retries,
        logger=logger,
    )

    renderer = GifRenderer(
        command_builder=GifCommandBuilder(settings.render),
        output_dir=settings.output_dir,
        temp_dir=settings.temp_dir,
        render_timeout_sec=settings.policy.render_timeout_sec,
        stall_timeout_sec=settings.app.stall_timeout_sec,
        logger=logger,
    )

    broadcaster = ProgressBroadcaster(logger=logger)
    tracker = JobTracker(broadcaster=broadcaster, repo=repo, logger=logger)
    sweeper = RetentionSweeper(
        targets=settings.cleanup.targets,
        interval_minutes=settings.cleanup.interval_minutes,
        min_safe_age_minutes=settings.cleanup.min_safe_age_minutes,
        logger=logger,
    )

    return JobProcessor(
        repo=repo,
        inspector=inspector,
        transcripts=transcripts,
        selector=selector,
        renderer=renderer,
        tracker=tracker,
        broadcaster=broadcaster,
        sweeper=sweeper,
        policy=policy,
        caption_style=settings.caption,
        render_parallelism=settings.app.render_parallelism,
        queue_size=settings.app.queue_size,
        stall_timeout_sec=settings.app.stall_timeout_sec,
        watchdog_interval_sec=settings.app.watchdog_interval_sec,
        logger=logger,
    )
