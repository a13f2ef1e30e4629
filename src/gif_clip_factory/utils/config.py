from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from gif_clip_factory.domain.models import CaptionPosition, CaptionStyle, CleanupTarget, QualityTier


@dataclass(slots=True)
class AppConfig:
    work_dir: Path
    render_parallelism: int
    queue_size: int
    stall_timeout_sec: float
    watchdog_interval_sec: float = 5.0


@dataclass(slots=True)
class PolicyConfig:
    max_duration_sec: float
    max_height: int
    min_clip_sec: float
    max_clip_sec: float
    caption_max_chars: int
    probe_timeout_sec: float
    render_timeout_sec: float


@dataclass(slots=True)
class TierSettings:
    fps: int
    max_dimension: int
    max_colors: int = 256
    dither: str = "sierra2_4a"


@dataclass(slots=True)
class RenderConfig:
    ffmpeg_bin: str
    ffprobe_bin: str
    tiers: dict[QualityTier, TierSettings]
    loop: int = 0
    final_delay_cs: int = 50


@dataclass(slots=True)
class TranscriptConfig:
    bucket_sec: float
    use_transcriber: bool
    transcriber_model: str


@dataclass(slots=True)
class LLMConfig:
    max_retries: int
    json_repair: bool
    max_prompt_chars: int
    max_moments: int
    gemini_model: str
    gemini_api_key: str


@dataclass(slots=True)
class CleanupConfig:
    interval_minutes: float
    min_safe_age_minutes: float
    targets: list[CleanupTarget] = field(default_factory=list)


@dataclass(slots=True)
class Settings:
    app: AppConfig
    policy: PolicyConfig
    render: RenderConfig
    caption: CaptionStyle
    transcript: TranscriptConfig
    llm: LLMConfig
    cleanup: CleanupConfig
    root_dir: Path

    @property
    def temp_dir(self) -> Path:
        return self.app.work_dir / "temp"

    @property
    def output_dir(self) -> Path:
        return self.app.work_dir / "gifs"


DEFAULT_TIERS = {
    QualityTier.LOW: TierSettings(fps=10, max_dimension=320, max_colors=64, dither="bayer"),
    QualityTier.MEDIUM: TierSettings(fps=15, max_dimension=480, max_colors=128, dither="sierra2_4a"),
    QualityTier.HIGH: TierSettings(fps=20, max_dimension=720, max_colors=256, dither="floyd_steinberg"),
}


def _load_tiers(raw: dict) -> dict[QualityTier, TierSettings]:
    tiers = dict(DEFAULT_TIERS)
    for name, values in raw.items():
        tier = QualityTier(name)
        base = DEFAULT_TIERS[tier]
        tiers[tier] = TierSettings(
            fps=int(values.get("fps", base.fps)),
            max_dimension=int(values.get("max_dimension", base.max_dimension)),
            max_colors=max(2, min(256, int(values.get("max_colors", base.max_colors)))),
            dither=str(values.get("dither", base.dither)),
        )
    return tiers


def _resolve(root_dir: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root_dir / path


def load_settings(root_dir: Path, config_path: Path | None = None) -> Settings:
    config_path = config_path or root_dir / "config" / "default.toml"
    with config_path.open("rb") as fh:
        raw = tomllib.load(fh)

    app = raw["app"]
    policy = raw["policy"]
    render = raw["render"]
    caption = raw.get("caption", {})
    transcript = raw.get("transcript", {})
    llm = raw.get("llm", {})
    cleanup = raw.get("cleanup", {})

    work_dir = _resolve(root_dir, os.getenv("GIF_CLIP_WORK_DIR") or str(app.get("work_dir", "runs")))

    return Settings(
        app=AppConfig(
            work_dir=work_dir,
            render_parallelism=max(1, int(app["render_parallelism"])),
            queue_size=max(0, int(app.get("queue_size", 16))),
            stall_timeout_sec=float(app.get("stall_timeout_sec", 60)),
            watchdog_interval_sec=float(app.get("watchdog_interval_sec", 5)),
        ),
        policy=PolicyConfig(
            max_duration_sec=float(policy["max_duration_sec"]),
            max_height=int(policy["max_height"]),
            min_clip_sec=float(policy["min_clip_sec"]),
            max_clip_sec=float(policy["max_clip_sec"]),
            caption_max_chars=int(policy["caption_max_chars"]),
            probe_timeout_sec=float(policy.get("probe_timeout_sec", 30)),
            render_timeout_sec=float(policy.get("render_timeout_sec", 180)),
        ),
        render=RenderConfig(
            ffmpeg_bin=str(render.get("ffmpeg_bin", "ffmpeg")),
            ffprobe_bin=str(render.get("ffprobe_bin", "ffprobe")),
            tiers=_load_tiers(render.get("tiers", {})),
            loop=int(render.get("loop", 0)),
            final_delay_cs=int(render.get("final_delay_cs", 50)),
        ),
        caption=CaptionStyle(
            font_size=int(caption.get("font_size", 24)),
            font_color=str(caption.get("font_color", "white")),
            border_color=str(caption.get("border_color", "black")),
            border_width=int(caption.get("border_width", 2)),
            position=CaptionPosition(caption.get("position", "bottom")),
            margin=int(caption.get("margin", 12)),
            font_file=str(caption.get("font_file", "")),
        ),
        transcript=TranscriptConfig(
            bucket_sec=float(transcript.get("bucket_sec", 10)),
            use_transcriber=bool(transcript.get("use_transcriber", False)),
            transcriber_model=os.getenv("FASTER_WHISPER_MODEL", str(transcript.get("transcriber_model", "small"))),
        ),
        llm=LLMConfig(
            max_retries=int(llm.get("max_retries", 1)),
            json_repair=bool(llm.get("json_repair", True)),
            max_prompt_chars=int(llm.get("max_prompt_chars", 12000)),
            max_moments=int(llm.get("max_moments", 3)),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        ),
        cleanup=CleanupConfig(
            interval_minutes=float(cleanup.get("interval_minutes", 30)),
            min_safe_age_minutes=float(cleanup.get("min_safe_age_minutes", 15)),
            targets=[
                CleanupTarget(
                    directory=_resolve(work_dir, str(target["directory"])),
                    max_age_minutes=float(target["max_age_minutes"]),
                    pattern=target.get("pattern") or None,
                )
                for target in cleanup.get("targets", [])
            ],
        ),
        root_dir=root_dir,
    )
