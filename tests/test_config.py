import os
import time
from pathlib import Path

from gif_clip_factory.application.retention_sweeper import RetentionSweeper
from gif_clip_factory.domain.models import CaptionPosition, QualityTier
from gif_clip_factory.utils.config import load_settings

ROOT = Path(__file__).resolve().parents[1]


def test_default_config_loads(monkeypatch):
    for name in ("GIF_CLIP_WORK_DIR", "GEMINI_API_KEY", "GEMINI_MODEL", "FASTER_WHISPER_MODEL"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings(ROOT)

    assert settings.app.work_dir == ROOT / "runs"
    assert settings.temp_dir == ROOT / "runs" / "temp"
    assert settings.policy.max_clip_sec == 8
    assert settings.render.tiers[QualityTier.MEDIUM].fps == 15
    assert settings.render.tiers[QualityTier.HIGH].max_dimension == 720
    assert settings.caption.position is CaptionPosition.BOTTOM
    work = ROOT / "runs"
    assert [(t.directory.relative_to(work).as_posix(), t.max_age_minutes) for t in settings.cleanup.targets] == [
        ("temp", 60),
        ("gifs", 120),
        ("uploads/videos", 180),
        ("uploads/audios", 180),
        ("uploads/images", 180),
        ("uploads/gifs", 180),
    ]
    assert settings.cleanup.targets[1].pattern == r"\.(gif|mp4|avi|mov)$"
    assert settings.llm.gemini_api_key == ""


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("GIF_CLIP_WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setenv("GEMINI_MODEL", "gemini-test")
    settings = load_settings(ROOT)

    assert settings.app.work_dir == tmp_path / "work"
    assert settings.output_dir == tmp_path / "work" / "gifs"
    assert settings.cleanup.targets[0].directory == tmp_path / "work" / "temp"
    assert settings.llm.gemini_model == "gemini-test"


def test_partial_tier_table_keeps_defaults(tmp_path):
    config = tmp_path / "custom.toml"
    config.write_text(
        """
[app]
render_parallelism = 0

[policy]
max_duration_sec = 60
max_height = 720
min_clip_sec = 1
max_clip_sec = 4
caption_max_chars = 40

[render.tiers.low]
fps = 8
max_colors = 999
""",
        encoding="utf-8",
    )
    settings = load_settings(tmp_path, config_path=config)

    low = settings.render.tiers[QualityTier.LOW]
    assert (low.fps, low.max_dimension, low.max_colors) == (8, 320, 256)
    assert settings.render.tiers[QualityTier.MEDIUM].fps == 15
    assert settings.app.render_parallelism == 1
    assert settings.cleanup.targets == []


def test_default_targets_reach_uploaded_media(monkeypatch, tmp_path):
    monkeypatch.setenv("GIF_CLIP_WORK_DIR", str(tmp_path / "work"))
    settings = load_settings(ROOT)
    sweeper = RetentionSweeper(
        settings.cleanup.targets,
        min_safe_age_minutes=settings.cleanup.min_safe_age_minutes,
    )
    sweeper.ensure_directories()

    uploads = tmp_path / "work" / "uploads"
    assert sorted(p.name for p in uploads.iterdir()) == ["audios", "gifs", "images", "videos"]

    old = uploads / "videos" / "old.mp4"
    fresh = uploads / "images" / "fresh.png"
    for path, age_min in ((old, 999), (fresh, 10)):
        path.write_bytes(b"x")
        stamp = time.time() - age_min * 60
        os.utime(path, (stamp, stamp))

    assert sweeper.run_once() == 1
    assert not old.exists()
    assert fresh.exists()
