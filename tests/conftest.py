import stat
import sys
from pathlib import Path

import pytest

from gif_clip_factory.utils.config import DEFAULT_TIERS, PolicyConfig, RenderConfig

FAKE_ENGINE = """#!{python}
import os
import sys
import time

args = sys.argv[1:]
out = args[-1]
mode = os.environ.get("FAKE_ENGINE_MODE", "ok")
steps = int(os.environ.get("FAKE_ENGINE_STEPS", "5"))
delay = float(os.environ.get("FAKE_ENGINE_DELAY", "0.01"))
duration = float(args[args.index("-t") + 1]) if "-t" in args else 1.0

if mode == "fail":
    sys.stderr.write("Invalid data found when processing input\\n")
    sys.exit(1)
if mode == "hang":
    time.sleep(30)

for i in range(1, steps + 1):
    print("frame=%d" % (i * 3), flush=True)
    print("out_time_us=%d" % int(duration * 1_000_000 * i / (steps + 1)), flush=True)
    print("progress=continue", flush=True)
    time.sleep(delay)

if mode != "empty":
    with open(out, "wb") as fh:
        fh.write(b"GIF89a" + os.urandom(32))
if mode != "noend":
    print("progress=end", flush=True)
"""


class DummyLogger:
    def __init__(self):
        self.events = []

    def _log(self, level, event, **kw):
        self.events.append((level, event, kw))

    def info(self, event, **kw):
        self._log("info", event, **kw)

    def warning(self, event, **kw):
        self._log("warning", event, **kw)

    def error(self, event, **kw):
        self._log("error", event, **kw)

    def exception(self, event, **kw):
        self._log("exception", event, **kw)

    def names(self):
        return [event for _, event, _ in self.events]


@pytest.fixture
def logger():
    return DummyLogger()


@pytest.fixture
def fake_engine(tmp_path: Path) -> Path:
    script = tmp_path / "fake-ffmpeg"
    script.write_text(FAKE_ENGINE.format(python=sys.executable), encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def render_config(fake_engine: Path) -> RenderConfig:
    return RenderConfig(ffmpeg_bin=str(fake_engine), ffprobe_bin="ffprobe", tiers=dict(DEFAULT_TIERS))


@pytest.fixture
def policy() -> PolicyConfig:
    return PolicyConfig(
        max_duration_sec=600,
        max_height=1080,
        min_clip_sec=1,
        max_clip_sec=8,
        caption_max_chars=100,
        probe_timeout_sec=5,
        render_timeout_sec=20,
    )
