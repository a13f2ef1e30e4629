import json
import os

import pytest

from gif_clip_factory.domain.errors import (
    DurationExceeded,
    InvalidMedia,
    ProbeError,
    ProbeTimeout,
    ResolutionExceeded,
)
from gif_clip_factory.infrastructure.probe import media_inspector
from gif_clip_factory.infrastructure.probe.media_inspector import MediaInspector
from gif_clip_factory.utils.media import CommandError, CommandTimeout


def _probe_json(duration="30.0", width=1280, height=720, streams=None):
    return json.dumps(
        {
            "streams": streams
            if streams is not None
            else [
                {"codec_type": "audio"},
                {"codec_type": "video", "width": width, "height": height, "r_frame_rate": "30000/1001"},
            ],
            "format": {"duration": duration, "format_name": "mov,mp4,m4a", "size": "2048"},
        }
    )


class FakeProbe:
    def __init__(self, output="", error=None):
        self.output = output
        self.error = error
        self.calls = []

    def __call__(self, cmd, cancel_event=None, timeout_sec=None):
        self.calls.append((cmd, timeout_sec))
        if self.error:
            raise self.error
        return self.output


@pytest.fixture
def video(tmp_path):
    path = tmp_path / "in.mp4"
    path.write_bytes(b"\0" * 2048)
    return path


def _install(monkeypatch, fake):
    monkeypatch.setattr(media_inspector, "run_command", fake)
    return fake


def test_probe_reads_metadata(monkeypatch, video, policy):
    fake = _install(monkeypatch, FakeProbe(_probe_json()))
    meta = MediaInspector("ffprobe", policy).probe(video)

    assert (meta.duration_sec, meta.width, meta.height) == (30.0, 1280, 720)
    assert meta.container_format == "mov,mp4,m4a"
    assert meta.size_bytes == 2048
    assert meta.fps == pytest.approx(29.97, rel=1e-3)
    cmd, timeout = fake.calls[0]
    assert cmd[0] == "ffprobe" and cmd[-1] == str(video)
    assert timeout == policy.probe_timeout_sec


def test_unchanged_file_is_probed_once(monkeypatch, video, policy):
    fake = _install(monkeypatch, FakeProbe(_probe_json()))
    inspector = MediaInspector("ffprobe", policy)

    first = inspector.probe(video)
    second = inspector.probe(video)

    assert first == second
    assert len(fake.calls) == 1


def test_changed_file_is_probed_again(monkeypatch, video, policy):
    fake = _install(monkeypatch, FakeProbe(_probe_json()))
    inspector = MediaInspector("ffprobe", policy)
    inspector.probe(video)

    stat = video.stat()
    os.utime(video, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
    inspector.probe(video)

    assert len(fake.calls) == 2


def test_policy_limits(monkeypatch, video, policy):
    _install(monkeypatch, FakeProbe(_probe_json(duration="601")))
    with pytest.raises(DurationExceeded):
        MediaInspector("ffprobe", policy).probe(video)

    _install(monkeypatch, FakeProbe(_probe_json(width=3840, height=2160)))
    with pytest.raises(ResolutionExceeded):
        MediaInspector("ffprobe", policy).probe(video)


@pytest.mark.parametrize(
    ("fake", "error"),
    [
        (FakeProbe(_probe_json(streams=[{"codec_type": "audio"}])), InvalidMedia),
        (FakeProbe(_probe_json(width=0, height=0)), InvalidMedia),
        (FakeProbe("not json"), ProbeError),
        (FakeProbe(error=CommandError("moov atom not found", returncode=1)), InvalidMedia),
        (FakeProbe(error=CommandTimeout("timed out")), ProbeTimeout),
    ],
)
def test_probe_failures_map_to_probe_errors(monkeypatch, video, policy, fake, error):
    _install(monkeypatch, fake)
    with pytest.raises(error):
        MediaInspector("ffprobe", policy).probe(video)


def test_missing_file_is_invalid_media(tmp_path, policy):
    with pytest.raises(InvalidMedia):
        MediaInspector("ffprobe", policy).probe(tmp_path / "nope.mp4")
