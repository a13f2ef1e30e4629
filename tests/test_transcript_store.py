from pathlib import Path

from gif_clip_factory.domain.errors import UpstreamAnalysisError
from gif_clip_factory.domain.models import MediaMetadata, TranscriptSegment
from gif_clip_factory.infrastructure.transcript import transcript_store
from gif_clip_factory.infrastructure.transcript.transcript_store import (
    TranscriptStore,
    normalize_segments,
    parse_srt,
    placeholder_segments,
)


class DummyRepo:
    def __init__(self, transcripts=None):
        self.transcripts = dict(transcripts or {})

    def get_transcript(self, video_id):
        return self.transcripts.get(video_id)

    def save_transcript(self, video_id, segments):
        self.transcripts[video_id] = list(segments)


class DummyTranscriber:
    def __init__(self, result=None, error=None):
        self.result = result or []
        self.error = error
        self.audio_paths = []

    def transcribe(self, audio_path: Path):
        self.audio_paths.append(audio_path)
        if self.error:
            raise self.error
        return self.result


MEDIA = MediaMetadata(path=Path("talk.mp4"), duration_sec=25, width=640, height=360, container_format="mp4", size_bytes=1)


def test_placeholder_buckets_cover_the_whole_video():
    segments = placeholder_segments(25, 10)
    assert [(s.start, s.end) for s in segments] == [(0, 10), (10, 20), (20, 25)]
    assert all(s.text == "" for s in segments)
    assert placeholder_segments(0, 10) == []


def test_missing_transcript_falls_back_to_placeholders_without_saving():
    repo = DummyRepo()
    segments = TranscriptStore(repo, bucket_sec=10).get_or_create_transcript("v1", MEDIA)

    assert len(segments) == 3
    assert repo.transcripts == {}


def test_stored_transcript_is_normalized():
    repo = DummyRepo(
        {
            "v1": [
                TranscriptSegment(start=12, end=14, text=" later "),
                TranscriptSegment(start=5, end=3, text="broken"),
                TranscriptSegment(start=-1, end=2, text="first"),
                TranscriptSegment(start=1, end=6, text="overlap"),
            ]
        }
    )
    segments = TranscriptStore(repo, bucket_sec=10).get_or_create_transcript("v1", MEDIA)
    assert [(s.start, s.end, s.text) for s in segments] == [(0, 2, "first"), (1, 6, "overlap"), (12, 14, "later")]


def test_transcriber_result_is_saved(monkeypatch, tmp_path):
    extracted = []

    def fake_extract(ffmpeg_bin, input_video, output_wav, timeout_sec=None):
        extracted.append(input_video)
        output_wav.write_bytes(b"RIFF")

    monkeypatch.setattr(transcript_store, "extract_audio", fake_extract)
    repo = DummyRepo()
    transcriber = DummyTranscriber(result=[TranscriptSegment(start=0, end=4, text="hello")])
    store = TranscriptStore(repo, bucket_sec=10, transcriber=transcriber, temp_dir=tmp_path)

    segments = store.get_or_create_transcript("v1", MEDIA)

    assert [s.text for s in segments] == ["hello"]
    assert repo.transcripts["v1"] == segments
    assert extracted == [MEDIA.path]
    # temporary audio is gone once transcription finishes
    assert not transcriber.audio_paths[0].exists()


def test_transcriber_failure_degrades_to_placeholders(monkeypatch, tmp_path, logger):
    monkeypatch.setattr(transcript_store, "extract_audio", lambda *a, **k: None)
    store = TranscriptStore(
        DummyRepo(),
        bucket_sec=10,
        transcriber=DummyTranscriber(error=UpstreamAnalysisError("model missing")),
        temp_dir=tmp_path,
        logger=logger,
    )

    segments = store.get_or_create_transcript("v1", MEDIA)

    assert len(segments) == 3
    assert "transcript.transcriber_failed" in logger.names()


def test_parse_srt_reads_blocks():
    text = (
        "1\n00:00:01,000 --> 00:00:03,500\nHello there\n\n"
        "2\n00:00:04,000 --> 00:00:06,000\nsecond\nline\n\n"
        "garbage block\n"
    )
    segments = parse_srt(text)
    assert [(s.start, s.end, s.text) for s in segments] == [(1.0, 3.5, "Hello there"), (4.0, 6.0, "second line")]


def test_normalize_drops_non_finite_times():
    segments = normalize_segments([TranscriptSegment(start=float("nan"), end=1, text="x")])
    assert segments == []
