from pathlib import Path

import pytest

from gif_clip_factory.domain.errors import ValidationError
from gif_clip_factory.domain.moment_rules import ClipPolicy, MomentRuleEngine, validate_clip_request
from gif_clip_factory.domain.models import Caption, CaptionStyle, ClipRequest, MediaMetadata


def _engine(logger=None) -> MomentRuleEngine:
    return MomentRuleEngine(ClipPolicy(min_clip_sec=1, max_clip_sec=8, caption_max_chars=20), logger=logger)


def _moment(**overrides):
    item = {"startTime": 2, "endTime": 6, "caption": "nice", "confidence": 0.5}
    item.update(overrides)
    return item


def test_validate_rejects_end_beyond_max_clip_length(logger):
    moments = _engine(logger).validate([{"startTime": 0, "endTime": 15, "caption": "intro", "confidence": 0.9}])

    assert moments == []
    assert ("warning", "selector.invalid_candidate") in [(lvl, name) for lvl, name, _ in logger.events]


@pytest.mark.parametrize(
    "bad",
    [
        {"startTime": None},
        {"endTime": "10"},
        {"startTime": True},
        {"startTime": float("nan")},
        {"startTime": -1},
        {"startTime": 6, "endTime": 6},
        {"startTime": 6, "endTime": 5},
        {"startTime": 0, "endTime": 0.5},
        {"caption": ""},
        {"caption": "   "},
        {"caption": "x" * 21},
        {"caption": 42},
        {"confidence": 1.2},
        {"confidence": -0.1},
    ],
)
def test_validate_rejects_malformed_candidates(bad):
    assert _engine().validate([_moment(**bad)]) == []


def test_validate_ignores_non_objects():
    assert _engine().validate(["nope", 3, None, [1, 2]]) == []


def test_validate_sorts_by_confidence_and_trims_caption():
    moments = _engine().validate(
        [
            _moment(confidence=0.2, caption=" low "),
            _moment(confidence=0.9, caption="high"),
            _moment(confidence=0.5, caption="mid"),
        ]
    )
    assert [m.caption for m in moments] == ["high", "mid", "low"]


def test_validate_rounds_to_whole_seconds_when_still_compliant():
    moment = _engine().validate([_moment(startTime=1.4, endTime=4.2)])[0]
    assert (moment.start_sec, moment.end_sec) == (1.0, 5.0)


def test_validate_keeps_fractional_bounds_when_rounding_would_overflow():
    moment = _engine().validate([_moment(startTime=1.5, endTime=9.2)])[0]
    assert (moment.start_sec, moment.end_sec) == (1.5, 9.2)


def test_clip_request_limits():
    policy = ClipPolicy(min_clip_sec=1, max_clip_sec=8, caption_max_chars=10)
    ok = ClipRequest(source=Path("in.mp4"), start_sec=5, end_sec=10)
    validate_clip_request(ok, policy)
    validate_clip_request(ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, quality="low"), policy)
    validate_clip_request(
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, caption=Caption("hi", CaptionStyle(font_color="#FFCC00@0.8"))),
        policy,
    )

    for bad in (
        ClipRequest(source=Path("in.mp4"), start_sec=-1, end_sec=2),
        ClipRequest(source=Path("in.mp4"), start_sec=3, end_sec=3),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=8.5),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, fps=0),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, scale=4000),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, caption=Caption("  ")),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, caption=Caption("far too long text")),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, caption=Caption("hi", CaptionStyle(font_size=0))),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, quality="ultra"),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, caption=Caption("hi", CaptionStyle(font_color="red:x=1"))),
        ClipRequest(source=Path("in.mp4"), start_sec=0, end_sec=2, caption=Caption("hi", CaptionStyle(border_color="black,drawbox"))),
    ):
        with pytest.raises(ValidationError):
            validate_clip_request(bad, policy)


def test_clip_request_must_start_inside_the_video():
    policy = ClipPolicy(min_clip_sec=1, max_clip_sec=8, caption_max_chars=10)
    media = MediaMetadata(path=Path("in.mp4"), duration_sec=30, width=640, height=360, container_format="mp4", size_bytes=1)

    validate_clip_request(ClipRequest(source=Path("in.mp4"), start_sec=25, end_sec=31), policy, media)
    with pytest.raises(ValidationError, match="beyond the end"):
        validate_clip_request(ClipRequest(source=Path("in.mp4"), start_sec=30, end_sec=32), policy, media)
