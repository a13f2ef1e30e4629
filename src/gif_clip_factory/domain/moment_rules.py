from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from .errors import ValidationError
from .models import CaptionStyle, ClipRequest, MediaMetadata, QualityTier, SuggestedMoment

_COLOR_RE = re.compile(r"^(?:[A-Za-z]+|#?[0-9A-Fa-f]{6}(?:[0-9A-Fa-f]{2})?)(?:@(?:0(?:\.\d+)?|1(?:\.0+)?))?$")


@dataclass(slots=True)
class ClipPolicy:
    min_clip_sec: float
    max_clip_sec: float
    caption_max_chars: int


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


class MomentRuleEngine:
    """Filters untrusted candidate moments down to policy-compliant ones."""

    def __init__(self, policy: ClipPolicy, logger=None) -> None:
        self.policy = policy
        self.logger = logger

    def validate(self, raw_candidates: list[Any]) -> list[SuggestedMoment]:
        accepted: list[SuggestedMoment] = []
        for idx, item in enumerate(raw_candidates):
            moment, reason = self._check(item)
            if moment is None:
                if self.logger:
                    self.logger.warning("selector.invalid_candidate", index=idx, reason=reason)
                continue
            accepted.append(moment)
        accepted.sort(key=lambda m: m.confidence, reverse=True)
        return accepted

    def _check(self, item: Any) -> tuple[SuggestedMoment | None, str]:
        if not isinstance(item, dict):
            return None, "not an object"

        start = _as_number(item.get("startTime"))
        end = _as_number(item.get("endTime"))
        confidence = _as_number(item.get("confidence"))
        caption = item.get("caption")
        if start is None or end is None or confidence is None:
            return None, "missing numeric field"
        if not isinstance(caption, str):
            return None, "missing caption"

        caption = caption.strip()
        if start < 0:
            return None, "negative start"
        if end <= start:
            return None, "end before start"
        if not self._duration_ok(end - start):
            return None, "duration out of range"
        if not caption or len(caption) > self.policy.caption_max_chars:
            return None, "caption length"
        if not 0.0 <= confidence <= 1.0:
            return None, "confidence out of range"

        # snap to whole seconds only while the result stays compliant
        rounded_start, rounded_end = float(math.floor(start)), float(math.ceil(end))
        if self._duration_ok(rounded_end - rounded_start):
            start, end = rounded_start, rounded_end

        return SuggestedMoment(start_sec=start, end_sec=end, caption=caption, confidence=confidence), ""

    def _duration_ok(self, duration: float) -> bool:
        return self.policy.min_clip_sec <= duration <= self.policy.max_clip_sec


def validate_clip_request(
    request: ClipRequest,
    policy: ClipPolicy,
    media: MediaMetadata | None = None,
) -> None:
    start = _as_number(request.start_sec)
    end = _as_number(request.end_sec)
    if start is None or end is None:
        raise ValidationError("startTime and endTime must be finite numbers")
    if start < 0:
        raise ValidationError("startTime must be >= 0")
    if end <= start:
        raise ValidationError("endTime must be greater than startTime")
    if end - start > policy.max_clip_sec:
        raise ValidationError(f"clip length {end - start:.2f}s exceeds maximum of {policy.max_clip_sec}s")
    if request.fps is not None and not 1 <= request.fps <= 50:
        raise ValidationError("frameRate must be between 1 and 50")
    try:
        QualityTier(request.quality)
    except ValueError:
        choices = ", ".join(q.value for q in QualityTier)
        raise ValidationError(f"unknown quality {request.quality!r}, expected one of: {choices}") from None
    if request.scale is not None and not 16 <= request.scale <= 1920:
        raise ValidationError("scale must be between 16 and 1920 pixels")
    if request.caption is not None:
        text = request.caption.text.strip()
        if not text:
            raise ValidationError("caption text must not be empty")
        if len(text) > policy.caption_max_chars:
            raise ValidationError(f"caption exceeds {policy.caption_max_chars} characters")
        if request.caption.style.font_size <= 0:
            raise ValidationError("caption font size must be positive")
        validate_caption_style(request.caption.style)
    if media is not None and media.duration_sec > 0 and start >= media.duration_sec:
        raise ValidationError(
            f"startTime {start:.2f}s is beyond the end of the video ({media.duration_sec:.2f}s)"
        )


def validate_caption_style(style: CaptionStyle) -> None:
    """Accepts colour names and hex values, each with an optional @alpha suffix."""
    for color in (style.font_color, style.border_color):
        if not isinstance(color, str) or not _COLOR_RE.match(color):
            raise ValidationError(f"unsupported caption colour: {color!r}")
