from __future__ import annotations

from gif_clip_factory.application.retry_policy import retry
from gif_clip_factory.domain.errors import UpstreamAnalysisError
from gif_clip_factory.domain.moment_rules import MomentRuleEngine
from gif_clip_factory.domain.models import SuggestedMoment, TranscriptSegment
from gif_clip_factory.domain.protocols import MomentAnalyzer


def format_transcript(segments: list[TranscriptSegment], max_chars: int) -> str:
    """Render segments as ``[start-end s] text`` lines, cut at whole lines to fit ``max_chars``."""
    lines: list[str] = []
    used = 0
    for seg in segments:
        line = f"[{seg.start:.1f}-{seg.end:.1f}s] {seg.text}".rstrip()
        if used + len(line) + 1 > max_chars:
            break
        lines.append(line)
        used += len(line) + 1
    return "\n".join(lines)


class MomentSelector:
    def __init__(
        self,
        analyzer: MomentAnalyzer,
        rule_engine: MomentRuleEngine,
        max_prompt_chars: int,
        max_moments: int,
        max_retries: int = 1,
        retry_delay_sec: float = 1.5,
        logger=None,
    ) -> None:
        self.analyzer = analyzer
        self.rule_engine = rule_engine
        self.max_prompt_chars = max_prompt_chars
        self.max_moments = max_moments
        self.max_retries = max_retries
        self.retry_delay_sec = retry_delay_sec
        self.logger = logger

    def select_moments(self, transcript: list[TranscriptSegment], prompt: str) -> list[SuggestedMoment]:
        text = format_transcript(transcript, self.max_prompt_chars)
        policy = self.rule_engine.policy

        def call():
            return self.analyzer.propose_moments(
                transcript_text=text,
                prompt=prompt.strip(),
                min_sec=int(policy.min_clip_sec),
                max_sec=int(policy.max_clip_sec),
                caption_max_chars=policy.caption_max_chars,
                max_moments=self.max_moments,
            )

        try:
            raw = retry(
                call,
                retries=self.max_retries,
                delay_sec=self.retry_delay_sec,
                retry_on=(UpstreamAnalysisError,),
            )
        except Exception as exc:
            if self.logger:
                self.logger.warning("selector.analysis_failed", error=str(exc))
            return []

        if not isinstance(raw, list):
            if self.logger:
                self.logger.warning("selector.unexpected_payload", payload_type=type(raw).__name__)
            return []

        moments = self.rule_engine.validate(raw)
        if self.logger:
            self.logger.info("selector.completed", proposed=len(raw), accepted=len(moments))
        return moments
