from __future__ import annotations

from pathlib import Path

from gif_clip_factory.domain.errors import UpstreamAnalysisError
from gif_clip_factory.domain.models import TranscriptSegment


class FasterWhisperTranscriber:
    def __init__(self, model: str, device: str = "cpu", compute_type: str = "int8") -> None:
        self.model_name = model
        self.device = device
        self.compute_type = compute_type
        self._model = None

    def _get_model(self):
        if self._model is None:
            from faster_whisper import WhisperModel

            self._model = WhisperModel(self.model_name, device=self.device, compute_type=self.compute_type)
        return self._model

    def transcribe(self, audio_path: Path) -> list[TranscriptSegment]:
        try:
            segments_iter, _info = self._get_model().transcribe(str(audio_path), vad_filter=True)
            return [
                TranscriptSegment(start=float(seg.start), end=float(seg.end), text=seg.text.strip())
                for seg in segments_iter
            ]
        except (RuntimeError, OSError, ValueError) as exc:
            raise UpstreamAnalysisError(f"speech-to-text failed: {exc}") from exc
