from __future__ import annotations

import json
import ssl
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

import certifi

from gif_clip_factory.domain.errors import UpstreamAnalysisError


class GeminiMomentAnalyzer:
    """Asks Gemini for candidate GIF moments. Output is returned raw and unvalidated."""

    def __init__(
        self,
        api_key: str,
        model: str,
        prompt_path: Path,
        json_repair: bool = True,
        timeout_sec: int = 90,
    ) -> None:
        self.api_key = api_key.strip()
        self.model = model
        self.prompt_path = prompt_path
        self.json_repair = json_repair
        self.timeout_sec = timeout_sec
        self.ssl_context = self._build_ssl_context()

    def propose_moments(
        self,
        transcript_text: str,
        prompt: str,
        min_sec: int,
        max_sec: int,
        caption_max_chars: int,
        max_moments: int,
    ) -> list[dict[str, Any]]:
        if not self.api_key:
            raise UpstreamAnalysisError("GEMINI_API_KEY is empty")

        system_prompt = self.prompt_path.read_text(encoding="utf-8")
        user_prompt = (
            f'theme="{prompt}", max_moments={max_moments}, min_sec={min_sec}, max_sec={max_sec}, '
            f"caption_max_chars={caption_max_chars}\n\n"
            "Transcript:\n"
            f"{transcript_text}"
        )
        payload = {
            "contents": [{"parts": [{"text": f"{system_prompt}\n\n{user_prompt}"}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": {
                    "type": "ARRAY",
                    "items": {
                        "type": "OBJECT",
                        "properties": {
                            "startTime": {"type": "NUMBER"},
                            "endTime": {"type": "NUMBER"},
                            "caption": {"type": "STRING"},
                            "confidence": {"type": "NUMBER"},
                        },
                        "required": ["startTime", "endTime", "caption", "confidence"],
                    },
                },
                "temperature": 0.2,
            },
        }
        response_json = self._request_json(self._endpoint(), payload)
        return self._parse_moments(response_json)

    def _endpoint(self) -> str:
        return (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            f"{self.model}:generateContent?key={self.api_key}"
        )

    def _request_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        req = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec, context=self.ssl_context) as res:
                body = res.read().decode("utf-8")
        except urllib.error.HTTPError as exc:  # pragma: no cover
            detail = str(exc)
            try:
                error_body = exc.read().decode("utf-8")
                detail = json.loads(error_body).get("error", {}).get("message") or error_body
            except (OSError, ValueError, AttributeError):
                pass
            raise UpstreamAnalysisError(f"Gemini HTTP {exc.code}: {detail}") from exc
        except (urllib.error.URLError, TimeoutError) as exc:  # pragma: no cover
            raise UpstreamAnalysisError(f"Gemini request failed: {exc}") from exc

        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise UpstreamAnalysisError("Gemini response was not valid JSON") from exc

    def _parse_moments(self, response_json: dict[str, Any]) -> list[dict[str, Any]]:
        text = self._extract_text(response_json)
        if not text:
            block_reason = response_json.get("promptFeedback", {}).get("blockReason")
            raise UpstreamAnalysisError(f"Gemini response body was empty (blockReason={block_reason})")

        raw = self._loads_json(text)
        if isinstance(raw, dict):
            raw = raw.get("moments") or raw.get("suggestions") or []
        if not isinstance(raw, list):
            raise UpstreamAnalysisError("Gemini response JSON must be an array of moments")
        return raw

    def _extract_text(self, response_json: dict[str, Any]) -> str:
        candidates = response_json.get("candidates") or []
        if not candidates:
            return ""
        for part in candidates[0].get("content", {}).get("parts", []):
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                return text.strip()
        return ""

    def _loads_json(self, text: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            if not self.json_repair:
                raise UpstreamAnalysisError("Gemini returned invalid JSON") from None
        try:
            return json.loads(self._repair_json_text(text))
        except json.JSONDecodeError as exc:
            raise UpstreamAnalysisError("Gemini returned invalid JSON (repair failed)") from exc

    def _repair_json_text(self, text: str) -> str:
        body = text.strip()
        if body.startswith("```"):
            lines = body.splitlines()
            if len(lines) >= 3 and lines[-1].strip() == "```":
                body = "\n".join(lines[1:-1]).strip()
            if body.lower().startswith("json"):
                body = body[4:].strip()

        array_start, array_end = body.find("["), body.rfind("]")
        if array_start != -1 and array_start < array_end:
            return body[array_start : array_end + 1]

        object_start, object_end = body.find("{"), body.rfind("}")
        if object_start != -1 and object_start < object_end:
            return body[object_start : object_end + 1]
        return body

    def _build_ssl_context(self) -> ssl.SSLContext:
        return ssl.create_default_context(cafile=certifi.where())
