"""OpenAI client: JSON completions for classification, Whisper for audio."""

import json
import os
from dataclasses import dataclass
from typing import Any

from openai import OpenAI, OpenAIError

from pacelane.observability.logging import get_logger
from pacelane.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_CLASSIFIER_MODEL = "gpt-4o-mini"
TRANSCRIPTION_MODEL = "whisper-1"
REQUEST_TIMEOUT = 20.0


class LLMResponseError(Exception):
    """The model answered with something that is not a JSON object."""

    pass


@dataclass(frozen=True)
class Transcription:
    text: str
    error: str | None = None


class OpenAIClient:
    def __init__(self, api_key: str, model: str | None = None, client: OpenAI | None = None) -> None:
        self.client = client or OpenAI(api_key=api_key, timeout=REQUEST_TIMEOUT, max_retries=1)
        self.model = model or os.environ.get("OPENAI_CLASSIFIER_MODEL", DEFAULT_CLASSIFIER_MODEL)

    def complete(self, prompt: str) -> dict[str, Any]:
        """Run a JSON-mode chat completion and return the decoded object.

        Raises:
            openai.OpenAIError: Service unavailable or request rejected.
            LLMResponseError: Response is not a JSON object.
        """
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=0,
        )
        content = response.choices[0].message.content or ""
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise LLMResponseError("response is not valid JSON") from e
        if not isinstance(parsed, dict):
            raise LLMResponseError("response is not a JSON object")
        return parsed

    def transcribe(self, audio: bytes, filename: str) -> Transcription:
        """Transcribe audio with Whisper. Failures come back in Transcription.error."""
        try:
            text = self.client.audio.transcriptions.create(
                model=TRANSCRIPTION_MODEL,
                file=(filename, audio),
                response_format="text",
            )
        except OpenAIError as e:
            logger.warning(
                "transcription request failed",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__, size=len(audio))},
            )
            return Transcription(text="", error=type(e).__name__)
        return Transcription(text=str(text))


_llm_client: OpenAIClient | None = None


def get_llm_client() -> OpenAIClient | None:
    """Process-wide client; None when OPENAI_API_KEY is not configured."""
    global _llm_client
    if _llm_client is None:
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            return None
        _llm_client = OpenAIClient(api_key=api_key)
    return _llm_client
