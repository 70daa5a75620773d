"""Tests for the OpenAI client wrapper."""

from unittest.mock import MagicMock

import httpx
import openai
import pytest

from pacelane.llm.openai_client import LLMResponseError, OpenAIClient, get_llm_client


def _completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


class TestComplete:
    def test_decodes_json_object(self):
        sdk = MagicMock()
        sdk.chat.completions.create.return_value = _completion('{"intent": "NOTE", "confidence": 0.7}')
        client = OpenAIClient(api_key="k", model="test-model", client=sdk)

        assert client.complete("classify") == {"intent": "NOTE", "confidence": 0.7}
        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"] == [{"role": "user", "content": "classify"}]

    @pytest.mark.parametrize("content", ["not json", "[1, 2]", None])
    def test_rejects_non_objects(self, content):
        sdk = MagicMock()
        sdk.chat.completions.create.return_value = _completion(content)
        with pytest.raises(LLMResponseError):
            OpenAIClient(api_key="k", client=sdk).complete("x")

    def test_model_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_CLASSIFIER_MODEL", "gpt-x")
        assert OpenAIClient(api_key="k", client=MagicMock()).model == "gpt-x"


class TestTranscribe:
    def test_returns_text(self):
        sdk = MagicMock()
        sdk.audio.transcriptions.create.return_value = "hello there"
        result = OpenAIClient(api_key="k", client=sdk).transcribe(b"abc", "a.ogg")

        assert result.text == "hello there"
        assert result.error is None
        assert sdk.audio.transcriptions.create.call_args.kwargs["file"] == ("a.ogg", b"abc")

    def test_failure_is_reported_not_raised(self):
        sdk = MagicMock()
        request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
        sdk.audio.transcriptions.create.side_effect = openai.APIConnectionError(request=request)
        result = OpenAIClient(api_key="k", client=sdk).transcribe(b"abc", "a.ogg")

        assert result.text == ""
        assert result.error == "APIConnectionError"


def test_no_client_without_api_key():
    assert get_llm_client() is None
