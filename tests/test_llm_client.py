"""Tests for the OpenAI-compatible LLM client."""

import json
from unittest.mock import MagicMock

import pytest

from exam_trainer.config.app_config import AppConfig, LLMSettings, ProviderConfig
from exam_trainer.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponseError,
    extract_json_object,
)


def _completion(content: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


@pytest.fixture
def openai_client():
    return MagicMock()


@pytest.fixture
def client(openai_client) -> LLMClient:
    config = LLMConfig(provider="openai", model="test-model")
    return LLMClient(config=config, openai_client=openai_client)


class TestLLMConfig:
    def test_from_app_config(self, monkeypatch):
        monkeypatch.setenv("TEST_KEY", "sk-test")
        app_config = AppConfig(
            providers={"custom": ProviderConfig(base_url="http://llm.test/v1", default_model="m1", api_key_env="TEST_KEY")},
            llm=LLMSettings(provider="custom", temperature=0.2),
        )

        config = LLMConfig.from_app_config(app_config)

        assert config.base_url == "http://llm.test/v1"
        assert config.model == "m1"
        assert config.api_key == "sk-test"
        assert config.temperature == 0.2

    def test_model_override(self):
        app_config = AppConfig(
            providers={"openai": ProviderConfig(base_url=None, default_model="gpt-4o-mini")},
            llm=LLMSettings(provider="openai", model="gpt-4o"),
        )
        assert LLMConfig.from_app_config(app_config).model == "gpt-4o"

    def test_lmstudio_placeholder_key(self):
        app_config = AppConfig(
            providers={"lmstudio": ProviderConfig(base_url="http://localhost:1234/v1", default_model="local")},
            llm=LLMSettings(provider="lmstudio"),
        )
        assert LLMConfig.from_app_config(app_config).api_key == "lm-studio"


class TestExtractJsonObject:
    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_block_after_reasoning(self):
        text = '<think>{"draft": true}</think>Here:\n```json\n{"word": "go"}\n```'
        assert extract_json_object(text) == {"word": "go"}

    def test_object_inside_prose(self):
        assert extract_json_object('Sure! {"score": 7} Hope that helps.') == {"score": 7}

    def test_arrays_are_not_objects(self):
        assert extract_json_object("[1, 2]") is None

    def test_no_json(self):
        assert extract_json_object("I cannot help with that.") is None


class TestCompleteJson:
    """JSON completions with one repair round."""

    def test_json_mode_requested_for_openai(self, client, openai_client):
        openai_client.chat.completions.create.return_value = _completion('{"a": 1}')

        assert client.complete_json("sys", "user", kind="lookupWord") == {"a": 1}

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["temperature"] == 0.7

    def test_json_mode_skipped_for_lmstudio(self, openai_client):
        client = LLMClient(config=LLMConfig(provider="lmstudio"), openai_client=openai_client)
        openai_client.chat.completions.create.return_value = _completion('{"a": 1}')

        client.complete_json("sys", "user", kind="lookupWord")

        assert "response_format" not in openai_client.chat.completions.create.call_args.kwargs

    def test_json_mode_forced_by_config(self, openai_client):
        config = LLMConfig(provider="lmstudio", supports_json_object=True)
        client = LLMClient(config=config, openai_client=openai_client)
        openai_client.chat.completions.create.return_value = _completion('{"a": 1}')

        client.complete_json("sys", "user", kind="lookupWord")

        assert openai_client.chat.completions.create.call_args.kwargs["response_format"] == {"type": "json_object"}

    def test_temperature_override(self, client, openai_client):
        openai_client.chat.completions.create.return_value = _completion('{"score": 7}')

        client.complete_json("sys", "user", kind="gradeWriting", temperature=0.3)

        assert openai_client.chat.completions.create.call_args.kwargs["temperature"] == 0.3

    def test_repair_round_names_the_content_kind(self, client, openai_client):
        openai_client.chat.completions.create.side_effect = [
            _completion("not json"),
            _completion(json.dumps({"fixed": True})),
        ]

        assert client.complete_json("sys", "user", kind="generateTestPaper") == {"fixed": True}

        retry_messages = openai_client.chat.completions.create.call_args.kwargs["messages"]
        assert retry_messages[-2] == {"role": "assistant", "content": "not json"}
        assert "generateTestPaper" in retry_messages[-1]["content"]
        assert "not json" in retry_messages[-1]["content"]

    def test_gives_up_after_repair(self, client, openai_client):
        openai_client.chat.completions.create.return_value = _completion("still not json")

        with pytest.raises(LLMResponseError, match="gradeWriting"):
            client.complete_json("sys", "user", kind="gradeWriting")
        assert openai_client.chat.completions.create.call_count == 2

    def test_connection_error(self, client, openai_client):
        openai_client.chat.completions.create.side_effect = Exception("Connection refused")

        with pytest.raises(LLMConnectionError):
            client.complete_json("sys", "user", kind="lookupWord")

    def test_other_provider_error(self, client, openai_client):
        openai_client.chat.completions.create.side_effect = Exception("rate limited")

        with pytest.raises(LLMError, match="LLM call failed"):
            client.complete_json("sys", "user", kind="lookupWord")

    def test_empty_choices(self, client, openai_client):
        response = _completion("")
        response.choices = []
        openai_client.chat.completions.create.return_value = response

        with pytest.raises(LLMResponseError):
            client.complete_json("sys", "user", kind="lookupWord")


class TestSynthesizeSpeech:
    def test_requests_pcm(self, client, openai_client):
        openai_client.audio.speech.create.return_value.content = b"\x01\x00"

        pcm = client.synthesize_speech("Hello", voice="nova", model="tts-1")

        assert pcm == b"\x01\x00"
        kwargs = openai_client.audio.speech.create.call_args.kwargs
        assert kwargs == {"model": "tts-1", "voice": "nova", "input": "Hello", "response_format": "pcm"}

    def test_failure_wrapped(self, client, openai_client):
        openai_client.audio.speech.create.side_effect = Exception("unsupported voice")

        with pytest.raises(LLMError, match="Speech synthesis failed"):
            client.synthesize_speech("Hello", voice="x", model="tts-1")

    def test_unreachable_server(self, client, openai_client):
        openai_client.audio.speech.create.side_effect = Exception("Connection error.")

        with pytest.raises(LLMConnectionError):
            client.synthesize_speech("Hello", voice="nova", model="tts-1")
