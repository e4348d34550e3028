"""Shared fixtures: scripted generation gateway and sample content."""

from __future__ import annotations

import asyncio
import copy
from typing import Any
from unittest.mock import MagicMock

import pytest

from exam_trainer.config.app_config import clear_config_cache
from exam_trainer.core.audio import encode_pcm_base64
from exam_trainer.core.gateway import GenerationFailedError, GenerationGateway
from exam_trainer.core.models import Grade, GenerationKind, Publisher, Term, TextbookSelection


class FakeGateway(GenerationGateway):
    """Gateway with scripted responses per action.

    A response may be a dict (returned as the body), an exception instance
    (raised wrapped in GenerationFailedError), or a list of either, consumed
    one per call. Set ``hold`` to an asyncio.Event to block calls until set.
    """

    def __init__(self, responses: dict[GenerationKind, Any] | None = None):
        self.responses: dict[GenerationKind, Any] = dict(responses or {})
        self.calls: list[tuple[GenerationKind, dict[str, Any]]] = []
        self.hold: asyncio.Event | None = None
        self.closed = False

    def kinds_called(self) -> list[GenerationKind]:
        return [kind for kind, _ in self.calls]

    async def _call(self, kind: GenerationKind, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((kind, payload))
        if self.hold is not None:
            await self.hold.wait()

        if kind not in self.responses:
            raise GenerationFailedError(kind, "no scripted response")
        response = self.responses[kind]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, BaseException):
            raise GenerationFailedError(kind, response)
        return copy.deepcopy(response)

    async def aclose(self) -> None:
        self.closed = True


def pcm_payload(samples: list[int]) -> str:
    """Base64 little-endian int16 PCM for the given samples."""
    raw = b"".join(s.to_bytes(2, "little", signed=True) for s in samples)
    return encode_pcm_base64(raw)


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path, monkeypatch):
    """Never read a real config file during tests."""
    monkeypatch.setenv("EXAM_TRAINER_CONFIG", str(tmp_path / "missing.yaml"))
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def selection() -> TextbookSelection:
    return TextbookSelection(publisher=Publisher.PEP, grade=Grade.EIGHT, term=Term.TWO)


@pytest.fixture
def practice_body() -> dict[str, Any]:
    """A generateVocabAndGrammar response body."""
    return {
        "vocab": [
            {"english": "volunteer", "chinese": "志愿者", "partOfSpeech": "n.", "example": "She is a volunteer."},
            {"english": "look forward to", "chinese": "期待", "partOfSpeech": "phr.", "example": "I look forward to it."},
            {"english": "cheer up", "chinese": "振作", "partOfSpeech": "phr.", "example": "Cheer up, Tom!"},
        ],
        "grammar": {
            "title": "A Busy Weekend",
            "story": "Last Sunday I {{1}} to the park. My sister is {{2}} than me.",
            "blanks": [
                {"id": 1, "hint": "", "answer": "went", "explanation": "Simple past of go."},
                {"id": 2, "hint": "", "answer": "taller", "explanation": "Comparative."},
            ],
        },
    }


@pytest.fixture
def paper_body() -> dict[str, Any]:
    """A generateTestPaper response body: 3 sections worth 10 points each."""
    return {
        "title": "Unit 1-2 Test",
        "listeningScript": "Man: Where are you going?\nWoman: To the library.",
        "sections": [
            {
                "id": "s1",
                "title": "Listening",
                "type": "listening",
                "questions": [
                    {
                        "id": "q1",
                        "type": "multiple_choice",
                        "prompt": "Where is the woman going?",
                        "options": ["To the park", "To the library", "Home", "To school"],
                        "correctAnswer": "To the library",
                        "explanation": "She says the library.",
                        "maxScore": 5,
                    },
                    {
                        "id": "q2",
                        "type": "boolean",
                        "prompt": "The man asks the question.",
                        "correctAnswer": "True",
                        "maxScore": 5,
                    },
                ],
            },
            {
                "id": "s2",
                "title": "Reading",
                "type": "reading",
                "readingPassage": "Paris is the capital of France.",
                "questions": [
                    {
                        "id": "q3",
                        "type": "fill_in_blank",
                        "prompt": "The capital of France is ____.",
                        "correctAnswer": "paris",
                        "maxScore": 5,
                    },
                    {
                        "id": "q4",
                        "type": "boolean",
                        "prompt": "Paris is in Spain.",
                        "correctAnswer": "False",
                        "maxScore": 5,
                    },
                ],
            },
            {
                "id": "s3",
                "title": "Writing",
                "type": "writing",
                "questions": [
                    {
                        "id": "q5",
                        "type": "writing",
                        "prompt": "Write about your best friend.",
                        "maxScore": 10,
                    },
                ],
            },
        ],
    }


@pytest.fixture
def feedback_body() -> dict[str, Any]:
    return {"score": 7, "feedback": "Good structure.", "improvedVersion": "My best friend is Li Hua."}


@pytest.fixture
def lookup_body() -> dict[str, Any]:
    return {
        "word": "volunteer",
        "phonetic": "/ˌvɒlənˈtɪə/",
        "chinese": "志愿者",
        "englishDefinition": "a person who works without pay",
        "example": "He is a volunteer at the hospital.",
    }


@pytest.fixture
def speech_body() -> dict[str, Any]:
    return {"audioData": pcm_payload([0, 16384, -16384, 32767, -32768])}


@pytest.fixture
def fake_gateway(practice_body, paper_body, feedback_body, lookup_body, speech_body) -> FakeGateway:
    """Gateway where every action succeeds."""
    return FakeGateway({
        GenerationKind.VOCAB_AND_GRAMMAR: practice_body,
        GenerationKind.TEST_PAPER: paper_body,
        GenerationKind.SPEECH: speech_body,
        GenerationKind.GRADE_WRITING: feedback_body,
        GenerationKind.LOOKUP_WORD: lookup_body,
    })


@pytest.fixture
def mock_llm_client():
    """Mock LLM client that returns fixed responses without calling a real LLM."""
    client = MagicMock()
    client.config = MagicMock()
    client.config.provider = "openai"
    client.config.model = "test-model"
    return client
