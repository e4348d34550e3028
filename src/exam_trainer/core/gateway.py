"""Generation gateway.

Uniform boundary to the content generation service. Every call is one
``{action, payload}`` request; every failure (network, non-2xx status,
malformed JSON, structurally invalid content) surfaces as
``GenerationFailedError(kind, cause)``.

Two transports:
- LocalGateway: runs the generation service in-process (worker thread)
- HttpGateway: POSTs to a remote ``/api/generate`` endpoint
"""

from __future__ import annotations

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from exam_trainer.config.app_config import AppConfig, SpeechConfig, load_app_config
from exam_trainer.core.content_generator import handle_action
from exam_trainer.core.models import (
    GenerationKind,
    GradeWritingRequest,
    LookupWordRequest,
    PracticeSession,
    SpeechRequest,
    TestPaper,
    TestPaperRequest,
    TextbookSelection,
    VocabAndGrammarRequest,
    WordDefinition,
    WritingFeedback,
)
from exam_trainer.llm.client import LLMClient

logger = structlog.get_logger(__name__)


class GenerationError(Exception):
    """Error reaching the generation service."""

    pass


class GenerationFailedError(GenerationError):
    """A gateway call failed; no partial result is available."""

    def __init__(self, kind: GenerationKind, cause: BaseException | str):
        self.kind = kind
        self.cause = cause
        super().__init__(f"{kind.value} failed: {cause}")


class GenerationGateway(ABC):
    """Typed client for the five generation service actions."""

    @abstractmethod
    async def _call(self, kind: GenerationKind, payload: dict[str, Any]) -> dict[str, Any]:
        """Send one request and return the decoded response body.

        Raises:
            GenerationFailedError: On any transport or service failure
        """

    async def aclose(self) -> None:
        """Release transport resources."""

    async def generate_vocab_and_grammar(self, selection: TextbookSelection, units: list[int]) -> PracticeSession:
        request = VocabAndGrammarRequest(
            publisher=selection.publisher, grade=selection.grade, term=selection.term, units=units
        )
        kind = GenerationKind.VOCAB_AND_GRAMMAR
        body = await self._call(kind, request.to_wire())
        practice = _parse(kind, PracticeSession, body)

        # Ids come from the gateway, not the service
        stamp = int(time.time() * 1000)
        for index, item in enumerate(practice.vocab):
            item.id = f"vocab-{stamp}-{index}-{uuid.uuid4().hex[:6]}"
        return practice

    async def generate_test_paper(
        self, selection: TextbookSelection, units: list[int], is_zhongkao: bool = False
    ) -> TestPaper:
        request = TestPaperRequest(
            publisher=selection.publisher,
            grade=selection.grade,
            term=selection.term,
            units=units,
            is_zhongkao=is_zhongkao,
        )
        kind = GenerationKind.TEST_PAPER
        body = await self._call(kind, request.to_wire())
        paper = _parse(kind, TestPaper, body)
        paper.id = f"test-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
        return paper

    async def generate_speech(self, script: str) -> str:
        """Return base64 PCM audio for a listening script."""
        kind = GenerationKind.SPEECH
        body = await self._call(kind, SpeechRequest(text=script).to_wire())
        audio = body.get("audioData")
        if not isinstance(audio, str) or not audio:
            raise GenerationFailedError(kind, "response carries no audioData")
        return audio

    async def grade_writing(self, prompt: str, student_answer: str, grade_level: str) -> WritingFeedback:
        request = GradeWritingRequest(question=prompt, student_answer=student_answer, grade_level=grade_level)
        kind = GenerationKind.GRADE_WRITING
        body = await self._call(kind, request.to_wire())
        return _parse(kind, WritingFeedback, body)

    async def lookup_word(self, term: str) -> WordDefinition:
        kind = GenerationKind.LOOKUP_WORD
        body = await self._call(kind, LookupWordRequest(word=term).to_wire())
        return _parse(kind, WordDefinition, body)


def _parse(kind: GenerationKind, model: type, body: dict[str, Any]):
    try:
        return model.model_validate(body)
    except ValidationError as e:
        logger.warning("gateway_response_invalid", kind=kind.value, errors=e.error_count())
        raise GenerationFailedError(kind, e) from e


class LocalGateway(GenerationGateway):
    """Runs the generation service in-process on a worker thread."""

    def __init__(self, client: LLMClient | None = None, speech: SpeechConfig | None = None):
        self._client = client
        self._speech = speech

    def _get_client(self) -> LLMClient:
        if self._client is None:
            self._client = LLMClient()
        return self._client

    async def _call(self, kind: GenerationKind, payload: dict[str, Any]) -> dict[str, Any]:
        logger.debug("gateway_request", transport="local", kind=kind.value)
        try:
            return await asyncio.to_thread(handle_action, self._get_client(), kind.value, payload, self._speech)
        except Exception as e:
            logger.warning("gateway_call_failed", transport="local", kind=kind.value, error=str(e))
            raise GenerationFailedError(kind, e) from e


class HttpGateway(GenerationGateway):
    """POSTs ``{action, payload}`` to a generation endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 180.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _call(self, kind: GenerationKind, payload: dict[str, Any]) -> dict[str, Any]:
        logger.debug("gateway_request", transport="http", kind=kind.value, url=self.url)
        try:
            r = await self._client.post(self.url, json={"action": kind.value, "payload": payload})
        except httpx.HTTPError as e:
            logger.warning("gateway_call_failed", transport="http", kind=kind.value, error=str(e))
            raise GenerationFailedError(kind, e) from e

        if not r.is_success:
            try:
                message = r.json().get("error") or r.reason_phrase
            except (ValueError, AttributeError):
                message = r.reason_phrase
            logger.warning("gateway_call_failed", transport="http", kind=kind.value, status=r.status_code)
            raise GenerationFailedError(kind, f"HTTP {r.status_code}: {message}")

        try:
            body = r.json()
        except ValueError as e:
            raise GenerationFailedError(kind, f"malformed JSON response: {e}") from e
        if not isinstance(body, dict):
            raise GenerationFailedError(kind, "response body is not a JSON object")
        return body

    async def aclose(self) -> None:
        await self._client.aclose()


def create_gateway(config: AppConfig | None = None) -> GenerationGateway:
    """Build the gateway selected by configuration."""
    if config is None:
        config = load_app_config()

    if config.gateway.mode == "http":
        return HttpGateway(config.gateway.url, timeout=config.gateway.timeout)
    return LocalGateway(speech=config.speech)
