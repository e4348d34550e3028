"""LLM client for OpenAI-compatible providers.

Two calls back the generation service:
- complete_json: one content request answered with a JSON object, with a
  single repair round when the model's reply is not parseable
- synthesize_speech: one voice chunk as raw PCM

Supported providers: lmstudio (local, no speech), openai, anthropic
(OpenAI-compatible endpoint, no speech).
"""

from __future__ import annotations

import json
import os
import re
import time
from dataclasses import dataclass
from typing import Any

import structlog
from openai import OpenAI

from exam_trainer.config.app_config import AppConfig, load_app_config

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

# lmstudio and the anthropic compatibility layer reject {"type": "json_object"}
JSON_OBJECT_PROVIDERS = frozenset({"openai"})

REPAIR_PROMPT = """Your previous reply to the {kind} request was not a valid JSON object.
Return the same content as ONE JSON object with the requested keys.
No markdown, no commentary.

Previous reply:
<<<
{reply}
>>>"""

# Reasoning models wrap drafts in these tags
REASONING_BLOCK = re.compile(r"<(think|analysis|reasoning)>.*?</\1>", re.DOTALL | re.IGNORECASE)
FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class LLMError(Exception):
    """Error during LLM interaction."""

    pass


class LLMConnectionError(LLMError):
    """Provider unreachable."""

    pass


class LLMResponseError(LLMError):
    """Provider answered with unusable content."""

    pass


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Find a JSON object in a model reply.

    Tried in order: the whole reply, the first fenced code block, the span
    from the first ``{`` to the last ``}``. Reasoning blocks are removed
    first. Arrays and scalars do not count.
    """
    text = REASONING_BLOCK.sub("", text).strip()

    candidates = [text]
    fenced = FENCED_BLOCK.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


# =============================================================================
# CONFIG
# =============================================================================


@dataclass
class LLMConfig:
    """Resolved provider settings for one client."""

    provider: str = "openai"
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 8192
    timeout: int = 120
    api_key: str | None = None
    supports_json_object: bool | None = None

    @classmethod
    def from_app_config(cls, app_config: AppConfig | None = None) -> LLMConfig:
        if app_config is None:
            app_config = load_app_config()

        settings = app_config.llm
        provider_config = app_config.providers.get(settings.provider)
        if provider_config is None:
            logger.warning("provider_not_configured", provider=settings.provider)
            return cls(provider=settings.provider, api_key=os.environ.get("OPENAI_API_KEY"))

        return cls(
            provider=settings.provider,
            base_url=provider_config.base_url or "",
            model=settings.model or provider_config.default_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
            api_key=provider_config.get_api_key() or ("lm-studio" if settings.provider == "lmstudio" else None),
            supports_json_object=settings.supports_json_object,
        )

    @property
    def json_object_mode(self) -> bool:
        if self.supports_json_object is not None:
            return self.supports_json_object
        return self.provider in JSON_OBJECT_PROVIDERS


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """Content and speech calls against an OpenAI-compatible endpoint."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        model: str | None = None,
        openai_client: OpenAI | None = None,
    ):
        self.config = config or LLMConfig.from_app_config()
        if model is not None:
            self.config.model = model

        self._client = openai_client or OpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
        )
        logger.info("llm_client_initialized", provider=self.config.provider, model=self.config.model)

    def _provider_error(self, what: str, e: Exception) -> LLMError:
        message = str(e)
        if "Connection" in message or "connect" in message.lower():
            return LLMConnectionError(f"Could not connect to {self.config.provider} at {self.config.base_url}: {e}")
        return LLMError(f"{what} failed: {e}")

    def _complete(self, messages: list[dict[str, str]], temperature: float) -> str:
        request: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.config.max_tokens,
        }
        if self.config.json_object_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            response = self._client.chat.completions.create(**request)
        except Exception as e:
            raise self._provider_error("LLM call", e) from e

        if not response.choices:
            raise LLMResponseError("Empty response from LLM")
        return response.choices[0].message.content or ""

    def complete_json(
        self,
        system_prompt: str,
        user_message: str,
        kind: str,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        """Request one JSON object for a content kind.

        Raises:
            LLMConnectionError: If the provider is unreachable
            LLMResponseError: If no JSON object is obtained after the repair round
        """
        if temperature is None:
            temperature = self.config.temperature
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ]

        start_time = time.time()
        reply = self._complete(messages, temperature)
        parsed = extract_json_object(reply)

        if parsed is None:
            logger.warning("json_reply_unparseable", kind=kind, reply=reply[:100])
            messages += [
                {"role": "assistant", "content": reply},
                {"role": "user", "content": REPAIR_PROMPT.format(kind=kind, reply=reply[:4000])},
            ]
            parsed = extract_json_object(self._complete(messages, temperature))
            if parsed is None:
                raise LLMResponseError(f"{kind}: no JSON object in reply: {reply[:200]}")
            logger.info("json_reply_repaired", kind=kind)

        logger.debug("llm_json_completed", kind=kind, latency_ms=int((time.time() - start_time) * 1000))
        return parsed

    def synthesize_speech(self, text: str, voice: str, model: str) -> bytes:
        """Synthesize one chunk as headerless 24 kHz s16le mono PCM."""
        start_time = time.time()
        try:
            pcm = self._client.audio.speech.create(
                model=model,
                voice=voice,
                input=text,
                response_format="pcm",
            ).content
        except Exception as e:
            raise self._provider_error("Speech synthesis", e) from e

        logger.debug(
            "speech_synthesized",
            voice=voice,
            chars=len(text),
            bytes=len(pcm),
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return pcm
