"""Generation service endpoint.

``POST /api/generate`` with ``{action, payload}``. Success returns the
content JSON; failure returns ``{error}`` with a non-2xx status.
"""

import asyncio

import structlog
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from exam_trainer.config.app_config import SpeechConfig, load_app_config
from exam_trainer.core.content_generator import (
    ContentGenerationError,
    UnknownActionError,
    handle_action,
)
from exam_trainer.llm.client import LLMClient, LLMError
from exam_trainer.web.schemas import GenerateRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["generate"])

_llm_client: LLMClient | None = None


def get_generation_client() -> LLMClient:
    """Shared LLM client for the generation service."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client


def get_speech_config() -> SpeechConfig:
    return load_app_config().speech


@router.post("/generate")
async def generate(
    request: GenerateRequest,
    client: LLMClient = Depends(get_generation_client),
    speech: SpeechConfig = Depends(get_speech_config),
) -> JSONResponse:
    """Run one generation action."""
    try:
        body = await asyncio.to_thread(handle_action, client, request.action, request.payload, speech)
    except UnknownActionError as e:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(e)})
    except (ContentGenerationError, LLMError) as e:
        logger.error("generate_failed", action=request.action, error=str(e))
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(e)})

    return JSONResponse(content=body)
