"""FastAPI application factory.

Main entry point for the exam trainer Web API.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from exam_trainer import __version__
from exam_trainer.config.app_config import load_app_config
from exam_trainer.web.routes import (
    generate_router,
    health_router,
    sessions_router,
)
from exam_trainer.web.sessions import get_session_manager

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup/shutdown events."""
    config = load_app_config()
    logger.info(
        "api_startup",
        provider=config.llm.provider,
        gateway_mode=config.gateway.mode,
    )
    yield
    await get_session_manager().aclose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="English Exam Trainer API",
        description="Practice generation, mock tests and grading",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(generate_router)
    app.include_router(sessions_router)

    return app


# Default app instance for uvicorn
app = create_app()
