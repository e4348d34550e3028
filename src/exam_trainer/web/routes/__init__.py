"""Route handlers for Web API."""

from exam_trainer.web.routes.health import router as health_router
from exam_trainer.web.routes.generate import router as generate_router
from exam_trainer.web.routes.sessions import router as sessions_router

__all__ = [
    "health_router",
    "generate_router",
    "sessions_router",
]
