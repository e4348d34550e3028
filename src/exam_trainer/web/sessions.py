"""Session management for Web API.

Keeps one TrainerSession per browser session, all sharing one generation
gateway.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from exam_trainer.core.gateway import GenerationGateway, create_gateway
from exam_trainer.core.models import TextbookSelection
from exam_trainer.core.session import TrainerSession

logger = structlog.get_logger(__name__)


@dataclass
class ManagedSession:
    """A trainer session registered with the manager."""

    session_id: str
    trainer: TrainerSession
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class SessionManager:
    """Registry of active trainer sessions."""

    def __init__(self, gateway: GenerationGateway | None = None):
        self._sessions: dict[str, ManagedSession] = {}
        self._lock = asyncio.Lock()
        self._gateway = gateway

    def _get_gateway(self) -> GenerationGateway:
        if self._gateway is None:
            self._gateway = create_gateway()
        return self._gateway

    async def create_session(self, selection: TextbookSelection | None = None) -> ManagedSession:
        """Create a session in SETUP, configured immediately if a selection is given."""
        session_id = str(uuid.uuid4())[:8]
        trainer = TrainerSession(self._get_gateway())
        if selection is not None:
            trainer.configure(selection)

        session = ManagedSession(session_id=session_id, trainer=trainer)
        async with self._lock:
            self._sessions[session_id] = session

        logger.info("session_created", session_id=session_id, mode=trainer.mode.value)
        return session

    async def get_session(self, session_id: str) -> ManagedSession | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def end_session(self, session_id: str) -> bool:
        """Drop a session; a pending call's result will be discarded."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)

        if session is None:
            return False

        session.trainer.change_textbook()
        logger.info("session_ended", session_id=session_id)
        return True

    async def get_session_count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def aclose(self) -> None:
        if self._gateway is not None:
            await self._gateway.aclose()


# Global session manager instance
_session_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """Get the global session manager instance."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager


def reset_session_manager(gateway: GenerationGateway | None = None) -> None:
    """Reset the session manager (for testing)."""
    global _session_manager
    _session_manager = SessionManager(gateway) if gateway is not None else None
