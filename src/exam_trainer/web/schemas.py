"""Pydantic schemas for Web API.

Request/response models for the generation endpoint and trainer sessions.
Content (practice, paper, result) is serialized with its camelCase wire keys.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from exam_trainer.core.models import (
    Grade,
    Publisher,
    Term,
    TextbookSelection,
)


# =============================================================================
# GENERATION SCHEMAS
# =============================================================================


class GenerateRequest(BaseModel):
    """One generation service call."""

    action: str
    payload: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# SESSION SCHEMAS
# =============================================================================


class TextbookRequest(BaseModel):
    """Textbook selection; all three fields are required."""

    publisher: Publisher
    grade: Grade
    term: Term

    def to_selection(self) -> TextbookSelection:
        return TextbookSelection(publisher=self.publisher, grade=self.grade, term=self.term)


class SessionCreateRequest(BaseModel):
    """Start a session, optionally configured right away."""

    textbook: TextbookRequest | None = None


class PracticeStartRequest(BaseModel):
    units: list[int] = Field(default_factory=list)


class TestStartRequest(BaseModel):
    __test__ = False  # not a pytest class

    units: list[int] = Field(default_factory=list)
    is_zhongkao: bool = False


class AnswerRequest(BaseModel):
    text: str = Field(default="", max_length=5000)


class VocabCheckRequest(BaseModel):
    inputs: dict[str, str] = Field(default_factory=dict)


class GrammarCheckRequest(BaseModel):
    inputs: dict[int, str] = Field(default_factory=dict)


class CheckResponse(BaseModel):
    results: dict[str, bool]
    correct: int
    total: int


class LookupRequest(BaseModel):
    word: str = Field(..., min_length=1, max_length=200)


class PassageReportResponse(BaseModel):
    orphan_placeholders: list[int] = Field(default_factory=list)
    unused_blanks: list[int] = Field(default_factory=list)
    duplicate_blank_ids: list[int] = Field(default_factory=list)


class SessionResponse(BaseModel):
    """Snapshot of a trainer session."""

    session_id: str
    created_at: str
    mode: str
    busy: bool = False
    textbook: TextbookSelection | None = None
    units: list[int] = Field(default_factory=list)
    is_zhongkao: bool = False
    practice: dict[str, Any] | None = None
    passage_report: PassageReportResponse | None = None
    paper: dict[str, Any] | None = None
    has_listening_audio: bool = False
    answers: dict[str, str] = Field(default_factory=dict)
    result: dict[str, Any] | None = None


# =============================================================================
# HEALTH SCHEMAS
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
