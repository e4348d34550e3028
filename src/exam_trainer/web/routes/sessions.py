"""Trainer session endpoints."""

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException, Response, status

from exam_trainer.core.audio import to_wav_bytes
from exam_trainer.core.gateway import GenerationFailedError
from exam_trainer.core.models import WordDefinition
from exam_trainer.core.session import (
    EmptyUnitSelectionError,
    InvalidTransitionError,
    SessionBusyError,
    StaleResponseError,
    UnknownQuestionError,
)
from exam_trainer.web.schemas import (
    AnswerRequest,
    CheckResponse,
    GrammarCheckRequest,
    LookupRequest,
    PassageReportResponse,
    PracticeStartRequest,
    SessionCreateRequest,
    SessionResponse,
    TestStartRequest,
    TextbookRequest,
    VocabCheckRequest,
)
from exam_trainer.web.sessions import ManagedSession, get_session_manager

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@contextmanager
def _session_errors() -> Iterator[None]:
    """Map state machine and gateway errors to HTTP errors."""
    try:
        yield
    except EmptyUnitSelectionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except UnknownQuestionError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except (InvalidTransitionError, SessionBusyError, StaleResponseError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except GenerationFailedError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e


async def _get_or_404(session_id: str) -> ManagedSession:
    session = await get_session_manager().get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' not found",
        )
    return session


def _to_response(session: ManagedSession) -> SessionResponse:
    trainer = session.trainer
    ctx = trainer.context
    report = ctx.passage_report
    return SessionResponse(
        session_id=session.session_id,
        created_at=session.created_at,
        mode=ctx.mode.value,
        busy=trainer.busy,
        textbook=ctx.selection,
        units=ctx.units,
        is_zhongkao=ctx.is_zhongkao,
        practice=ctx.practice.to_wire() if ctx.practice else None,
        passage_report=PassageReportResponse(
            orphan_placeholders=report.orphan_placeholders,
            unused_blanks=report.unused_blanks,
            duplicate_blank_ids=report.duplicate_blank_ids,
        ) if report else None,
        paper=ctx.paper.to_wire() if ctx.paper else None,
        has_listening_audio=bool(ctx.paper and ctx.paper.listening_audio is not None),
        answers=dict(ctx.answers),
        result=ctx.result.to_wire() if ctx.result else None,
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(request: SessionCreateRequest) -> SessionResponse:
    """Start a new trainer session."""
    selection = request.textbook.to_selection() if request.textbook else None
    session = await get_session_manager().create_session(selection)
    return _to_response(session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str) -> SessionResponse:
    """Get session state."""
    return _to_response(await _get_or_404(session_id))


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def end_session(session_id: str) -> None:
    """End a trainer session."""
    if not await get_session_manager().end_session(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session '{session_id}' not found",
        )


@router.put("/{session_id}/textbook", response_model=SessionResponse)
async def configure_textbook(session_id: str, request: TextbookRequest) -> SessionResponse:
    """Apply a textbook selection (from setup) and enter the dashboard."""
    session = await _get_or_404(session_id)
    with _session_errors():
        session.trainer.configure(request.to_selection())
    return _to_response(session)


@router.post("/{session_id}/change-textbook", response_model=SessionResponse)
async def change_textbook(session_id: str) -> SessionResponse:
    """Go back to setup, discarding all session data."""
    session = await _get_or_404(session_id)
    session.trainer.change_textbook()
    return _to_response(session)


@router.post("/{session_id}/dashboard", response_model=SessionResponse)
async def return_to_dashboard(session_id: str) -> SessionResponse:
    """Return to the dashboard, discarding practice/test data."""
    session = await _get_or_404(session_id)
    with _session_errors():
        session.trainer.return_to_dashboard()
    return _to_response(session)


@router.post("/{session_id}/practice", response_model=SessionResponse)
async def start_practice(session_id: str, request: PracticeStartRequest) -> SessionResponse:
    """Generate vocabulary and grammar practice."""
    session = await _get_or_404(session_id)
    with _session_errors():
        await session.trainer.start_practice(request.units)
    return _to_response(session)


@router.post("/{session_id}/practice/vocab-check", response_model=CheckResponse)
async def check_vocabulary(session_id: str, request: VocabCheckRequest) -> CheckResponse:
    session = await _get_or_404(session_id)
    with _session_errors():
        results = session.trainer.check_vocabulary(request.inputs)
    return CheckResponse(results=results, correct=sum(results.values()), total=len(results))


@router.post("/{session_id}/practice/grammar-check", response_model=CheckResponse)
async def check_grammar(session_id: str, request: GrammarCheckRequest) -> CheckResponse:
    session = await _get_or_404(session_id)
    with _session_errors():
        results = session.trainer.check_grammar(request.inputs)
    return CheckResponse(
        results={str(k): v for k, v in results.items()},
        correct=sum(results.values()),
        total=len(results),
    )


@router.post("/{session_id}/test", response_model=SessionResponse)
async def start_test(session_id: str, request: TestStartRequest) -> SessionResponse:
    """Generate a test paper (with listening audio when available)."""
    session = await _get_or_404(session_id)
    with _session_errors():
        await session.trainer.start_test(request.units, request.is_zhongkao)
    return _to_response(session)


@router.put("/{session_id}/answers/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def record_answer(session_id: str, question_id: str, request: AnswerRequest) -> None:
    session = await _get_or_404(session_id)
    with _session_errors():
        session.trainer.record_answer(question_id, request.text)


@router.post("/{session_id}/submit", response_model=SessionResponse)
async def submit_test(session_id: str) -> SessionResponse:
    """Grade the test and show the result."""
    session = await _get_or_404(session_id)
    with _session_errors():
        await session.trainer.submit_test()
    return _to_response(session)


@router.get("/{session_id}/audio")
async def listening_audio(session_id: str) -> Response:
    """Listening audio as a WAV file."""
    session = await _get_or_404(session_id)
    paper = session.trainer.context.paper
    if paper is None or paper.listening_audio is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No listening audio")
    return Response(content=to_wav_bytes(paper.listening_audio), media_type="audio/wav")


@router.post("/{session_id}/lookup")
async def lookup_word(session_id: str, request: LookupRequest) -> dict:
    """Explain a selected word or phrase."""
    session = await _get_or_404(session_id)
    with _session_errors():
        definition: WordDefinition = await session.trainer.lookup_word(request.word)
    return definition.to_wire()
