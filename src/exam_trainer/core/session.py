"""Trainer session state machine.

Modes and legal transitions:

    SETUP --configure--> DASHBOARD
    DASHBOARD --start_practice--> PRACTICE
    DASHBOARD --start_test--> TEST_IN_PROGRESS --submit_test--> TEST_RESULT
    any non-SETUP --return_to_dashboard--> DASHBOARD (discards session data)
    any --change_textbook--> SETUP (discards everything)

All state lives in an explicit SessionContext. At most one generation or
grading call is in flight; a second one raises SessionBusyError. Leaving a
mode while a call is pending bumps an epoch counter, and the late result is
discarded when it arrives (StaleResponseError).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from exam_trainer.core.audio import AudioDecodeError, DecodedAudio, decode_pcm_base64
from exam_trainer.core.gateway import GenerationError, GenerationGateway
from exam_trainer.core.grading import grade_test
from exam_trainer.core.models import (
    PracticeSession,
    TestPaper,
    TestResult,
    TextbookSelection,
    WordDefinition,
)
from exam_trainer.core.practice import PassageReport, check_grammar, check_passage, check_vocabulary

logger = structlog.get_logger(__name__)


class AppMode(Enum):
    """Top-level trainer modes."""

    SETUP = "setup"
    DASHBOARD = "dashboard"
    PRACTICE = "practice"
    TEST_IN_PROGRESS = "test_in_progress"
    TEST_RESULT = "test_result"


class SessionError(Exception):
    """Error driving the trainer session."""

    pass


class InvalidTransitionError(SessionError):
    """Action not allowed in the current mode; state is unchanged."""

    pass


class EmptyUnitSelectionError(InvalidTransitionError):
    """No textbook units selected."""

    pass


class SessionBusyError(SessionError):
    """Another generation or grading call is still pending."""

    pass


class StaleResponseError(SessionError):
    """The session left the initiating mode before the call finished."""

    pass


class UnknownQuestionError(SessionError):
    """Answer recorded for a question that is not on the paper."""

    pass


@dataclass
class SessionContext:
    """Everything a trainer session holds.

    Only one of practice or paper/answers/result is populated at a time.
    """

    selection: TextbookSelection | None = None
    mode: AppMode = AppMode.SETUP
    units: list[int] = field(default_factory=list)
    is_zhongkao: bool = False
    practice: PracticeSession | None = None
    passage_report: PassageReport | None = None
    paper: TestPaper | None = None
    answers: dict[str, str] = field(default_factory=dict)
    result: TestResult | None = None

    def clear_session_data(self) -> None:
        self.units = []
        self.is_zhongkao = False
        self.practice = None
        self.passage_report = None
        self.paper = None
        self.answers = {}
        self.result = None


def normalize_units(units: Iterable[int]) -> list[int]:
    """Deduplicate and sort unit numbers.

    Raises:
        EmptyUnitSelectionError: If no unit is selected
        InvalidTransitionError: If a unit number is not a positive integer
    """
    result = set()
    for unit in units:
        if isinstance(unit, bool) or not isinstance(unit, int) or unit < 1:
            raise InvalidTransitionError(f"Invalid unit number: {unit!r}")
        result.add(unit)
    if not result:
        raise EmptyUnitSelectionError("Select at least one unit")
    return sorted(result)


class TrainerSession:
    """State machine for one student's practice/test flow."""

    def __init__(self, gateway: GenerationGateway, context: SessionContext | None = None):
        self.gateway = gateway
        self.context = context or SessionContext()
        self._epoch = 0
        self._pending: int | None = None

    # -------------------------------------------------------------------------
    # State helpers
    # -------------------------------------------------------------------------

    @property
    def mode(self) -> AppMode:
        return self.context.mode

    @property
    def busy(self) -> bool:
        return self._pending is not None

    def _set_mode(self, mode: AppMode) -> None:
        if mode is not self.context.mode:
            logger.info("mode_changed", from_mode=self.context.mode.value, to_mode=mode.value)
        self.context.mode = mode

    def _require(self, *modes: AppMode) -> None:
        if self.context.mode not in modes:
            allowed = ", ".join(m.value for m in modes)
            raise InvalidTransitionError(f"Not allowed in mode {self.context.mode.value} (needs {allowed})")

    def _begin(self) -> int:
        if self._pending is not None:
            raise SessionBusyError("Another request is still in progress")
        self._pending = self._epoch
        return self._epoch

    def _end(self, epoch: int) -> None:
        if self._pending == epoch:
            self._pending = None

    def _check_current(self, epoch: int, operation: str) -> None:
        if epoch != self._epoch:
            logger.info("stale_response_discarded", operation=operation)
            raise StaleResponseError(f"{operation} finished after the session moved on")

    def _leave(self) -> None:
        self._epoch += 1
        self._pending = None

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def configure(self, selection: TextbookSelection | None) -> None:
        """Apply a complete textbook selection and enter the dashboard."""
        self._require(AppMode.SETUP)
        if selection is None:
            raise InvalidTransitionError("A publisher, grade and term must be selected")
        self.context.selection = selection
        self._set_mode(AppMode.DASHBOARD)

    def change_textbook(self) -> None:
        """Return to setup from anywhere, discarding all session data."""
        self._leave()
        self.context.clear_session_data()
        self.context.selection = None
        self._set_mode(AppMode.SETUP)

    def return_to_dashboard(self) -> None:
        """Leave practice, test or result for the dashboard, discarding their data."""
        if self.context.mode is AppMode.SETUP:
            raise InvalidTransitionError("Configure a textbook first")
        self._leave()
        self.context.clear_session_data()
        self._set_mode(AppMode.DASHBOARD)

    # -------------------------------------------------------------------------
    # Practice
    # -------------------------------------------------------------------------

    async def start_practice(self, units: Iterable[int]) -> PracticeSession:
        """Generate vocabulary + grammar practice and enter practice mode.

        Raises:
            EmptyUnitSelectionError: No units given (no gateway call is made)
            GenerationFailedError: Generation failed; mode stays DASHBOARD
            StaleResponseError: The session moved on while generating
        """
        self._require(AppMode.DASHBOARD)
        selected = normalize_units(units)
        selection = self.context.selection

        epoch = self._begin()
        try:
            practice = await self.gateway.generate_vocab_and_grammar(selection, selected)
        except GenerationError:
            self._check_current(epoch, "start_practice")
            raise
        finally:
            self._end(epoch)
        self._check_current(epoch, "start_practice")

        report = check_passage(practice.grammar)
        if not report.is_consistent:
            logger.warning(
                "grammar_passage_mismatch",
                orphan_placeholders=report.orphan_placeholders,
                unused_blanks=report.unused_blanks,
                duplicate_blank_ids=report.duplicate_blank_ids,
            )

        self.context.units = selected
        self.context.practice = practice
        self.context.passage_report = report
        self._set_mode(AppMode.PRACTICE)
        return practice

    def check_vocabulary(self, inputs: dict[str, str]) -> dict[str, bool]:
        self._require(AppMode.PRACTICE)
        return check_vocabulary(self.context.practice.vocab, inputs)

    def check_grammar(self, inputs: dict[int, str]) -> dict[int, bool]:
        self._require(AppMode.PRACTICE)
        return check_grammar(self.context.practice.grammar, inputs)

    # -------------------------------------------------------------------------
    # Test
    # -------------------------------------------------------------------------

    async def _fetch_listening_audio(self, script: str) -> DecodedAudio | None:
        """Synthesize and decode listening audio; any failure means no audio."""
        try:
            payload = await self.gateway.generate_speech(script)
            audio = decode_pcm_base64(payload)
        except GenerationError as e:
            logger.warning("listening_audio_unavailable", reason="generation_failed", error=str(e))
            return None
        except AudioDecodeError as e:
            logger.warning("listening_audio_unavailable", reason="decode_failed", error=str(e))
            return None

        if len(audio) == 0:
            logger.warning("listening_audio_unavailable", reason="empty_audio")
            return None
        return audio

    async def start_test(self, units: Iterable[int], is_zhongkao: bool) -> TestPaper:
        """Generate a test paper (plus listening audio if possible) and start the test.

        Raises:
            EmptyUnitSelectionError: No units given (no gateway call is made)
            GenerationFailedError: Paper generation failed; mode stays DASHBOARD
            StaleResponseError: The session moved on while generating
        """
        self._require(AppMode.DASHBOARD)
        selected = normalize_units(units)
        selection = self.context.selection

        epoch = self._begin()
        try:
            try:
                paper = await self.gateway.generate_test_paper(selection, selected, bool(is_zhongkao))
            except GenerationError:
                self._check_current(epoch, "start_test")
                raise
            self._check_current(epoch, "start_test")

            if paper.listening_script and paper.listening_script.strip():
                paper.listening_audio = await self._fetch_listening_audio(paper.listening_script)
                self._check_current(epoch, "start_test")
        finally:
            self._end(epoch)

        self.context.units = selected
        self.context.is_zhongkao = bool(is_zhongkao)
        self.context.paper = paper
        self.context.answers = {}
        self.context.result = None
        self._set_mode(AppMode.TEST_IN_PROGRESS)
        return paper

    def record_answer(self, question_id: str, text: str) -> None:
        """Store the raw answer text for a question."""
        self._require(AppMode.TEST_IN_PROGRESS)
        if self.busy:
            raise SessionBusyError("Test is being graded")
        if question_id not in self.context.paper.question_ids():
            raise UnknownQuestionError(f"Question not on paper: {question_id}")
        self.context.answers[question_id] = text

    async def submit_test(self) -> TestResult:
        """Grade the test and enter the result mode.

        Raises:
            SessionBusyError: Already grading
            StaleResponseError: The session moved on while grading
        """
        self._require(AppMode.TEST_IN_PROGRESS)
        paper = self.context.paper
        answers = dict(self.context.answers)
        grade_level = self.context.selection.grade.value

        epoch = self._begin()
        try:
            result = await grade_test(paper, answers, grade_level, self.gateway)
        finally:
            self._end(epoch)
        self._check_current(epoch, "submit_test")

        self.context.result = result
        self._set_mode(AppMode.TEST_RESULT)
        return result

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    async def lookup_word(self, term: str) -> WordDefinition:
        """Look up a word selected anywhere in the trainer; mode is unchanged."""
        if self.context.mode is AppMode.SETUP:
            raise InvalidTransitionError("Configure a textbook first")
        term = term.strip()
        if not term:
            raise InvalidTransitionError("Nothing selected to look up")

        epoch = self._begin()
        try:
            return await self.gateway.lookup_word(term)
        finally:
            self._end(epoch)
