"""Test paper grading.

Responsibilities:
- Auto-grade objective questions (multiple_choice, boolean, fill_in_blank)
  by trimmed, case-insensitive equality; full marks or zero
- Send non-empty essays to the external grader, one call at a time in
  document order
- Contain essay-grading failures: the question scores 0, gets no feedback
  entry, and grading continues
"""

from __future__ import annotations

import time
from collections.abc import Mapping

import structlog

from exam_trainer.core.gateway import GenerationError, GenerationGateway
from exam_trainer.core.models import (
    GradingFailure,
    Question,
    QuestionGrade,
    Section,
    TestPaper,
    TestResult,
    WritingFeedback,
)
from exam_trainer.core.practice import answers_match, normalize_answer
from exam_trainer.core.results import build_test_result

logger = structlog.get_logger(__name__)


def _auto_grade(section: Section, question: Question, given: str | None) -> QuestionGrade:
    """Deterministic grading, no external calls."""
    is_correct = answers_match(given, question.correct_answer)
    return QuestionGrade(
        question_id=question.id,
        section_id=section.id,
        kind=question.kind,
        score=question.max_score if is_correct else 0,
        max_score=question.max_score,
        is_correct=is_correct,
        grading_path="auto",
        expected_answer=question.correct_answer,
        given_answer=given,
    )


async def _grade_essay(
    gateway: GenerationGateway,
    section: Section,
    question: Question,
    given: str | None,
    grade_level: str,
) -> tuple[QuestionGrade, WritingFeedback | None, GradingFailure | None]:
    """Grade one essay via the gateway; failures degrade to zero."""

    def grade(score: int, path: str) -> QuestionGrade:
        return QuestionGrade(
            question_id=question.id,
            section_id=section.id,
            kind=question.kind,
            score=score,
            max_score=question.max_score,
            is_correct=None,
            grading_path=path,
            given_answer=given,
        )

    if not normalize_answer(given):
        return grade(0, "skipped"), None, None

    try:
        feedback = await gateway.grade_writing(question.prompt, given, grade_level)
    except GenerationError as e:
        logger.error("writing_grading_failed", question_id=question.id, error=str(e))
        return grade(0, "failed"), None, GradingFailure(question_id=question.id, error=str(e))

    # Score is taken as returned, even above the question's max_score
    if feedback.score > question.max_score:
        logger.warning(
            "writing_score_exceeds_max",
            question_id=question.id,
            score=feedback.score,
            max_score=question.max_score,
        )
    return grade(feedback.score, "llm"), feedback, None


async def grade_test(
    paper: TestPaper,
    answers: Mapping[str, str],
    grade_level: str,
    gateway: GenerationGateway,
) -> TestResult:
    """Grade a submitted test paper.

    Args:
        paper: The paper being answered
        answers: Question id -> raw answer text (unanswered may be absent)
        grade_level: Student grade, passed to the essay grader for context
        gateway: Generation gateway used for essay grading

    Returns:
        TestResult; grading never fails as a whole
    """
    start_time = time.time()
    scores: dict[str, int] = {}
    feedback: dict[str, WritingFeedback] = {}
    grades: list[QuestionGrade] = []
    failures: list[GradingFailure] = []

    for section, question in paper.iter_questions():
        given = answers.get(question.id)

        if question.kind == "writing":
            grade, essay_feedback, failure = await _grade_essay(gateway, section, question, given, grade_level)
            if essay_feedback is not None:
                feedback[question.id] = essay_feedback
            if failure is not None:
                failures.append(failure)
        else:
            grade = _auto_grade(section, question, given)

        scores[question.id] = grade.score
        grades.append(grade)

    result = build_test_result(
        paper,
        scores,
        feedback,
        answers,
        question_grades=grades,
        grading_errors=failures,
    )

    logger.info(
        "test_graded",
        paper_id=paper.id,
        total=result.total_score,
        max_total=result.max_total_score,
        essays_graded=len(feedback),
        essays_failed=len(failures),
        time_ms=int((time.time() - start_time) * 1000),
    )
    return result
