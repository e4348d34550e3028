"""Result aggregation.

Folds per-question scores into section and total scores. Pure: no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from exam_trainer.core.models import (
    GradingFailure,
    QuestionGrade,
    TestPaper,
    TestResult,
    WritingFeedback,
)


class ResultShapeError(ValueError):
    """Scores or feedback do not fit the paper (programmer error)."""

    pass


def build_test_result(
    paper: TestPaper,
    question_scores: Mapping[str, int],
    writing_feedback: Mapping[str, WritingFeedback],
    answers: Mapping[str, str],
    question_grades: Iterable[QuestionGrade] = (),
    grading_errors: Iterable[GradingFailure] = (),
) -> TestResult:
    """Assemble the TestResult for a graded paper.

    Questions missing from ``question_scores`` count as 0. The maximum is
    the sum of every question's max score, answered or not.

    Raises:
        ResultShapeError: If a score or feedback entry names a question
            that is not on the paper, or feedback targets a non-writing question.
    """
    kinds = {q.id: q.kind for _, q in paper.iter_questions()}

    unknown = sorted(set(question_scores) - set(kinds))
    if unknown:
        raise ResultShapeError(f"Scores for questions not on paper {paper.id}: {unknown}")
    for question_id in writing_feedback:
        if kinds.get(question_id) != "writing":
            raise ResultShapeError(f"Feedback for non-writing question: {question_id}")

    section_scores: dict[str, int] = {}
    for section in paper.sections:
        section_scores[section.id] = section_scores.get(section.id, 0) + sum(
            question_scores.get(q.id, 0) for q in section.questions
        )

    return TestResult(
        paper_id=paper.id,
        total_score=sum(section_scores.values()),
        max_total_score=paper.max_total_score,
        section_scores=section_scores,
        writing_feedback=dict(writing_feedback),
        answers=dict(answers),
        question_grades=list(question_grades),
        grading_errors=list(grading_errors),
    )
