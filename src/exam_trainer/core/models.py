"""Content models for practice sessions, test papers and results.

Wire JSON uses camelCase keys (``partOfSpeech``, ``correctAnswer``,
``maxScore``); Python attributes are snake_case. Every model accepts either
spelling on input and dumps camelCase with ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from exam_trainer.core.audio import DecodedAudio

# =============================================================================
# TYPES
# =============================================================================

SectionKind = Literal["listening", "reading", "vocabulary", "writing"]
QuestionKind = Literal["multiple_choice", "boolean", "fill_in_blank", "writing"]

OBJECTIVE_KINDS: frozenset[str] = frozenset({"multiple_choice", "boolean", "fill_in_blank"})


class Publisher(str, Enum):
    """Textbook publishers."""

    PEP = "PEP (People's Education Press)"
    FLTRP = "FLTRP (Foreign Language Teaching and Research Press)"
    YILIN = "Yilin Press"


class Grade(str, Enum):
    """Middle-school grades."""

    SEVEN = "Grade 7"
    EIGHT = "Grade 8"
    NINE = "Grade 9"


class Term(str, Enum):
    """School terms (textbook volumes)."""

    ONE = "Term 1 (Book A)"
    TWO = "Term 2 (Book B)"


class WireModel(BaseModel):
    """Base for all models exchanged with the generation service."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase keys, omitting unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# TEXTBOOK SELECTION
# =============================================================================


class TextbookSelection(WireModel):
    """Publisher, grade and term the generated content is based on."""

    model_config = ConfigDict(frozen=True)

    publisher: Publisher
    grade: Grade
    term: Term


# =============================================================================
# PRACTICE CONTENT
# =============================================================================


class VocabItem(WireModel):
    """A vocabulary entry; ``example`` usually contains ``english``."""

    id: str = ""
    english: str = Field(min_length=1)
    chinese: str
    part_of_speech: str = ""
    example: str = ""


class GrammarBlank(WireModel):
    """One gap of the grammar passage, referenced by ``{{id}}``."""

    id: int
    hint: str = ""
    answer: str
    explanation: str = ""


class GrammarPassage(WireModel):
    """A story template with positional ``{{n}}`` placeholders."""

    title: str
    story: str
    blanks: list[GrammarBlank]


class PracticeSession(WireModel):
    vocab: list[VocabItem]
    grammar: GrammarPassage


# =============================================================================
# TEST PAPER
# =============================================================================


class Question(WireModel):
    """A test question.

    ``correct_answer`` is present iff the kind is objective and ``options``
    iff the kind is multiple_choice. Violations that make a question
    ungradeable are rejected; stray fields are dropped.
    """

    id: str
    kind: QuestionKind = Field(alias="type")
    prompt: str
    options: list[str] | None = None
    correct_answer: str | None = None
    explanation: str = ""
    max_score: int = Field(gt=0)

    @model_validator(mode="after")
    def _check_answer_fields(self) -> Question:
        if self.kind == "writing":
            self.correct_answer = None
        elif self.correct_answer is None:
            raise ValueError(f"question {self.id}: objective question without correctAnswer")

        if self.kind == "multiple_choice":
            if not self.options:
                raise ValueError(f"question {self.id}: multiple_choice question without options")
        else:
            self.options = None
        return self

    @property
    def is_objective(self) -> bool:
        return self.kind in OBJECTIVE_KINDS


class Section(WireModel):
    id: str
    title: str
    kind: SectionKind = Field(alias="type")
    reading_passage: str | None = None
    questions: list[Question]


class TestPaper(WireModel):
    """A full mock test paper.

    ``listening_audio`` is attached after a separate speech call and is
    never part of the wire format.
    """

    __test__ = False  # not a pytest class

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = ""
    title: str
    listening_script: str | None = None
    sections: list[Section]
    listening_audio: DecodedAudio | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _check_unique_question_ids(self) -> TestPaper:
        seen: set[str] = set()
        repeated = []
        for _, question in self.iter_questions():
            if question.id in seen:
                repeated.append(question.id)
            seen.add(question.id)
        if repeated:
            raise ValueError(f"question ids repeated across the paper: {sorted(set(repeated))}")
        return self

    def iter_questions(self):
        """Yield (section, question) pairs in document order."""
        for section in self.sections:
            for question in section.questions:
                yield section, question

    def question_ids(self) -> set[str]:
        return {q.id for _, q in self.iter_questions()}

    @property
    def max_total_score(self) -> int:
        return sum(q.max_score for _, q in self.iter_questions())


# =============================================================================
# FEEDBACK / LOOKUP
# =============================================================================


class WritingFeedback(WireModel):
    """Essay grade returned by the external grader (score out of 10)."""

    score: int
    feedback: str = ""
    improved_version: str = ""


class WordDefinition(WireModel):
    word: str
    phonetic: str = ""
    chinese: str = ""
    english_definition: str = ""
    example: str = ""


# =============================================================================
# GENERATION REQUESTS
# =============================================================================


class GenerationKind(str, Enum):
    """Action tags understood by the generation service."""

    VOCAB_AND_GRAMMAR = "generateVocabAndGrammar"
    TEST_PAPER = "generateTestPaper"
    SPEECH = "generateSpeech"
    GRADE_WRITING = "gradeWriting"
    LOOKUP_WORD = "lookupWord"


class VocabAndGrammarRequest(WireModel):
    publisher: Publisher
    grade: Grade
    term: Term
    units: list[int] = Field(min_length=1)


class TestPaperRequest(WireModel):
    __test__ = False  # not a pytest class

    publisher: Publisher
    grade: Grade
    term: Term
    units: list[int] = Field(min_length=1)
    is_zhongkao: bool = False


class SpeechRequest(WireModel):
    text: str = Field(min_length=1)


class GradeWritingRequest(WireModel):
    question: str
    student_answer: str
    grade_level: str


class LookupWordRequest(WireModel):
    word: str = Field(min_length=1)


# =============================================================================
# RESULTS
# =============================================================================

GradingPath = Literal["auto", "llm", "skipped", "failed"]


class QuestionGrade(WireModel):
    """Grade for a single test question."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    section_id: str
    kind: QuestionKind
    score: int
    max_score: int
    is_correct: bool | None
    grading_path: GradingPath
    expected_answer: str | None = None
    given_answer: str | None = None


class GradingFailure(WireModel):
    """An essay that could not be graded; scored 0 without feedback."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    error: str


class TestResult(WireModel):
    """Terminal artifact of a test session."""

    __test__ = False  # not a pytest class

    model_config = ConfigDict(frozen=True)

    paper_id: str
    total_score: int
    max_total_score: int
    section_scores: dict[str, int]
    writing_feedback: dict[str, WritingFeedback] = Field(default_factory=dict)
    answers: dict[str, str] = Field(default_factory=dict)
    question_grades: list[QuestionGrade] = Field(default_factory=list)
    grading_errors: list[GradingFailure] = Field(default_factory=list)

    @property
    def percentage(self) -> float:
        return self.total_score / self.max_total_score if self.max_total_score > 0 else 0.0
