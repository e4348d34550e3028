"""Tests for content models and their wire format."""

import pytest
from pydantic import ValidationError

from exam_trainer.core.models import PracticeSession, Question, TestPaper, TextbookSelection, VocabItem


class TestQuestionInvariants:
    """correctAnswer iff objective, options iff multiple_choice."""

    def test_objective_question_without_answer_rejected(self):
        with pytest.raises(ValidationError, match="correctAnswer"):
            Question.model_validate({"id": "q1", "type": "boolean", "prompt": "?", "maxScore": 2})

    def test_multiple_choice_without_options_rejected(self):
        with pytest.raises(ValidationError, match="options"):
            Question.model_validate(
                {"id": "q1", "type": "multiple_choice", "prompt": "?", "correctAnswer": "A", "maxScore": 2}
            )

    def test_writing_answer_dropped(self):
        question = Question.model_validate(
            {"id": "q9", "type": "writing", "prompt": "Write", "correctAnswer": "x", "maxScore": 10}
        )
        assert question.correct_answer is None
        assert not question.is_objective

    def test_options_on_non_mc_dropped(self):
        question = Question.model_validate(
            {"id": "q2", "type": "fill_in_blank", "prompt": "?", "options": ["a"], "correctAnswer": "a", "maxScore": 1}
        )
        assert question.options is None
        assert question.is_objective

    def test_max_score_must_be_positive(self):
        with pytest.raises(ValidationError):
            Question.model_validate(
                {"id": "q1", "type": "boolean", "prompt": "?", "correctAnswer": "True", "maxScore": 0}
            )

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            Question.model_validate({"id": "q1", "type": "essay", "prompt": "?", "maxScore": 1})

    def test_question_ids_unique_across_sections(self, paper_body):
        paper_body["sections"][1]["questions"][1]["id"] = "q2"

        with pytest.raises(ValidationError, match=r"repeated across the paper: \['q2'\]"):
            TestPaper.model_validate(paper_body)


class TestWireFormat:
    """camelCase on the wire, snake_case in Python."""

    def test_paper_parses_camel_case(self, paper_body):
        paper = TestPaper.model_validate(paper_body)

        assert paper.listening_script.startswith("Man:")
        assert paper.sections[1].reading_passage == "Paris is the capital of France."
        assert paper.sections[0].questions[0].correct_answer == "To the library"
        assert paper.max_total_score == 30
        assert [q.id for _, q in paper.iter_questions()] == ["q1", "q2", "q3", "q4", "q5"]

    def test_paper_dump_omits_audio(self, paper_body):
        paper = TestPaper.model_validate(paper_body)
        wire = paper.to_wire()

        assert "listeningAudio" not in wire
        assert wire["listeningScript"] == paper_body["listeningScript"]
        assert wire["sections"][0]["questions"][0]["maxScore"] == 5
        assert wire["sections"][0]["type"] == "listening"
        assert "correctAnswer" not in wire["sections"][2]["questions"][0]

    def test_numeric_ids_coerced_to_text(self):
        item = VocabItem.model_validate({"id": 7, "english": "go", "chinese": "去"})
        assert item.id == "7"

    def test_vocab_english_required(self):
        with pytest.raises(ValidationError):
            VocabItem.model_validate({"english": "", "chinese": "空"})

    def test_practice_parses(self, practice_body):
        practice = PracticeSession.model_validate(practice_body)
        assert practice.vocab[1].part_of_speech == "phr."
        assert practice.grammar.blanks[0].id == 1

    def test_selection_is_hashable(self, selection):
        assert {selection: 1}[TextbookSelection.model_validate(selection.to_wire())] == 1
