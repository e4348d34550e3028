"""Tests for practice checks and grammar passage rendering."""

from exam_trainer.core.models import GrammarBlank, GrammarPassage, PracticeSession
from exam_trainer.core.practice import (
    ERROR_MARKER,
    answers_match,
    check_grammar,
    check_passage,
    check_vocabulary,
    render_passage,
)


def _passage(story: str, blank_ids: list[int]) -> GrammarPassage:
    return GrammarPassage(
        title="t",
        story=story,
        blanks=[GrammarBlank(id=i, answer=f"a{i}") for i in blank_ids],
    )


class TestAnswersMatch:
    def test_case_and_surrounding_whitespace_ignored(self):
        assert answers_match(" Paris ", "paris")
        assert answers_match("LOOK FORWARD TO", "look forward to")

    def test_inner_whitespace_and_spelling_matter(self):
        assert not answers_match("look  forward to", "look forward to")
        assert not answers_match("Pari", "Paris")

    def test_missing_answer_is_wrong(self):
        assert not answers_match(None, "went")
        assert not answers_match("", "went")

    def test_no_expected_answer_never_matches(self):
        assert not answers_match("", None)


class TestRenderPassage:
    """Tests for render_passage."""

    def test_placeholders_become_blanks(self):
        segments = render_passage(_passage("I {{1}} home and {{2}}.", [1, 2]))

        assert [s.kind for s in segments] == ["text", "blank", "text", "blank", "text"]
        assert segments[0].text == "I "
        assert segments[1].blank.id == 1
        assert segments[3].placeholder_id == 2
        assert segments[4].text == "."

    def test_orphan_placeholder_renders_error_marker(self):
        """A placeholder without a blank renders a marker, not a crash."""
        segments = render_passage(_passage("{{1}} and {{3}}", [1]))

        assert [s.kind for s in segments] == ["blank", "text", "error"]
        assert segments[2].text == ERROR_MARKER
        assert segments[2].placeholder_id == 3

    def test_story_without_placeholders(self):
        segments = render_passage(_passage("No gaps here.", []))
        assert len(segments) == 1
        assert segments[0].kind == "text"

    def test_duplicate_blank_ids_first_wins(self):
        passage = GrammarPassage(
            title="t",
            story="{{1}}",
            blanks=[GrammarBlank(id=1, answer="first"), GrammarBlank(id=1, answer="second")],
        )
        assert render_passage(passage)[0].blank.answer == "first"


class TestCheckPassage:
    """Placeholder/blank correspondence report."""

    def test_consistent_passage(self):
        report = check_passage(_passage("{{1}} {{2}}", [1, 2]))
        assert report.is_consistent

    def test_mismatches_reported(self):
        passage = GrammarPassage(
            title="t",
            story="{{1}} {{4}} {{4}}",
            blanks=[GrammarBlank(id=1, answer="a"), GrammarBlank(id=2, answer="b"), GrammarBlank(id=2, answer="c")],
        )
        report = check_passage(passage)

        assert not report.is_consistent
        assert report.orphan_placeholders == [4]
        assert report.unused_blanks == [2]
        assert report.duplicate_blank_ids == [2]


class TestChecks:
    """Vocabulary spelling and grammar blank checks."""

    def test_check_vocabulary(self, practice_body):
        practice = PracticeSession.model_validate(practice_body)
        for index, item in enumerate(practice.vocab):
            item.id = f"v{index}"

        results = check_vocabulary(practice.vocab, {"v0": " Volunteer", "v1": "look forward"})

        assert results == {"v0": True, "v1": False, "v2": False}

    def test_check_grammar(self, practice_body):
        practice = PracticeSession.model_validate(practice_body)

        results = check_grammar(practice.grammar, {1: "WENT", 2: "more tall"})

        assert results == {1: True, 2: False}
