"""Practice mode checks and grammar passage rendering.

Answers compare case-insensitively after trimming surrounding whitespace.
A grammar passage whose placeholders and blanks do not line up still
renders: orphan placeholders become error segments and the mismatch is
reported rather than raised.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Literal

from exam_trainer.core.models import GrammarBlank, GrammarPassage, VocabItem

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\d+)\}\}")
ERROR_MARKER = "[?]"


def normalize_answer(text: str | None) -> str:
    """Trim and lower-case a free-text answer; None counts as empty."""
    return (text or "").strip().lower()


def answers_match(given: str | None, expected: str | None) -> bool:
    """Case-insensitive, whitespace-trimmed equality. No fuzzy matching."""
    if expected is None:
        return False
    return normalize_answer(given) == normalize_answer(expected)


@dataclass
class PassageSegment:
    """A piece of a rendered passage: literal text, a blank, or an error marker."""

    kind: Literal["text", "blank", "error"]
    text: str = ""
    blank: GrammarBlank | None = None
    placeholder_id: int | None = None


@dataclass
class PassageReport:
    """Placeholder/blank correspondence of a grammar passage."""

    orphan_placeholders: list[int] = field(default_factory=list)
    unused_blanks: list[int] = field(default_factory=list)
    duplicate_blank_ids: list[int] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not (self.orphan_placeholders or self.unused_blanks or self.duplicate_blank_ids)


def check_passage(passage: GrammarPassage) -> PassageReport:
    """Compare placeholder ids in the story against blank ids."""
    placeholder_ids = [int(m.group(1)) for m in PLACEHOLDER_PATTERN.finditer(passage.story)]
    blank_counts = Counter(b.id for b in passage.blanks)
    referenced = set(placeholder_ids)

    return PassageReport(
        orphan_placeholders=sorted({pid for pid in placeholder_ids if pid not in blank_counts}),
        unused_blanks=sorted(bid for bid in blank_counts if bid not in referenced),
        duplicate_blank_ids=sorted(bid for bid, count in blank_counts.items() if count > 1),
    )


def render_passage(passage: GrammarPassage) -> list[PassageSegment]:
    """Split the story on ``{{n}}`` placeholders.

    Text between placeholders becomes "text" segments, a placeholder with a
    matching blank becomes a "blank" segment (first blank wins on duplicate
    ids) and a placeholder without one becomes an "error" segment.
    """
    blanks: dict[int, GrammarBlank] = {}
    for blank in passage.blanks:
        blanks.setdefault(blank.id, blank)

    segments: list[PassageSegment] = []
    cursor = 0
    for match in PLACEHOLDER_PATTERN.finditer(passage.story):
        if match.start() > cursor:
            segments.append(PassageSegment(kind="text", text=passage.story[cursor:match.start()]))
        placeholder_id = int(match.group(1))
        blank = blanks.get(placeholder_id)
        if blank is None:
            segments.append(PassageSegment(kind="error", text=ERROR_MARKER, placeholder_id=placeholder_id))
        else:
            segments.append(PassageSegment(kind="blank", blank=blank, placeholder_id=placeholder_id))
        cursor = match.end()

    if cursor < len(passage.story):
        segments.append(PassageSegment(kind="text", text=passage.story[cursor:]))
    return segments


def check_vocabulary(vocab: list[VocabItem], inputs: dict[str, str]) -> dict[str, bool]:
    """Spelling check: item id -> whether the typed word matches."""
    return {item.id: answers_match(inputs.get(item.id), item.english) for item in vocab}


def check_grammar(passage: GrammarPassage, inputs: dict[int, str]) -> dict[int, bool]:
    """Blank id -> whether the typed form matches the expected answer."""
    return {blank.id: answers_match(inputs.get(blank.id), blank.answer) for blank in passage.blanks}
