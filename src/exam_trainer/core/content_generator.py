"""Content generation service.

Responsibilities:
- Build prompts for the five content kinds (vocabulary + grammar practice,
  test paper, listening speech, writing feedback, word lookup)
- Call the LLM and validate the returned JSON structurally
- Assign generation-time ids (vocab items, test papers)
- Dispatch ``{action, payload}`` requests to the matching handler

Output structure (JSON, camelCase):
- generateVocabAndGrammar -> {vocab: [...], grammar: {title, story, blanks}}
- generateTestPaper       -> {id, title, listeningScript, sections: [...]}
- generateSpeech          -> {audioData: base64 PCM}
- gradeWriting            -> {score, feedback, improvedVersion}
- lookupWord              -> {word, phonetic, chinese, englishDefinition, example}
"""

from __future__ import annotations

import re
import time
from typing import Any

import structlog
from pydantic import ValidationError

from exam_trainer.config.app_config import SpeechConfig
from exam_trainer.core.audio import encode_pcm_base64
from exam_trainer.core.models import (
    GenerationKind,
    GradeWritingRequest,
    LookupWordRequest,
    PracticeSession,
    SpeechRequest,
    TestPaper,
    TestPaperRequest,
    TextbookSelection,
    VocabAndGrammarRequest,
    WordDefinition,
    WritingFeedback,
)
from exam_trainer.llm.client import LLMClient, LLMError

logger = structlog.get_logger(__name__)

VOCAB_COUNT = 20

# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPT_JSON = """You are an expert English teacher for Chinese middle school students.
Reply ONLY with a valid JSON object that follows the requested structure exactly."""

USER_PROMPT_PRACTICE = """Generate English practice content for Chinese middle school students using the latest edition of {publisher} textbook, {grade}, {term}, Units: {units}.

PART 1: Vocabulary List
Generate {vocab_count} challenging high-frequency words/phrases.
Criteria:
1. Focus on latest textbook content and Zhongkao key words.
2. Avoid basic words; choose ones that differentiate top students.

PART 2: Grammar Fill-in-the-Blank Passage
Generate a coherent passage (approx 150-200 words) with 10-12 blanks to test comprehensive grammar and usage.

CRITICAL REQUIREMENTS for the blanks:
1. Tense Mixture: include blanks that test Simple Present, Simple Past, Simple Future, Present Progressive, and Present Perfect tenses.
2. Set Phrases & Expressions: include blanks that test key collocations, phrasal verbs, or fixed expressions specific to these units.
3. Morphology: test irregular plural nouns, comparative/superlative adjectives, and adverb formation.
4. Contextual Logic: conjunctions and prepositions.

CRITICAL RULE FOR HINTS:
- DO NOT PROVIDE ANY HINTS. The "hint" field MUST ALWAYS be an empty string "".
- Students must infer the word entirely from context.

Every placeholder {{{{n}}}} in the story must have exactly one blank with id n, and every blank must appear in the story.

Return JSON:
{{
  "vocab": [{{"english": "...", "chinese": "...", "partOfSpeech": "...", "example": "..."}}],
  "grammar": {{
    "title": "...",
    "story": "text with {{{{1}}}}, {{{{2}}}} placeholders",
    "blanks": [{{"id": 1, "hint": "", "answer": "correct form", "explanation": "..."}}]
  }}
}}"""

ZHONGKAO_INSTRUCTIONS = """CRITICAL: This is a "Zhongkao Sprint" paper.
1. Integrate high-frequency key points (grammar, phrases, sentence structures) from previous years' Chinese Middle School Entrance Examinations (Zhongkao).
2. The difficulty should EXCEED the standard textbook level to simulate actual exam pressure.
3. In the "explanation" field, explicitly mention which Zhongkao knowledge point is being tested."""

STANDARD_INSTRUCTIONS = """Ensure the difficulty is challenging, suitable for top-tier students using the latest {publisher} textbooks."""

SYSTEM_PROMPT_TEST_PAPER = """You are an expert English teacher for Chinese middle school students. Create a comprehensive and challenging test paper based on {publisher} {grade} {term}, Units: {units}.
{instructions}

The test must include exactly the following structure:

1. Listening Section (Two Parts):
   - PART A: 5 Short Conversations.
     SCRIPT FORMATTING RULE: strictly use speaker tags "Man:", "Woman:", "Boy:", "Girl:", or "Narrator:" at the start of every line.
   - PART B: Passage Listening. Script format: "Narrator: Passage. [Text...]. Question 6..."
   - 5 multiple_choice questions for Part A and 5 for Part B.
   - The "listeningScript" field must contain the FULL text for both Part A and Part B.

2. Vocabulary & Grammar Section: 10 challenging multiple_choice questions.

3. Reading Section A (Easy/Medium): a standard reading passage, 3 questions.

4. Reading Section B (Medium/Hard): a more complex passage, 3 questions.

5. Reading Section C (Hard/Challenge): a difficult passage (approx 300 words), 4 questions.

6. Writing Section: one structured writing prompt (type "writing", maxScore 10).

Rules for questions:
- every question "id" is unique across the whole paper (q1, q2, ... numbered continuously, never restarting per section)
- multiple_choice: "options" has 4 strings and "correctAnswer" is the exact text of the correct option
- boolean: "correctAnswer" is "True" or "False", no options
- fill_in_blank: "correctAnswer" is the expected word or phrase, no options
- writing: no options and no correctAnswer
- "maxScore" is a positive integer

Return JSON:
{{
  "title": "...",
  "listeningScript": "...",
  "sections": [
    {{
      "id": "s1",
      "title": "...",
      "type": "listening | reading | vocabulary | writing",
      "readingPassage": "..." | null,
      "questions": [
        {{
          "id": "q1",
          "type": "multiple_choice | boolean | fill_in_blank | writing",
          "prompt": "...",
          "options": ["..."] | null,
          "correctAnswer": "..." | null,
          "explanation": "...",
          "maxScore": 2
        }}
      ]
    }}
  ]
}}"""

USER_PROMPT_TEST_PAPER = "Generate the full test paper structure in JSON."

USER_PROMPT_GRADE_WRITING = """Grade this English writing for a Chinese middle school student ({grade_level}).
Question: {question}
Student Answer: {student_answer}

Provide a score out of 10, constructive feedback, and an improved version of the answer.

Return JSON: {{"score": 0-10 integer, "feedback": "...", "improvedVersion": "..."}}"""

USER_PROMPT_LOOKUP = """Explain the English word/phrase "{word}" for a Chinese middle school student.

Return JSON:
{{
  "word": "the word/phrase",
  "phonetic": "IPA or text pronunciation",
  "chinese": "concise Chinese meaning",
  "englishDefinition": "simple English definition",
  "example": "a simple example sentence"
}}"""

# Listening scripts use five speaker tags; speech is synthesized with two voices
SPEAKER_TAG_PATTERN = re.compile(r"^\s*(Narrator|Man|Boy|Woman|Girl)\s*:\s*", re.IGNORECASE)
PRIMARY_SPEAKERS = frozenset({"narrator", "man", "boy"})


class ContentGenerationError(Exception):
    """Error generating or validating content."""

    pass


class UnknownActionError(ContentGenerationError):
    """Request named an action the service does not implement."""

    pass


# =============================================================================
# HELPERS
# =============================================================================


def _now_ms() -> int:
    return int(time.time() * 1000)


def _format_units(units: list[int]) -> str:
    return ", ".join(str(u) for u in units)


def _request_json(client: LLMClient, system_prompt: str, user_prompt: str, kind: str, **kwargs: Any) -> dict[str, Any]:
    try:
        return client.complete_json(system_prompt=system_prompt, user_message=user_prompt, kind=kind, **kwargs)
    except LLMError as e:
        logger.error("content_llm_call_failed", kind=kind, error=str(e))
        raise ContentGenerationError(f"{kind}: {e}") from e


def split_script_by_voice(script: str, primary_voice: str, secondary_voice: str) -> list[tuple[str, str]]:
    """Group a tagged listening script into (voice, text) chunks.

    Narrator/Man/Boy lines go to the primary voice, Woman/Girl lines to the
    secondary one. Untagged lines continue the previous speaker. Consecutive
    lines with the same voice are merged; tags are stripped from the text.
    """
    chunks: list[tuple[str, str]] = []
    current_voice = primary_voice
    buffer: list[str] = []

    for line in script.splitlines():
        if not line.strip():
            continue
        match = SPEAKER_TAG_PATTERN.match(line)
        if match:
            speaker = match.group(1).lower()
            voice = primary_voice if speaker in PRIMARY_SPEAKERS else secondary_voice
            text = line[match.end():].strip()
        else:
            voice = current_voice
            text = line.strip()

        if voice != current_voice and buffer:
            chunks.append((current_voice, "\n".join(buffer)))
            buffer = []
        current_voice = voice
        if text:
            buffer.append(text)

    if buffer:
        chunks.append((current_voice, "\n".join(buffer)))
    return chunks


# =============================================================================
# GENERATORS
# =============================================================================


def generate_vocab_and_grammar(
    client: LLMClient,
    selection: TextbookSelection,
    units: list[int],
    vocab_count: int = VOCAB_COUNT,
) -> PracticeSession:
    """Generate a vocabulary list and a grammar fill-in passage.

    Each vocab item gets a fresh id ``vocab-<millis>-<index>``.

    Raises:
        ContentGenerationError: On LLM failure or malformed content
    """
    user_prompt = USER_PROMPT_PRACTICE.format(
        publisher=selection.publisher.value,
        grade=selection.grade.value,
        term=selection.term.value,
        units=_format_units(units),
        vocab_count=vocab_count,
    )
    data = _request_json(client, SYSTEM_PROMPT_JSON, user_prompt, GenerationKind.VOCAB_AND_GRAMMAR.value)

    stamp = _now_ms()
    vocab = data.get("vocab") or []
    if isinstance(vocab, list):
        data["vocab"] = [
            {**item, "id": f"vocab-{stamp}-{index}"} if isinstance(item, dict) else item
            for index, item in enumerate(vocab)
        ]

    try:
        practice = PracticeSession.model_validate(data)
    except ValidationError as e:
        raise ContentGenerationError(f"Malformed practice content: {e}") from e

    logger.info(
        "practice_content_generated",
        vocab=len(practice.vocab),
        blanks=len(practice.grammar.blanks),
        units=units,
    )
    return practice


def generate_test_paper(
    client: LLMClient,
    selection: TextbookSelection,
    units: list[int],
    is_zhongkao: bool = False,
) -> TestPaper:
    """Generate a full mock test paper with id ``test-<millis>``.

    Raises:
        ContentGenerationError: On LLM failure or malformed content
    """
    if is_zhongkao:
        instructions = ZHONGKAO_INSTRUCTIONS
    else:
        instructions = STANDARD_INSTRUCTIONS.format(publisher=selection.publisher.value)

    system_prompt = SYSTEM_PROMPT_TEST_PAPER.format(
        publisher=selection.publisher.value,
        grade=selection.grade.value,
        term=selection.term.value,
        units=_format_units(units),
        instructions=instructions,
    )
    data = _request_json(client, system_prompt, USER_PROMPT_TEST_PAPER, GenerationKind.TEST_PAPER.value)
    data = {**data, "id": f"test-{_now_ms()}"}

    try:
        paper = TestPaper.model_validate(data)
    except ValidationError as e:
        raise ContentGenerationError(f"Malformed test paper: {e}") from e

    logger.info(
        "test_paper_generated",
        paper_id=paper.id,
        sections=len(paper.sections),
        questions=sum(len(s.questions) for s in paper.sections),
        zhongkao=is_zhongkao,
    )
    return paper


def generate_speech(client: LLMClient, script: str, speech: SpeechConfig | None = None) -> str:
    """Synthesize a listening script; returns base64 PCM (24 kHz, s16le, mono).

    Raises:
        ContentGenerationError: On synthesis failure or an empty script
    """
    if speech is None:
        speech = SpeechConfig()

    chunks = split_script_by_voice(script, speech.primary_voice, speech.secondary_voice)
    if not chunks:
        raise ContentGenerationError("Listening script is empty")

    pcm = bytearray()
    for voice, text in chunks:
        try:
            pcm.extend(client.synthesize_speech(text, voice=voice, model=speech.model))
        except LLMError as e:
            logger.error("speech_chunk_failed", voice=voice, error=str(e))
            raise ContentGenerationError(f"Speech synthesis failed: {e}") from e

    logger.info("speech_generated", chunks=len(chunks), bytes=len(pcm))
    return encode_pcm_base64(bytes(pcm))


def grade_writing(client: LLMClient, question: str, student_answer: str, grade_level: str) -> WritingFeedback:
    """Grade an essay out of 10 with feedback and an improved version.

    Raises:
        ContentGenerationError: On LLM failure or malformed feedback
    """
    user_prompt = USER_PROMPT_GRADE_WRITING.format(
        grade_level=grade_level,
        question=question,
        student_answer=student_answer,
    )
    data = _request_json(
        client, SYSTEM_PROMPT_JSON, user_prompt, GenerationKind.GRADE_WRITING.value, temperature=0.3
    )

    try:
        data["score"] = int(round(float(data.get("score"))))
        return WritingFeedback.model_validate(data)
    except (TypeError, ValueError, OverflowError, ValidationError) as e:
        raise ContentGenerationError(f"Malformed writing feedback: {e}") from e


def lookup_word(client: LLMClient, word: str) -> WordDefinition:
    """Explain a word or phrase for a middle-school learner."""
    data = _request_json(
        client, SYSTEM_PROMPT_JSON, USER_PROMPT_LOOKUP.format(word=word), GenerationKind.LOOKUP_WORD.value
    )
    try:
        return WordDefinition.model_validate(data)
    except ValidationError as e:
        raise ContentGenerationError(f"Malformed word definition: {e}") from e


# =============================================================================
# DISPATCH
# =============================================================================


def handle_action(
    client: LLMClient,
    action: str,
    payload: dict[str, Any],
    speech: SpeechConfig | None = None,
) -> dict[str, Any]:
    """Run one ``{action, payload}`` request and return the response body.

    Raises:
        UnknownActionError: If the action tag is not recognized
        ContentGenerationError: If the payload is invalid or generation fails
    """
    try:
        kind = GenerationKind(action)
    except ValueError as e:
        raise UnknownActionError(f"Unknown action: {action}") from e

    try:
        if kind is GenerationKind.VOCAB_AND_GRAMMAR:
            req = VocabAndGrammarRequest.model_validate(payload)
            selection = TextbookSelection(publisher=req.publisher, grade=req.grade, term=req.term)
            return generate_vocab_and_grammar(client, selection, req.units).to_wire()

        if kind is GenerationKind.TEST_PAPER:
            req = TestPaperRequest.model_validate(payload)
            selection = TextbookSelection(publisher=req.publisher, grade=req.grade, term=req.term)
            return generate_test_paper(client, selection, req.units, req.is_zhongkao).to_wire()

        if kind is GenerationKind.SPEECH:
            req = SpeechRequest.model_validate(payload)
            return {"audioData": generate_speech(client, req.text, speech)}

        if kind is GenerationKind.GRADE_WRITING:
            req = GradeWritingRequest.model_validate(payload)
            return grade_writing(client, req.question, req.student_answer, req.grade_level).to_wire()

        req = LookupWordRequest.model_validate(payload)
        return lookup_word(client, req.word).to_wire()
    except ValidationError as e:
        raise ContentGenerationError(f"Invalid payload for {action}: {e}") from e
