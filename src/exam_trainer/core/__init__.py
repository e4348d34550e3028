"""Core business logic.

Modules:
- models: practice, test paper and result content models
- audio: listening audio decoding and playback guard
- content_generator: prompts and LLM calls behind the generation service
- gateway: typed client for the generation service
- practice: vocabulary/grammar checks and passage rendering
- grading: test paper grading
- results: result aggregation
- session: trainer session state machine
"""

__all__ = [
    "models",
    "audio",
    "content_generator",
    "gateway",
    "practice",
    "grading",
    "results",
    "session",
]
