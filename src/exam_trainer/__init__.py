"""English exam trainer: AI-generated practice, mock tests and grading."""

__version__ = "0.1.0"
