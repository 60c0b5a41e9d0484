"""Lecture Quiz: turn recorded lectures into summaries and shareable quizzes."""

__version__ = "0.1.0"
