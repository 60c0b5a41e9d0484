"""Error taxonomy shared by the pipeline, the services and the web layer.

Every error carries the HTTP status it maps to and an optional ``details``
mapping that is echoed back to clients next to the human readable message,
so that a rejected request can be corrected without guessing.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LectureQuizError(RuntimeError):
    """Base class for all errors surfaced to callers."""

    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, **self.details}


class BadRequestError(LectureQuizError):
    """User input is malformed or outside the contract."""

    status_code = 400


class NotFoundError(LectureQuizError):
    """A referenced lecture, quiz or slug does not exist (or is not published)."""

    status_code = 404


class PersistenceError(LectureQuizError):
    """The storage layer failed to complete a read or write."""


class AdapterError(LectureQuizError):
    """An external transcription or generation backend failed."""

    stage = "adapter"


class TranscriptionError(AdapterError):
    """Raised by transcription engines.

    ``kind`` separates user-correctable input problems from transient backend
    failures and from responses the engine cannot interpret.
    """

    INVALID_INPUT = "invalid_input"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    UNEXPECTED_RESPONSE = "unexpected_response"

    stage = "transcription"

    def __init__(
        self,
        message: str,
        *,
        kind: str = BACKEND_UNAVAILABLE,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if kind not in {self.INVALID_INPUT, self.BACKEND_UNAVAILABLE, self.UNEXPECTED_RESPONSE}:
            raise ValueError(f"Unknown transcription error kind: {kind}")
        super().__init__(message, details=details)
        self.kind = kind

    @property
    def user_correctable(self) -> bool:
        return self.kind == self.INVALID_INPUT

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 400 if self.user_correctable else 500


class SummarizationError(AdapterError):
    stage = "summarization"


class QuizGenerationError(AdapterError):
    stage = "quiz_generation"


__all__ = [
    "AdapterError",
    "BadRequestError",
    "LectureQuizError",
    "NotFoundError",
    "PersistenceError",
    "QuizGenerationError",
    "SummarizationError",
    "TranscriptionError",
]
