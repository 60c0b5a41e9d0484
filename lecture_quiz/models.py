"""Value types shared by the adapters, the pipeline and the repository."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence


class LectureStatus(str, Enum):
    """Processing states of a lecture, in pipeline order."""

    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    QUIZZING = "quizzing"
    READY = "ready"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (LectureStatus.READY, LectureStatus.ERROR)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


OPTION_COUNT = 4


@dataclass(frozen=True)
class TranscriptSegment:
    """A timestamped span of transcript text (seconds)."""

    t0: float
    t1: float
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"t0": self.t0, "t1": self.t1, "text": self.text}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TranscriptSegment":
        return cls(t0=float(payload["t0"]), t1=float(payload["t1"]), text=str(payload["text"]))


@dataclass(frozen=True)
class Transcript:
    """Chronologically ordered transcript segments."""

    segments: Sequence[TranscriptSegment] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.segments)

    @property
    def duration(self) -> float:
        return max((segment.t1 for segment in self.segments), default=0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {"segments": [segment.to_dict() for segment in self.segments]}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Transcript":
        return cls(
            segments=tuple(TranscriptSegment.from_dict(item) for item in payload.get("segments", []))
        )


@dataclass(frozen=True)
class SourceQuote:
    """Transcript excerpt grounding a question."""

    t0: float
    t1: float
    quote: str

    def to_dict(self) -> Dict[str, Any]:
        return {"t0": self.t0, "t1": self.t1, "quote": self.quote}


@dataclass(frozen=True)
class QuestionDraft:
    """A validated multiple-choice question that has not been persisted yet."""

    prompt: str
    options: Sequence[str]
    correct_index: int
    rationale: Optional[str] = None
    sources: Optional[Sequence[SourceQuote]] = None

    def __post_init__(self) -> None:
        if len(self.options) != OPTION_COUNT:
            raise ValueError(
                f"Questions need exactly {OPTION_COUNT} options, got {len(self.options)}"
            )
        if not 0 <= self.correct_index < OPTION_COUNT:
            raise ValueError(f"correct_index {self.correct_index} is out of range")


@dataclass(frozen=True)
class QuizDraft:
    """Generator output: the questions for one quiz in canonical order."""

    questions: List[QuestionDraft]


__all__ = [
    "Difficulty",
    "LectureStatus",
    "OPTION_COUNT",
    "QuestionDraft",
    "QuizDraft",
    "SourceQuote",
    "Transcript",
    "TranscriptSegment",
]
