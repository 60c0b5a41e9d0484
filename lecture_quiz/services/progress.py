"""Utilities for reporting deterministic pipeline progress."""

from __future__ import annotations

from typing import Dict, Optional

from ..models import LectureStatus


# Transcription, summarization, quiz generation and the final "ready" flip.
PIPELINE_TOTAL_STEPS: float = 4.0

_STAGE_DESCRIPTIONS: Dict[LectureStatus, str] = {
    LectureStatus.TRANSCRIBING: "Transcribing lecture audio",
    LectureStatus.SUMMARIZING: "Summarizing transcript",
    LectureStatus.QUIZZING: "Generating quiz questions",
    LectureStatus.READY: "Lecture ready",
    LectureStatus.ERROR: "Processing failed",
}

_COMPLETED_STEPS: Dict[LectureStatus, float] = {
    LectureStatus.TRANSCRIBING: 0.0,
    LectureStatus.SUMMARIZING: 1.0,
    LectureStatus.QUIZZING: 2.0,
    LectureStatus.READY: PIPELINE_TOTAL_STEPS,
}


def format_progress_message(
    message: str,
    completed_steps: Optional[float],
    total_steps: Optional[float],
) -> str:
    """Append a percentage indicator to ``message`` when possible.

    When the totals are unavailable (``None`` or zero) the message is returned
    unchanged. Percentages are clamped to the inclusive range ``[0, 100]``.
    """

    if completed_steps is None or total_steps in {None, 0}:
        return message

    ratio = float(completed_steps) / float(total_steps)
    clamped = max(0.0, min(ratio, 1.0))
    percent = int(round(clamped * 100))
    return f"{message} ({percent}%)"


def describe_status(status: LectureStatus) -> str:
    """Return a progress line such as ``"====> Summarizing transcript… (25%)"``."""

    status = LectureStatus(status)
    description = _STAGE_DESCRIPTIONS[status]
    if status.is_terminal:
        message = f"====> {description}"
    else:
        message = f"====> {description}…"
    return format_progress_message(message, _COMPLETED_STEPS.get(status), PIPELINE_TOTAL_STEPS)


__all__ = ["PIPELINE_TOTAL_STEPS", "describe_status", "format_progress_message"]
