"""Validate, grade and persist student submissions for published quizzes."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

from ..errors import BadRequestError, NotFoundError
from ..models import OPTION_COUNT
from .events import emit_task_event
from .storage import LectureRepository, QuestionRecord, QuizRecord


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionRequest:
    """A structurally valid submission body; choices are not range-checked yet."""

    choices: List[Any]
    student_label: Optional[str] = None


@dataclass(frozen=True)
class GradeResult:
    submission_id: int
    score: int
    total: int

    def to_payload(self) -> dict:
        return {"score": self.score, "total": self.total}


def parse_submission_payload(raw: Union[bytes, str]) -> SubmissionRequest:
    """Decode a submit body of the form ``{"choices": [...], "studentLabel": ...}``.

    ``answers`` is accepted as a legacy alias for ``choices``.
    """

    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BadRequestError("Malformed payload: body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise BadRequestError("Malformed payload: expected a JSON object")

    choices = payload["choices"] if "choices" in payload else payload.get("answers")
    if not isinstance(choices, list):
        raise BadRequestError(
            "Choices must be an array",
            details={"received": type(choices).__name__ if choices is not None else None},
        )

    label = payload.get("studentLabel")
    if label is not None and not isinstance(label, str):
        raise BadRequestError("studentLabel must be a string")
    label = label.strip() if label else None
    return SubmissionRequest(choices=choices, student_label=label or None)


def _check_choices(choices: Sequence[Any], question_count: int) -> List[int]:
    if len(choices) != question_count:
        raise BadRequestError(
            f"Expected {question_count} choices, received {len(choices)}",
            details={"expected": question_count, "received": len(choices)},
        )
    for index, choice in enumerate(choices):
        # bool is an int subclass; true/false are not option indices.
        if isinstance(choice, bool) or not isinstance(choice, int) or not 0 <= choice < OPTION_COUNT:
            raise BadRequestError(
                f"Invalid choice at index {index}: {json.dumps(choice)}",
                details={"index": index, "choice": choice, "expected": [0, OPTION_COUNT - 1]},
            )
    return list(choices)


class SubmissionService:
    """Grade submissions positionally against the canonical question order."""

    def __init__(self, repository: LectureRepository) -> None:
        self._repository = repository

    def load_published_quiz(self, slug: str) -> Tuple[QuizRecord, List[QuestionRecord]]:
        """Return the published quiz behind *slug* with its questions in canonical order."""

        quiz = self._repository.find_published_quiz(slug)
        if quiz is None:
            raise NotFoundError("Quiz not found")
        return quiz, self._repository.list_questions(quiz.id)

    def grade(self, slug: str, request: SubmissionRequest) -> GradeResult:
        quiz, questions = self.load_published_quiz(slug)
        choices = _check_choices(request.choices, len(questions))

        graded = [
            (question.id, chosen, chosen == question.correct_index)
            for question, chosen in zip(questions, choices)
        ]
        score = sum(1 for _, _, is_correct in graded if is_correct)

        # Answers are written before the submission is stamped, so an
        # interrupted pass never counts as completed.
        submission_id = self._repository.create_submission(
            quiz.id, student_label=request.student_label
        )
        self._repository.add_answers(submission_id, graded)
        self._repository.finalize_submission(submission_id)

        emit_task_event(
            "grading",
            "Submission graded",
            payload={
                "quiz_id": quiz.id,
                "submission_id": submission_id,
                "score": score,
                "total": len(questions),
            },
        )
        LOGGER.debug("Submission %s scored %d/%d", submission_id, score, len(questions))
        return GradeResult(submission_id=submission_id, score=score, total=len(questions))


__all__ = [
    "GradeResult",
    "SubmissionRequest",
    "SubmissionService",
    "parse_submission_payload",
]
