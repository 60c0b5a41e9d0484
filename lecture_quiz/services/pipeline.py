"""Lecture processing pipeline: transcribe, summarize, generate and persist a quiz."""

from __future__ import annotations

import contextlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Protocol, Type

from ..errors import (
    AdapterError,
    BadRequestError,
    LectureQuizError,
    PersistenceError,
    QuizGenerationError,
    SummarizationError,
    TranscriptionError,
)
from ..models import Difficulty, LectureStatus, QuizDraft, Transcript
from ..media import validate_media_upload
from .events import emit_task_event
from .storage import LectureRepository


LOGGER = logging.getLogger(__name__)


DEFAULT_TITLE = "Untitled Lecture"
DEFAULT_DIFFICULTY = Difficulty.MEDIUM
DEFAULT_NUM_QUESTIONS = 8
MIN_QUESTIONS = 3
MAX_QUESTIONS = 50


class TranscriptionEngine(Protocol):
    """Protocol describing a speech-to-text backend."""

    def transcribe(
        self,
        audio: bytes,
        *,
        mime_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Transcript:
        """Return the ordered, non-empty transcript of *audio*."""


class Summarizer(Protocol):
    """Protocol describing a Markdown summary backend."""

    def summarize(self, transcript: Transcript) -> str:
        """Return a Markdown summary of *transcript*."""


class QuizGenerator(Protocol):
    """Protocol describing a multiple-choice question backend."""

    def generate(self, transcript: Transcript, *, difficulty: Difficulty, count: int) -> QuizDraft:
        """Return exactly *count* validated questions grounded in *transcript*."""


StatusListener = Callable[[int, LectureStatus], None]


def _parse_difficulty(value: Optional[str]) -> Difficulty:
    if value is None or not str(value).strip():
        return DEFAULT_DIFFICULTY
    try:
        return Difficulty(str(value).strip().lower())
    except ValueError as exc:
        raise BadRequestError(
            f"Invalid difficulty '{value}'. Expected one of: easy, medium, hard",
            details={"expected": [item.value for item in Difficulty], "received": value},
        ) from exc


def _parse_num_questions(value: Any) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_NUM_QUESTIONS
    if isinstance(value, bool):
        raise BadRequestError("numQuestions must be an integer")
    try:
        count = int(str(value).strip()) if not isinstance(value, int) else value
    except ValueError as exc:
        raise BadRequestError(
            f"numQuestions must be an integer, got '{value}'", details={"received": value}
        ) from exc
    if not MIN_QUESTIONS <= count <= MAX_QUESTIONS:
        raise BadRequestError(
            f"numQuestions must be between {MIN_QUESTIONS} and {MAX_QUESTIONS}",
            details={"expected": [MIN_QUESTIONS, MAX_QUESTIONS], "received": count},
        )
    return count


@dataclass(frozen=True)
class LectureUpload:
    """A lecture file plus the quiz configuration submitted with it."""

    data: bytes
    filename: Optional[str]
    mime_type: Optional[str]
    class_id: str
    title: str = DEFAULT_TITLE
    difficulty: Difficulty = DEFAULT_DIFFICULTY
    num_questions: int = DEFAULT_NUM_QUESTIONS

    @classmethod
    def from_form(
        cls,
        *,
        data: Optional[bytes],
        filename: Optional[str],
        mime_type: Optional[str],
        class_id: Optional[str],
        title: Optional[str] = None,
        difficulty: Optional[str] = None,
        num_questions: Any = None,
    ) -> "LectureUpload":
        """Build an upload from raw form values, raising :class:`BadRequestError`."""

        if data is None:
            raise BadRequestError("Missing file")
        if class_id is None or not str(class_id).strip():
            raise BadRequestError("Missing classId")
        return cls(
            data=data,
            filename=filename,
            mime_type=mime_type or None,
            class_id=str(class_id).strip(),
            title=(title or "").strip() or DEFAULT_TITLE,
            difficulty=_parse_difficulty(difficulty),
            num_questions=_parse_num_questions(num_questions),
        )

    def validate(self) -> str:
        """Check the file against the format whitelist and size ceiling."""

        return validate_media_upload(self.filename, self.mime_type, len(self.data))


@dataclass(frozen=True)
class PipelineResult:
    lecture_id: int
    quiz_id: int
    question_count: int


class LecturePipeline:
    """Drive a lecture through ``transcribing → summarizing → quizzing → ready``.

    Each stage persists its result together with the next status, so the
    lecture row always tells how far processing got. Any failure moves the
    lecture to ``error`` (keeping the failure message) and re-raises.
    """

    def __init__(
        self,
        repository: LectureRepository,
        *,
        transcription_engine: TranscriptionEngine,
        summarizer: Summarizer,
        quiz_generator: QuizGenerator,
        adapter_timeout: Optional[float] = None,
        status_listener: Optional[StatusListener] = None,
    ) -> None:
        self._repository = repository
        self._transcription_engine = transcription_engine
        self._summarizer = summarizer
        self._quiz_generator = quiz_generator
        self._adapter_timeout = adapter_timeout if adapter_timeout and adapter_timeout > 0 else None
        self._status_listener = status_listener

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def process(self, upload: LectureUpload) -> PipelineResult:
        """Validate *upload*, create its lecture and run every stage synchronously."""

        lecture_id = self.start(upload)
        return self.run(lecture_id, upload)

    def start(self, upload: LectureUpload) -> int:
        """Validate *upload* and create its lecture in ``transcribing`` state."""

        upload.validate()
        lecture_id = self._repository.create_lecture(upload.title, class_id=upload.class_id)
        LOGGER.info(
            "Lecture %s created for '%s' (class=%s, difficulty=%s, questions=%d)",
            lecture_id,
            upload.title,
            upload.class_id,
            upload.difficulty.value,
            upload.num_questions,
        )
        self._notify(lecture_id, LectureStatus.TRANSCRIBING)
        return lecture_id

    def run(self, lecture_id: int, upload: LectureUpload) -> PipelineResult:
        """Run the remaining stages for a lecture created by :meth:`start`."""

        with self._stage(lecture_id, LectureStatus.TRANSCRIBING):
            transcript = self._call_adapter(
                TranscriptionError,
                self._transcription_engine.transcribe,
                upload.data,
                mime_type=upload.mime_type,
                filename=upload.filename,
            )
            if not transcript.segments:
                raise TranscriptionError(
                    "Transcription produced no segments",
                    kind=TranscriptionError.UNEXPECTED_RESPONSE,
                )
            self._advance(lecture_id, LectureStatus.SUMMARIZING, transcript=transcript)

        with self._stage(lecture_id, LectureStatus.SUMMARIZING):
            summary = self._call_adapter(SummarizationError, self._summarizer.summarize, transcript)
            self._advance(lecture_id, LectureStatus.QUIZZING, summary_md=summary)

        with self._stage(lecture_id, LectureStatus.QUIZZING):
            draft = self._call_adapter(
                QuizGenerationError,
                self._quiz_generator.generate,
                transcript,
                difficulty=upload.difficulty,
                count=upload.num_questions,
            )
            if len(draft.questions) != upload.num_questions:
                raise QuizGenerationError(
                    f"Generated quiz has {len(draft.questions)} questions, "
                    f"expected {upload.num_questions}",
                    details={"expected": upload.num_questions, "received": len(draft.questions)},
                )
            quiz_id = self._repository.create_quiz_with_questions(
                lecture_id,
                title=upload.title,
                difficulty=upload.difficulty.value,
                num_questions=upload.num_questions,
                questions=draft.questions,
            )
            self._advance(lecture_id, LectureStatus.READY)

        LOGGER.info("Lecture %s is ready with quiz %s", lecture_id, quiz_id)
        return PipelineResult(
            lecture_id=lecture_id, quiz_id=quiz_id, question_count=len(draft.questions)
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def _stage(self, lecture_id: int, status: LectureStatus) -> Iterator[None]:
        """Error boundary: flag the lecture as failed and re-raise."""

        start = time.perf_counter()
        emit_task_event(
            status.value, "Stage started", payload={"lecture_id": lecture_id}
        )
        try:
            yield
        except Exception as error:
            duration_ms = (time.perf_counter() - start) * 1000.0
            emit_task_event(
                status.value,
                "Stage failed",
                payload={
                    "lecture_id": lecture_id,
                    "error": f"{error.__class__.__name__}: {error}",
                },
                duration_ms=duration_ms,
                level=logging.ERROR,
            )
            self._fail(lecture_id, error)
            raise
        emit_task_event(
            status.value,
            "Stage completed",
            payload={"lecture_id": lecture_id},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )

    def _advance(self, lecture_id: int, status: LectureStatus, **fields: Any) -> None:
        self._repository.update_lecture(lecture_id, status=status, **fields)
        self._notify(lecture_id, status)

    def _fail(self, lecture_id: int, error: BaseException) -> None:
        message = str(error) or error.__class__.__name__
        try:
            self._repository.update_lecture(
                lecture_id, status=LectureStatus.ERROR, error_message=message
            )
        except PersistenceError:
            LOGGER.exception("Could not flag lecture %s as failed", lecture_id)
            return
        self._notify(lecture_id, LectureStatus.ERROR)

    def _notify(self, lecture_id: int, status: LectureStatus) -> None:
        LOGGER.debug("Lecture %s status -> %s", lecture_id, status.value)
        if self._status_listener is not None:
            self._status_listener(lecture_id, status)

    def _call_adapter(
        self,
        error_type: Type[AdapterError],
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Invoke an adapter, bounded by the configured timeout."""

        try:
            if self._adapter_timeout is None:
                return func(*args, **kwargs)
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=error_type.stage)
            future = executor.submit(func, *args, **kwargs)
            try:
                return future.result(timeout=self._adapter_timeout)
            except FuturesTimeoutError as exc:
                future.cancel()
                raise error_type(
                    f"{error_type.stage.replace('_', ' ').capitalize()} timed out "
                    f"after {self._adapter_timeout:g}s"
                ) from exc
            finally:
                executor.shutdown(wait=False)
        except LectureQuizError:
            raise
        except Exception as error:
            raise error_type(
                f"{error_type.stage.replace('_', ' ').capitalize()} failed: {error}"
            ) from error


__all__ = [
    "DEFAULT_DIFFICULTY",
    "DEFAULT_NUM_QUESTIONS",
    "DEFAULT_TITLE",
    "LecturePipeline",
    "LectureUpload",
    "PipelineResult",
    "QuizGenerator",
    "StatusListener",
    "Summarizer",
    "TranscriptionEngine",
]
