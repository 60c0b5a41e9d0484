"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..config import AppConfig
from ..errors import PersistenceError
from ..models import LectureStatus, QuestionDraft, Transcript


@dataclass
class LectureRecord:
    id: int
    class_id: Optional[str]
    title: str
    status: LectureStatus
    transcript: Optional[Transcript]
    summary_md: Optional[str]
    error_message: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class QuizRecord:
    id: int
    lecture_id: int
    title: str
    difficulty: str
    num_questions: int
    is_published: bool
    public_slug: Optional[str]
    created_at: str


@dataclass
class QuestionRecord:
    id: int
    quiz_id: int
    position: int
    prompt: str
    options: List[str]
    correct_index: int
    rationale: Optional[str]
    sources: Optional[List[Dict[str, Any]]]


@dataclass
class SubmissionRecord:
    id: int
    quiz_id: int
    student_label: Optional[str]
    created_at: str
    submitted_at: Optional[str]


@dataclass
class AnswerRecord:
    id: int
    submission_id: int
    question_id: int
    chosen_index: int
    is_correct: bool


@dataclass
class QuestionStatistics:
    question_id: int
    position: int
    correct: int = 0
    incorrect: int = 0


@dataclass
class QuizStatistics:
    """Aggregates over finalized submissions only."""

    quiz_id: int
    completed_submissions: int
    unique_students: int
    average_score: Optional[float]
    questions: List[QuestionStatistics] = field(default_factory=list)


class DuplicateSlugError(PersistenceError):
    """Raised when a public slug is already assigned to another quiz."""


_MISSING = object()

_LECTURE_COLUMNS = (
    "id, class_id, title, status, transcript_json, summary_md, error_message, created_at, updated_at"
)
_QUIZ_COLUMNS = (
    "id, lecture_id, title, difficulty, num_questions, is_published, public_slug, created_at"
)
_QUESTION_COLUMNS = (
    "id, quiz_id, position, prompt, options_json, correct_index, rationale, sources_json"
)

# Canonical question order shared by quiz fetch and grading.
_QUESTION_ORDER = "ORDER BY position, id"


LOGGER = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _lecture_from_row(row: sqlite3.Row) -> LectureRecord:
    transcript = None
    if row["transcript_json"]:
        transcript = Transcript.from_dict(json.loads(row["transcript_json"]))
    return LectureRecord(
        id=int(row["id"]),
        class_id=row["class_id"],
        title=row["title"],
        status=LectureStatus(row["status"]),
        transcript=transcript,
        summary_md=row["summary_md"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _quiz_from_row(row: sqlite3.Row) -> QuizRecord:
    return QuizRecord(
        id=int(row["id"]),
        lecture_id=int(row["lecture_id"]),
        title=row["title"],
        difficulty=row["difficulty"],
        num_questions=int(row["num_questions"]),
        is_published=bool(row["is_published"]),
        public_slug=row["public_slug"],
        created_at=row["created_at"],
    )


def _question_from_row(row: sqlite3.Row) -> QuestionRecord:
    return QuestionRecord(
        id=int(row["id"]),
        quiz_id=int(row["quiz_id"]),
        position=int(row["position"]),
        prompt=row["prompt"],
        options=list(json.loads(row["options_json"])),
        correct_index=int(row["correct_index"]),
        rationale=row["rationale"],
        sources=json.loads(row["sources_json"]) if row["sources_json"] else None,
    )


class LectureRepository:
    """Repository for lectures, quizzes, questions, submissions and answers.

    Every public method opens its own connection so that concurrent requests
    never share state; multi-row writes run inside a single transaction.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting database events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        """Emit a structured event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        try:
            yield event_payload
        except Exception as exc:
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            event_payload.setdefault("status", "ok")
            duration_ms = (time.perf_counter() - start) * 1000.0
            filtered = {key: value for key, value in event_payload.items() if value is not None}
            self._event_emitter("DB_QUERY", action, payload=filtered, duration_ms=duration_ms)

    @contextlib.contextmanager
    def _session(self, action: str, **payload: Any) -> Iterator[Tuple[sqlite3.Connection, Dict[str, Any]]]:
        """Yield a connection inside one transaction; commit on success, roll back on error."""

        with self._track_db_event(action, **payload) as event:
            try:
                connection = sqlite3.connect(self._db_path)
            except sqlite3.Error as error:
                raise PersistenceError(f"Unable to open database: {error}") from error
            connection.row_factory = sqlite3.Row
            try:
                connection.execute("PRAGMA foreign_keys = ON")
                yield connection, event
                connection.commit()
            except sqlite3.Error as error:
                connection.rollback()
                LOGGER.error("Database action '%s' failed: %s", action, error)
                raise PersistenceError(f"Database error during {action}: {error}") from error
            except BaseException:
                connection.rollback()
                raise
            finally:
                connection.close()

    # ------------------------------------------------------------------
    # Lectures
    # ------------------------------------------------------------------
    def create_lecture(self, title: str, *, class_id: Optional[str] = None) -> int:
        now = _utcnow()
        with self._session("create_lecture", table="lectures", class_id=class_id) as (connection, event):
            cursor = connection.execute(
                """
                INSERT INTO lectures(class_id, title, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (class_id, title, LectureStatus.TRANSCRIBING.value, now, now),
            )
            lecture_id = int(cursor.lastrowid)
            event["lecture_id"] = lecture_id
        LOGGER.debug("Lecture '%s' inserted with id=%s", title, lecture_id)
        return lecture_id

    def get_lecture(self, lecture_id: int) -> Optional[LectureRecord]:
        with self._session("get_lecture", table="lectures", lecture_id=lecture_id) as (connection, event):
            row = connection.execute(
                f"SELECT {_LECTURE_COLUMNS} FROM lectures WHERE id = ?",
                (lecture_id,),
            ).fetchone()
            event["found"] = row is not None
        return _lecture_from_row(row) if row else None

    def update_lecture(
        self,
        lecture_id: int,
        *,
        status: LectureStatus | object = _MISSING,
        transcript: Optional[Transcript] | object = _MISSING,
        summary_md: Optional[str] | object = _MISSING,
        error_message: Optional[str] | object = _MISSING,
    ) -> None:
        """Update the provided lecture fields in a single statement.

        Omitted fields are left untouched. Writing a stage result together with
        the status that follows it keeps readers from seeing a status whose
        data is missing.
        """

        assignments: List[str] = []
        params: List[Any] = []
        if transcript is not _MISSING:
            assignments.append("transcript_json = ?")
            params.append(
                json.dumps(transcript.to_dict()) if isinstance(transcript, Transcript) else None
            )
        if summary_md is not _MISSING:
            assignments.append("summary_md = ?")
            params.append(summary_md)
        if error_message is not _MISSING:
            assignments.append("error_message = ?")
            params.append(error_message)
        if status is not _MISSING:
            assignments.append("status = ?")
            params.append(LectureStatus(status).value)
        if not assignments:
            LOGGER.debug("No changes requested for lecture id=%s", lecture_id)
            return

        assignments.append("updated_at = ?")
        params.append(_utcnow())
        params.append(lecture_id)
        query = "UPDATE lectures SET " + ", ".join(assignments) + " WHERE id = ?"
        with self._session(
            "update_lecture", table="lectures", lecture_id=lecture_id, changes=len(assignments) - 1
        ) as (connection, event):
            cursor = connection.execute(query, params)
            event["rowcount"] = cursor.rowcount
            if cursor.rowcount == 0:
                raise PersistenceError(f"Lecture {lecture_id} no longer exists")
        LOGGER.debug("Lecture id=%s updated (%s)", lecture_id, ", ".join(assignments))

    # ------------------------------------------------------------------
    # Quizzes and questions
    # ------------------------------------------------------------------
    def create_quiz_with_questions(
        self,
        lecture_id: int,
        *,
        title: str,
        difficulty: str,
        num_questions: int,
        questions: Sequence[QuestionDraft],
    ) -> int:
        """Insert the quiz and its whole question set atomically."""

        with self._session(
            "create_quiz_with_questions",
            table="quizzes",
            lecture_id=lecture_id,
            question_count=len(questions),
        ) as (connection, event):
            cursor = connection.execute(
                """
                INSERT INTO quizzes(lecture_id, title, difficulty, num_questions, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (lecture_id, title, difficulty, num_questions, _utcnow()),
            )
            quiz_id = int(cursor.lastrowid)
            connection.executemany(
                """
                INSERT INTO questions(
                    quiz_id, position, prompt, options_json, correct_index, rationale, sources_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        quiz_id,
                        position,
                        question.prompt,
                        json.dumps(list(question.options)),
                        question.correct_index,
                        question.rationale,
                        json.dumps([source.to_dict() for source in question.sources])
                        if question.sources
                        else None,
                    )
                    for position, question in enumerate(questions)
                ],
            )
            event["quiz_id"] = quiz_id
        LOGGER.debug(
            "Quiz id=%s created for lecture id=%s with %d questions",
            quiz_id,
            lecture_id,
            len(questions),
        )
        return quiz_id

    def get_quiz(self, quiz_id: int) -> Optional[QuizRecord]:
        with self._session("get_quiz", table="quizzes", quiz_id=quiz_id) as (connection, event):
            row = connection.execute(
                f"SELECT {_QUIZ_COLUMNS} FROM quizzes WHERE id = ?", (quiz_id,)
            ).fetchone()
            event["found"] = row is not None
        return _quiz_from_row(row) if row else None

    def get_quiz_for_lecture(self, lecture_id: int) -> Optional[QuizRecord]:
        with self._session("get_quiz_for_lecture", table="quizzes", lecture_id=lecture_id) as (
            connection,
            event,
        ):
            row = connection.execute(
                f"SELECT {_QUIZ_COLUMNS} FROM quizzes WHERE lecture_id = ?", (lecture_id,)
            ).fetchone()
            event["found"] = row is not None
        return _quiz_from_row(row) if row else None

    def find_published_quiz(self, slug: str) -> Optional[QuizRecord]:
        with self._session("find_published_quiz", table="quizzes") as (connection, event):
            row = connection.execute(
                f"SELECT {_QUIZ_COLUMNS} FROM quizzes WHERE public_slug = ? AND is_published = 1",
                (slug,),
            ).fetchone()
            event["found"] = row is not None
        return _quiz_from_row(row) if row else None

    def list_questions(self, quiz_id: int) -> List[QuestionRecord]:
        with self._session("list_questions", table="questions", quiz_id=quiz_id) as (connection, event):
            rows = connection.execute(
                f"SELECT {_QUESTION_COLUMNS} FROM questions WHERE quiz_id = ? {_QUESTION_ORDER}",
                (quiz_id,),
            ).fetchall()
            event["rowcount"] = len(rows)
        return [_question_from_row(row) for row in rows]

    def publish_quiz(self, quiz_id: int, slug: str) -> bool:
        """Assign *slug* and mark the quiz published; return ``False`` when it is missing."""

        try:
            with self._session("publish_quiz", table="quizzes", quiz_id=quiz_id) as (connection, event):
                cursor = connection.execute(
                    "UPDATE quizzes SET public_slug = ?, is_published = 1 WHERE id = ?",
                    (slug, quiz_id),
                )
                event["rowcount"] = cursor.rowcount
        except PersistenceError as error:
            if isinstance(error.__cause__, sqlite3.IntegrityError):
                raise DuplicateSlugError(f"Slug '{slug}' is already in use") from error.__cause__
            raise
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Submissions and answers
    # ------------------------------------------------------------------
    def create_submission(self, quiz_id: int, *, student_label: Optional[str] = None) -> int:
        with self._session("create_submission", table="submissions", quiz_id=quiz_id) as (
            connection,
            event,
        ):
            cursor = connection.execute(
                "INSERT INTO submissions(quiz_id, student_label, created_at) VALUES (?, ?, ?)",
                (quiz_id, student_label, _utcnow()),
            )
            submission_id = int(cursor.lastrowid)
            event["submission_id"] = submission_id
        return submission_id

    def add_answers(
        self,
        submission_id: int,
        answers: Sequence[Tuple[int, int, bool]],
    ) -> None:
        """Insert ``(question_id, chosen_index, is_correct)`` rows in one transaction."""

        with self._session(
            "add_answers", table="answers", submission_id=submission_id, rowcount=len(answers)
        ) as (connection, _event):
            connection.executemany(
                """
                INSERT INTO answers(submission_id, question_id, chosen_index, is_correct)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (submission_id, question_id, chosen_index, int(bool(is_correct)))
                    for question_id, chosen_index, is_correct in answers
                ],
            )

    def finalize_submission(self, submission_id: int) -> str:
        submitted_at = _utcnow()
        with self._session("finalize_submission", table="submissions", submission_id=submission_id) as (
            connection,
            _event,
        ):
            connection.execute(
                "UPDATE submissions SET submitted_at = ? WHERE id = ?",
                (submitted_at, submission_id),
            )
        return submitted_at

    def get_submission(self, submission_id: int) -> Optional[SubmissionRecord]:
        with self._session("get_submission", table="submissions", submission_id=submission_id) as (
            connection,
            _event,
        ):
            row = connection.execute(
                """
                SELECT id, quiz_id, student_label, created_at, submitted_at
                FROM submissions WHERE id = ?
                """,
                (submission_id,),
            ).fetchone()
        return SubmissionRecord(**row) if row else None

    def list_submissions(self, quiz_id: int) -> List[SubmissionRecord]:
        with self._session("list_submissions", table="submissions", quiz_id=quiz_id) as (
            connection,
            _event,
        ):
            rows = connection.execute(
                """
                SELECT id, quiz_id, student_label, created_at, submitted_at
                FROM submissions WHERE quiz_id = ? ORDER BY id
                """,
                (quiz_id,),
            ).fetchall()
        return [SubmissionRecord(**row) for row in rows]

    def list_answers(self, submission_id: int) -> List[AnswerRecord]:
        with self._session("list_answers", table="answers", submission_id=submission_id) as (
            connection,
            _event,
        ):
            rows = connection.execute(
                """
                SELECT id, submission_id, question_id, chosen_index, is_correct
                FROM answers WHERE submission_id = ? ORDER BY id
                """,
                (submission_id,),
            ).fetchall()
        return [
            AnswerRecord(
                id=int(row["id"]),
                submission_id=int(row["submission_id"]),
                question_id=int(row["question_id"]),
                chosen_index=int(row["chosen_index"]),
                is_correct=bool(row["is_correct"]),
            )
            for row in rows
        ]

    def count_completed_submissions(self, quiz_id: int) -> int:
        with self._session("count_completed_submissions", table="submissions", quiz_id=quiz_id) as (
            connection,
            _event,
        ):
            row = connection.execute(
                "SELECT COUNT(*) FROM submissions WHERE quiz_id = ? AND submitted_at IS NOT NULL",
                (quiz_id,),
            ).fetchone()
        return int(row[0]) if row else 0

    def compute_quiz_statistics(self, quiz_id: int) -> QuizStatistics:
        """Aggregate scores over finalized submissions of *quiz_id*."""

        with self._session("compute_quiz_statistics", table="submissions", quiz_id=quiz_id) as (
            connection,
            _event,
        ):
            summary = connection.execute(
                """
                SELECT
                    COUNT(*) AS completed,
                    COUNT(DISTINCT student_label) AS students,
                    AVG(score) AS average_score
                FROM (
                    SELECT s.id, s.student_label, SUM(a.is_correct) AS score
                    FROM submissions s
                    LEFT JOIN answers a ON a.submission_id = s.id
                    WHERE s.quiz_id = ? AND s.submitted_at IS NOT NULL
                    GROUP BY s.id
                )
                """,
                (quiz_id,),
            ).fetchone()
            question_rows = connection.execute(
                """
                SELECT
                    q.id AS question_id,
                    q.position AS position,
                    COALESCE(SUM(CASE WHEN s.id IS NOT NULL AND a.is_correct = 1 THEN 1 ELSE 0 END), 0) AS correct,
                    COALESCE(SUM(CASE WHEN s.id IS NOT NULL AND a.is_correct = 0 THEN 1 ELSE 0 END), 0) AS incorrect
                FROM questions q
                LEFT JOIN answers a ON a.question_id = q.id
                LEFT JOIN submissions s ON s.id = a.submission_id AND s.submitted_at IS NOT NULL
                WHERE q.quiz_id = ?
                GROUP BY q.id
                ORDER BY q.position, q.id
                """,
                (quiz_id,),
            ).fetchall()

        average = summary["average_score"] if summary else None
        return QuizStatistics(
            quiz_id=quiz_id,
            completed_submissions=int(summary["completed"]) if summary else 0,
            unique_students=int(summary["students"]) if summary else 0,
            average_score=float(average) if average is not None else None,
            questions=[
                QuestionStatistics(
                    question_id=int(row["question_id"]),
                    position=int(row["position"]),
                    correct=int(row["correct"]),
                    incorrect=int(row["incorrect"]),
                )
                for row in question_rows
            ],
        )


__all__ = [
    "AnswerRecord",
    "DuplicateSlugError",
    "LectureRecord",
    "LectureRepository",
    "QuestionRecord",
    "QuestionStatistics",
    "QuizRecord",
    "QuizStatistics",
    "SubmissionRecord",
]
