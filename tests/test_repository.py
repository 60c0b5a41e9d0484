from __future__ import annotations

import sqlite3

import pytest

from conftest import SAMPLE_TRANSCRIPT, make_draft, make_question
from lecture_quiz.errors import PersistenceError
from lecture_quiz.models import LectureStatus, QuestionDraft, SourceQuote
from lecture_quiz.services.storage import DuplicateSlugError, LectureRepository


def _create_quiz(repository: LectureRepository, count: int = 3) -> int:
    lecture_id = repository.create_lecture("Newton's Laws", class_id="phys-101")
    return repository.create_quiz_with_questions(
        lecture_id,
        title="Newton's Laws",
        difficulty="easy",
        num_questions=count,
        questions=make_draft(count).questions,
    )


def test_lecture_lifecycle(repository: LectureRepository) -> None:
    lecture_id = repository.create_lecture("Newton's Laws", class_id="phys-101")

    lecture = repository.get_lecture(lecture_id)
    assert lecture is not None
    assert lecture.status is LectureStatus.TRANSCRIBING
    assert lecture.class_id == "phys-101"
    assert lecture.transcript is None

    repository.update_lecture(
        lecture_id, transcript=SAMPLE_TRANSCRIPT, status=LectureStatus.SUMMARIZING
    )
    lecture = repository.get_lecture(lecture_id)
    assert lecture is not None
    assert lecture.status is LectureStatus.SUMMARIZING
    assert lecture.transcript == SAMPLE_TRANSCRIPT

    repository.update_lecture(lecture_id, summary_md="# Summary", status=LectureStatus.QUIZZING)
    lecture = repository.get_lecture(lecture_id)
    assert lecture is not None
    assert lecture.summary_md == "# Summary"
    assert lecture.transcript == SAMPLE_TRANSCRIPT


def test_update_missing_lecture_raises(repository: LectureRepository) -> None:
    with pytest.raises(PersistenceError):
        repository.update_lecture(999, status=LectureStatus.ERROR)


def test_questions_keep_generation_order(repository: LectureRepository) -> None:
    lecture_id = repository.create_lecture("Optics")
    draft = make_draft(4, correct_indices=[3, 2, 1, 0])
    sourced = make_question(9, 1)
    questions = list(draft.questions) + [
        QuestionDraft(
            prompt=sourced.prompt,
            options=sourced.options,
            correct_index=sourced.correct_index,
            sources=(SourceQuote(t0=1.0, t1=2.0, quote="light bends"),),
        )
    ]

    quiz_id = repository.create_quiz_with_questions(
        lecture_id, title="Optics", difficulty="hard", num_questions=5, questions=questions
    )

    stored = repository.list_questions(quiz_id)
    assert [question.position for question in stored] == [0, 1, 2, 3, 4]
    assert [question.correct_index for question in stored] == [3, 2, 1, 0, 1]
    assert all(len(question.options) == 4 for question in stored)
    assert stored[-1].sources == [{"t0": 1.0, "t1": 2.0, "quote": "light bends"}]
    quiz = repository.get_quiz_for_lecture(lecture_id)
    assert quiz is not None and quiz.id == quiz_id
    assert quiz.is_published is False
    assert quiz.public_slug is None


def test_question_batch_is_atomic(repository: LectureRepository) -> None:
    lecture_id = repository.create_lecture("Thermodynamics")
    questions = list(make_draft(2).questions)
    # The last row violates the NOT NULL constraint on prompt.
    questions.append(QuestionDraft(prompt=None, options=("a", "b", "c", "d"), correct_index=0))

    with pytest.raises(PersistenceError):
        repository.create_quiz_with_questions(
            lecture_id, title="Thermo", difficulty="medium", num_questions=3, questions=questions
        )

    assert repository.get_quiz_for_lecture(lecture_id) is None
    connection = sqlite3.connect(repository._db_path)
    try:
        assert connection.execute("SELECT COUNT(*) FROM questions").fetchone()[0] == 0
    finally:
        connection.close()


def test_publish_assigns_unique_slugs(repository: LectureRepository) -> None:
    first = _create_quiz(repository)
    second_lecture = repository.create_lecture("Second")
    second = repository.create_quiz_with_questions(
        second_lecture,
        title="Second",
        difficulty="medium",
        num_questions=1,
        questions=make_draft(1).questions,
    )

    assert repository.publish_quiz(first, "abcdEFGH") is True
    assert repository.find_published_quiz("abcdEFGH").id == first

    with pytest.raises(DuplicateSlugError):
        repository.publish_quiz(second, "abcdEFGH")

    assert repository.publish_quiz(12345, "zzzzzzzz") is False


def test_statistics_ignore_unfinalized_submissions(repository: LectureRepository) -> None:
    quiz_id = _create_quiz(repository, count=2)
    questions = repository.list_questions(quiz_id)

    finished = repository.create_submission(quiz_id, student_label="ada")
    repository.add_answers(
        finished,
        [(questions[0].id, questions[0].correct_index, True), (questions[1].id, 3, False)],
    )
    repository.finalize_submission(finished)

    abandoned = repository.create_submission(quiz_id, student_label="bob")
    repository.add_answers(abandoned, [(questions[0].id, 3, False)])

    stats = repository.compute_quiz_statistics(quiz_id)

    assert stats.completed_submissions == 1
    assert stats.unique_students == 1
    assert stats.average_score == 1.0
    assert [(item.correct, item.incorrect) for item in stats.questions] == [(1, 0), (0, 1)]
    assert repository.count_completed_submissions(quiz_id) == 1
    assert repository.get_submission(abandoned).submitted_at is None
    assert len(repository.list_submissions(quiz_id)) == 2
