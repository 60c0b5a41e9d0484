from __future__ import annotations

import re

import pytest

from conftest import make_draft
from lecture_quiz.config import AppConfig
from lecture_quiz.errors import NotFoundError, PersistenceError
from lecture_quiz.services.naming import SLUG_ALPHABET, build_public_url, new_public_slug
from lecture_quiz.services.publication import PublicationService
from lecture_quiz.services.storage import LectureRepository


def _quiz(repository: LectureRepository, title: str = "Optics") -> int:
    lecture_id = repository.create_lecture(title)
    return repository.create_quiz_with_questions(
        lecture_id, title=title, difficulty="medium", num_questions=2, questions=make_draft(2).questions
    )


def test_new_public_slug_is_url_safe() -> None:
    slugs = {new_public_slug() for _ in range(50)}

    assert len(slugs) == 50
    assert all(len(slug) == 8 for slug in slugs)
    assert all(re.fullmatch(r"[A-Za-z0-9_-]{8}", slug) for slug in slugs)
    assert len(set(SLUG_ALPHABET)) == 64


def test_build_public_url_joins_cleanly() -> None:
    assert build_public_url("https://quiz.example.edu/", "abc") == "https://quiz.example.edu/q/abc"


def test_publish_sets_slug_and_flag(repository: LectureRepository, temp_config: AppConfig) -> None:
    quiz_id = _quiz(repository)
    service = PublicationService(repository, public_base_url=temp_config.public_base_url)

    result = service.publish(quiz_id)

    assert result.url == f"https://quiz.example.edu/q/{result.slug}"
    quiz = repository.get_quiz(quiz_id)
    assert quiz.is_published is True
    assert quiz.public_slug == result.slug
    assert quiz.title == "Optics"


def test_republish_rotates_slug(repository: LectureRepository) -> None:
    quiz_id = _quiz(repository)
    service = PublicationService(repository, public_base_url="http://localhost")

    first = service.publish(quiz_id)
    second = service.publish(quiz_id)

    assert first.slug != second.slug
    assert repository.find_published_quiz(first.slug) is None
    assert repository.find_published_quiz(second.slug).id == quiz_id


def test_publish_missing_quiz_raises(repository: LectureRepository) -> None:
    service = PublicationService(repository, public_base_url="http://localhost")

    with pytest.raises(NotFoundError):
        service.publish(404)


def test_publish_retries_on_slug_collision(repository: LectureRepository) -> None:
    taken = _quiz(repository, "Taken")
    quiz_id = _quiz(repository, "Fresh")
    repository.publish_quiz(taken, "AAAAAAAA")
    slugs = iter(["AAAAAAAA", "BBBBBBBB"])
    service = PublicationService(
        repository, public_base_url="http://localhost", slug_factory=lambda: next(slugs)
    )

    result = service.publish(quiz_id)

    assert result.slug == "BBBBBBBB"


def test_publish_gives_up_after_repeated_collisions(repository: LectureRepository) -> None:
    taken = _quiz(repository, "Taken")
    quiz_id = _quiz(repository, "Fresh")
    repository.publish_quiz(taken, "AAAAAAAA")
    service = PublicationService(
        repository,
        public_base_url="http://localhost",
        slug_factory=lambda: "AAAAAAAA",
        max_attempts=3,
    )

    with pytest.raises(PersistenceError, match="after 3 attempts"):
        service.publish(quiz_id)
    assert repository.get_quiz(quiz_id).is_published is False
