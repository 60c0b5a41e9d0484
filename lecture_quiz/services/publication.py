"""Publishing quizzes behind unguessable public links."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from ..errors import NotFoundError, PersistenceError
from .events import emit_task_event
from .naming import build_public_url, new_public_slug
from .storage import DuplicateSlugError, LectureRepository


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishResult:
    quiz_id: int
    slug: str
    url: str


class PublicationService:
    """Mint a fresh slug for a quiz and flip it to published.

    Every call assigns a new slug, so publishing twice rotates the link and
    the previous slug stops resolving.
    """

    def __init__(
        self,
        repository: LectureRepository,
        *,
        public_base_url: str,
        slug_factory: Callable[[], str] = new_public_slug,
        max_attempts: int = 5,
    ) -> None:
        self._repository = repository
        self._public_base_url = public_base_url
        self._slug_factory = slug_factory
        self._max_attempts = max(1, int(max_attempts))

    def publish(self, quiz_id: int) -> PublishResult:
        if self._repository.get_quiz(quiz_id) is None:
            raise NotFoundError(f"Quiz {quiz_id} not found")

        for attempt in range(1, self._max_attempts + 1):
            slug = self._slug_factory()
            try:
                updated = self._repository.publish_quiz(quiz_id, slug)
            except DuplicateSlugError:
                LOGGER.warning(
                    "Slug collision while publishing quiz %s (attempt %d/%d)",
                    quiz_id,
                    attempt,
                    self._max_attempts,
                )
                continue
            if not updated:
                raise NotFoundError(f"Quiz {quiz_id} not found")
            url = build_public_url(self._public_base_url, slug)
            emit_task_event(
                "publish", "Quiz published", payload={"quiz_id": quiz_id, "slug": slug}
            )
            return PublishResult(quiz_id=quiz_id, slug=slug, url=url)

        raise PersistenceError(
            f"Could not assign a unique slug to quiz {quiz_id} after {self._max_attempts} attempts"
        )


__all__ = ["PublicationService", "PublishResult"]
