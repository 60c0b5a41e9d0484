from __future__ import annotations

import logging

from lecture_quiz.models import LectureStatus
from lecture_quiz.services.events import emit_task_event, normalize_context
from lecture_quiz.services.progress import describe_status, format_progress_message
from lecture_quiz.services.storage import LectureRepository


def test_task_event_is_rendered_with_payload(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="lecture_quiz.events"):
        emit_task_event(
            "summarizing", "Stage completed", payload={"lecture_id": 3, "empty": " "}, duration_ms=12.34
        )

    record = caplog.records[-1]
    assert record.getMessage() == (
        "[TASK_STATE] Stage completed (phase=summarizing, lecture_id=3, duration_ms=12.3)"
    )
    assert record.event_type == "TASK_STATE"
    assert record.event_payload["lecture_id"] == 3


def test_normalize_context_unwraps_enums() -> None:
    assert normalize_context({"status": LectureStatus.READY, "none": None}) == {"status": "ready"}


def test_progress_messages() -> None:
    assert format_progress_message("Working", 1, 4) == "Working (25%)"
    assert format_progress_message("Working", None, 4) == "Working"
    assert describe_status(LectureStatus.QUIZZING) == "====> Generating quiz questions… (50%)"
    assert describe_status(LectureStatus.ERROR) == "====> Processing failed"


def test_repository_reports_db_events(temp_config) -> None:
    events = []
    repository = LectureRepository(
        temp_config, event_emitter=lambda *args, **kwargs: events.append((args, kwargs))
    )

    lecture_id = repository.create_lecture("Optics")

    (event_type, action), kwargs = events[-1]
    assert (event_type, action) == ("DB_QUERY", "create_lecture")
    assert kwargs["payload"]["lecture_id"] == lecture_id
    assert kwargs["payload"]["status"] == "ok"
    assert kwargs["duration_ms"] >= 0
