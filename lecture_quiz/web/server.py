"""FastAPI application exposing lecture processing, publication and quiz taking."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import functools
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

from fastapi import FastAPI, File, Form, Query, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..errors import LectureQuizError, NotFoundError
from ..media import validate_media_upload
from ..services.events import emit_db_event, emit_structured_event
from ..services.grading import SubmissionService, parse_submission_payload
from ..services.pipeline import LecturePipeline, LectureUpload
from ..services.publication import PublicationService
from ..services.storage import LectureRecord, LectureRepository, QuestionRecord, QuizRecord


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "lecture_quiz_request_id",
    default=None,
)
_JOB_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "lecture_quiz_job_id",
    default=None,
)

_DB_SLOW_WARNING_MS = 450.0
_BACKGROUND_WORKERS = 2


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    job_id = _JOB_ID_VAR.get()
    if job_id:
        context["job_id"] = str(job_id)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        request_token = _REQUEST_ID_VAR.set(request_id)
        job_token = _JOB_ID_VAR.set(None)
        try:
            await self.app(scope, receive, send)
        finally:
            _JOB_ID_VAR.reset(job_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra or {})
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        for key, value in _collect_correlation_context().items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("lecture_quiz.web.events"), {})


def _repository_event_emitter(event_type: str, message: str, **kwargs: Any) -> None:
    if event_type == "DB_QUERY":
        duration_ms = kwargs.get("duration_ms")
        level = logging.DEBUG
        if duration_ms is not None and duration_ms >= _DB_SLOW_WARNING_MS:
            level = logging.WARNING
        emit_db_event(message, level=level, logger=EVENT_LOGGER, **kwargs)
    else:
        emit_structured_event(event_type, message, logger=EVENT_LOGGER, **kwargs)


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event("HTTP", message, payload=context, logger=EVENT_LOGGER)


def _serialize_lecture(lecture: LectureRecord, quiz: Optional[QuizRecord]) -> Dict[str, Any]:
    return {
        "id": lecture.id,
        "classId": lecture.class_id,
        "title": lecture.title,
        "status": lecture.status.value,
        "transcript": lecture.transcript.to_dict()["segments"] if lecture.transcript else None,
        "summary": lecture.summary_md,
        "errorMessage": lecture.error_message,
        "quizId": quiz.id if quiz else None,
        "createdAt": lecture.created_at,
        "updatedAt": lecture.updated_at,
    }


def _serialize_question(question: QuestionRecord, *, include_answer_key: bool) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": question.id,
        "position": question.position,
        "prompt": question.prompt,
        "options": list(question.options),
    }
    if include_answer_key:
        payload["correctIndex"] = question.correct_index
        payload["rationale"] = question.rationale
        payload["sources"] = question.sources
    return payload


def _serialize_quiz(
    quiz: QuizRecord,
    questions: List[QuestionRecord],
    *,
    include_answer_key: bool,
) -> Dict[str, Any]:
    return {
        "id": quiz.id,
        "lectureId": quiz.lecture_id,
        "title": quiz.title,
        "difficulty": quiz.difficulty,
        "numQuestions": quiz.num_questions,
        "isPublished": quiz.is_published,
        "publicSlug": quiz.public_slug,
        "createdAt": quiz.created_at,
        "questions": [
            _serialize_question(question, include_answer_key=include_answer_key)
            for question in questions
        ],
    }


def create_app(
    repository: LectureRepository,
    *,
    config: AppConfig,
    pipeline_factory: Optional[Callable[[], LecturePipeline]] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application.

    ``pipeline_factory`` is called once, off the event loop, on the first
    upload and the resulting pipeline is shared by every later upload. By
    default it builds the OpenAI-backed adapters from *config*, so the API
    key (or the local Whisper model) is only required when a lecture is
    actually processed.
    """

    if pipeline_factory is None:
        from ..processing import build_pipeline

        pipeline_factory = functools.partial(build_pipeline, repository, config)

    background_executor = ThreadPoolExecutor(
        max_workers=_BACKGROUND_WORKERS,
        thread_name_prefix="lecture-pipeline",
    )

    @contextlib.asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            background_executor.shutdown(wait=True, cancel_futures=True)

    app = FastAPI(
        title="Lecture Quiz",
        description="Turn recorded lectures into shareable quizzes",
        root_path=(root_path or "").rstrip("/"),
        lifespan=_lifespan,
    )
    repository.configure_event_emitter(_repository_event_emitter)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.repository = repository
    app.state.config = config
    app.state.background_executor = background_executor
    app.state.background_jobs: Set[Future] = set()
    app.state.background_jobs_lock = threading.Lock()
    app.state.pipeline: Optional[LecturePipeline] = None
    pipeline_lock = threading.Lock()

    publication_service = PublicationService(repository, public_base_url=config.public_base_url)
    submission_service = SubmissionService(repository)

    async def _run_blocking(operation: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        parent_context = contextvars.copy_context()
        return await loop.run_in_executor(
            None, functools.partial(parent_context.run, operation, *args)
        )

    def _shared_pipeline() -> LecturePipeline:
        with pipeline_lock:
            pipeline = app.state.pipeline
            if pipeline is None:
                LOGGER.info("Building lecture pipeline")
                pipeline = pipeline_factory()
                app.state.pipeline = pipeline
            return pipeline

    def _schedule_background(lecture_id: int, operation: Callable[[], Any]) -> None:
        job_id = _new_correlation_id()
        parent_context = contextvars.copy_context()

        def _invoke() -> Any:
            token = _JOB_ID_VAR.set(job_id)
            try:
                return operation()
            finally:
                _JOB_ID_VAR.reset(token)

        future = background_executor.submit(parent_context.run, _invoke)
        jobs: Set[Future] = app.state.background_jobs
        jobs_lock: threading.Lock = app.state.background_jobs_lock
        with jobs_lock:
            jobs.add(future)

        def _on_done(done: Future) -> None:
            with jobs_lock:
                jobs.discard(done)
            if done.cancelled():
                LOGGER.warning("Background processing of lecture %s was cancelled", lecture_id)
                return
            error = done.exception()
            if error is not None:
                LOGGER.warning(
                    "Background processing of lecture %s failed: %s", lecture_id, error
                )

        future.add_done_callback(_on_done)
        LOGGER.debug("Scheduled background job %s for lecture %s", job_id, lecture_id)

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    @app.exception_handler(LectureQuizError)
    async def _handle_domain_error(request: Request, error: LectureQuizError) -> JSONResponse:
        level = logging.WARNING if error.status_code < 500 else logging.ERROR
        LOGGER.log(
            level,
            "%s %s failed with %s: %s",
            request.method,
            request.url.path,
            error.status_code,
            error.message,
        )
        return JSONResponse(status_code=error.status_code, content=jsonable_encoder(error.to_payload()))

    @app.exception_handler(RequestValidationError)
    async def _handle_request_validation(request: Request, error: RequestValidationError) -> JSONResponse:
        problems = [
            {"location": list(item.get("loc", ())), "message": item.get("msg")}
            for item in error.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=jsonable_encoder({"error": "Invalid request", "problems": problems}),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_error(request: Request, error: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=error.status_code,
            content={"error": str(error.detail)},
            headers=getattr(error, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _handle_unexpected_error(request: Request, error: Exception) -> JSONResponse:
        LOGGER.error(
            "Unhandled error during %s %s", request.method, request.url.path, exc_info=error
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    # ------------------------------------------------------------------
    # Lectures
    # ------------------------------------------------------------------
    @app.post("/api/lectures")
    async def upload_lecture(
        file: Optional[UploadFile] = File(None),
        title: Optional[str] = Form(None),
        difficulty: Optional[str] = Form(None),
        num_questions: Optional[str] = Form(None, alias="numQuestions"),
        class_id: Optional[str] = Form(None, alias="classId"),
        mode: str = Query("sync", pattern="^(sync|async)$"),
    ) -> Any:
        data: Optional[bytes] = None
        filename: Optional[str] = None
        mime_type: Optional[str] = None
        if file is not None:
            filename = file.filename
            mime_type = file.content_type
            try:
                if file.size is not None:
                    validate_media_upload(filename, mime_type, file.size)
                data = await file.read()
            finally:
                await file.close()

        upload = LectureUpload.from_form(
            data=data,
            filename=filename,
            mime_type=mime_type,
            class_id=class_id,
            title=title,
            difficulty=difficulty,
            num_questions=num_questions,
        )
        upload.validate()
        _log_event(
            "Lecture upload received",
            filename=filename,
            bytes=len(upload.data),
            class_id=upload.class_id,
            mode=mode,
        )

        pipeline = await _run_blocking(_shared_pipeline)
        if mode == "async":
            lecture_id = await _run_blocking(pipeline.start, upload)
            _schedule_background(lecture_id, functools.partial(pipeline.run, lecture_id, upload))
            return JSONResponse(
                status_code=status.HTTP_202_ACCEPTED,
                content={"lectureId": lecture_id, "status": "transcribing"},
            )

        result = await _run_blocking(pipeline.process, upload)
        return {"lectureId": result.lecture_id, "quizId": result.quiz_id}

    @app.get("/api/lectures/{lecture_id}")
    async def get_lecture(lecture_id: int) -> Dict[str, Any]:
        lecture = await _run_blocking(repository.get_lecture, lecture_id)
        if lecture is None:
            raise NotFoundError(f"Lecture {lecture_id} not found")
        quiz = await _run_blocking(repository.get_quiz_for_lecture, lecture_id)
        return {"lecture": _serialize_lecture(lecture, quiz)}

    # ------------------------------------------------------------------
    # Quizzes (instructor)
    # ------------------------------------------------------------------
    @app.post("/api/quizzes/{quiz_id}/publish")
    async def publish_quiz(quiz_id: int) -> Dict[str, Any]:
        result = await _run_blocking(publication_service.publish, quiz_id)
        _log_event("Quiz published", quiz_id=quiz_id, slug=result.slug)
        return {"url": result.url, "slug": result.slug}

    @app.get("/api/quizzes/{quiz_id}")
    async def get_quiz(quiz_id: int) -> Dict[str, Any]:
        quiz = await _run_blocking(repository.get_quiz, quiz_id)
        if quiz is None:
            raise NotFoundError(f"Quiz {quiz_id} not found")
        questions = await _run_blocking(repository.list_questions, quiz_id)
        return {"quiz": _serialize_quiz(quiz, questions, include_answer_key=True)}

    @app.get("/api/quizzes/{quiz_id}/results")
    async def get_quiz_results(quiz_id: int) -> Dict[str, Any]:
        quiz = await _run_blocking(repository.get_quiz, quiz_id)
        if quiz is None:
            raise NotFoundError(f"Quiz {quiz_id} not found")
        stats = await _run_blocking(repository.compute_quiz_statistics, quiz_id)
        return {
            "quizId": quiz_id,
            "totalQuestions": len(stats.questions),
            "completedSubmissions": stats.completed_submissions,
            "uniqueStudents": stats.unique_students,
            "averageScore": stats.average_score,
            "questions": [
                {
                    "questionId": item.question_id,
                    "position": item.position,
                    "correct": item.correct,
                    "incorrect": item.incorrect,
                }
                for item in stats.questions
            ],
        }

    # ------------------------------------------------------------------
    # Quiz taking (public)
    # ------------------------------------------------------------------
    @app.get("/api/q/{slug}")
    async def get_public_quiz(slug: str) -> Dict[str, Any]:
        quiz, questions = await _run_blocking(submission_service.load_published_quiz, slug)
        payload = _serialize_quiz(
            quiz, questions, include_answer_key=config.expose_answer_key
        )
        for key in ("lectureId", "isPublished", "publicSlug"):
            payload.pop(key, None)
        return {"quiz": payload}

    @app.post("/api/submissions/{slug}/submit")
    async def submit_answers(slug: str, request: Request) -> Dict[str, Any]:
        body = await request.body()
        submission = parse_submission_payload(body)
        result = await _run_blocking(submission_service.grade, slug, submission)
        _log_event(
            "Submission graded",
            slug=slug,
            submission_id=result.submission_id,
            score=result.score,
            total=result.total,
        )
        return result.to_payload()

    return app


__all__ = ["ContextualLoggerAdapter", "RequestContextMiddleware", "create_app"]
