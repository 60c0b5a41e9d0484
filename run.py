"""Command line entry point for Lecture Quiz."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from lecture_quiz.bootstrap import initialize_app
from lecture_quiz.errors import LectureQuizError
from lecture_quiz.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from lecture_quiz.models import Difficulty, LectureStatus
from lecture_quiz.processing import build_pipeline
from lecture_quiz.services.pipeline import DEFAULT_NUM_QUESTIONS, LectureUpload
from lecture_quiz.services.progress import describe_status
from lecture_quiz.services.publication import PublicationService
from lecture_quiz.services.storage import LectureRepository
from lecture_quiz.web import create_app


LOGGER = logging.getLogger("lecture_quiz.cli")


cli = typer.Typer(add_completion=False, help="Lecture Quiz management commands")


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _prepare_logging(storage_root: Path) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="LECTURE_QUIZ_ROOT_PATH",
    ),
) -> None:
    """Run the HTTP API."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    repository = LectureRepository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving Lecture Quiz on http://%s:%s%s", host, port, normalized_root or "/")
    server.run()


@cli.command()
def process(
    media: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="Path to the lecture audio/video file",
    ),
    class_id: str = typer.Option(..., "--class-id", help="Identifier of the owning class"),
    title: Optional[str] = typer.Option(None, help="Lecture title"),
    difficulty: Difficulty = typer.Option(Difficulty.MEDIUM, help="Quiz difficulty"),
    num_questions: int = typer.Option(
        DEFAULT_NUM_QUESTIONS, "--num-questions", "-n", help="Number of quiz questions"
    ),
) -> None:
    """Transcribe, summarize and build a quiz for MEDIA."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = LectureRepository(config)

    def _report(lecture_id: int, status: LectureStatus) -> None:
        typer.echo(f"[lecture {lecture_id}] {describe_status(status)}")

    try:
        upload = LectureUpload.from_form(
            data=media.read_bytes(),
            filename=media.name,
            mime_type=mimetypes.guess_type(media.name)[0],
            class_id=class_id,
            title=title or media.stem,
            difficulty=difficulty.value,
            num_questions=num_questions,
        )
        pipeline = build_pipeline(repository, config, status_listener=_report)
        result = pipeline.process(upload)
    except LectureQuizError as error:
        typer.echo(f"Processing failed: {error.message}", err=True)
        raise typer.Exit(code=1) from error
    except RuntimeError as error:
        typer.echo(f"Processing could not start: {error}", err=True)
        raise typer.Exit(code=1) from error

    typer.echo("Processing completed.")
    typer.echo(f"  Lecture: {result.lecture_id}")
    typer.echo(f"  Quiz: {result.quiz_id} ({result.question_count} questions)")


@cli.command()
def publish(quiz_id: int = typer.Argument(..., help="Quiz identifier")) -> None:
    """Publish a quiz and print its public link."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    service = PublicationService(
        LectureRepository(config), public_base_url=config.public_base_url
    )
    try:
        result = service.publish(quiz_id)
    except LectureQuizError as error:
        typer.echo(f"Publishing failed: {error.message}", err=True)
        raise typer.Exit(code=1) from error
    typer.echo(result.url)


if __name__ == "__main__":
    cli()
