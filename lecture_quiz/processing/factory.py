"""Wire the configured adapters into a :class:`LecturePipeline`."""

from __future__ import annotations

import logging
from typing import Optional

import openai

from ..config import AppConfig
from ..services.pipeline import LecturePipeline, StatusListener, TranscriptionEngine
from ..services.storage import LectureRepository
from .openai_client import build_openai_client
from .quiz_generation import OpenAIQuizGenerator
from .summarization import OpenAISummarizer
from .transcription import FasterWhisperTranscription, WhisperApiTranscription


LOGGER = logging.getLogger(__name__)


def build_transcription_engine(
    config: AppConfig, client: openai.OpenAI
) -> TranscriptionEngine:
    if config.transcription_backend == "faster-whisper":
        LOGGER.info("Using local faster-whisper model '%s'", config.transcription_model)
        return FasterWhisperTranscription(
            config.transcription_model,
            download_root=config.storage_root / "models",
        )
    return WhisperApiTranscription(client, model=config.transcription_model)


def build_pipeline(
    repository: LectureRepository,
    config: AppConfig,
    *,
    client: Optional[openai.OpenAI] = None,
    status_listener: Optional[StatusListener] = None,
) -> LecturePipeline:
    """Return a pipeline whose adapters share one explicitly built client."""

    client = client or build_openai_client(config)
    return LecturePipeline(
        repository,
        transcription_engine=build_transcription_engine(config, client),
        summarizer=OpenAISummarizer(client, model=config.summary_model),
        quiz_generator=OpenAIQuizGenerator(client, model=config.quiz_model),
        adapter_timeout=config.adapter_timeout_seconds,
        status_listener=status_listener,
    )


__all__ = ["build_pipeline", "build_transcription_engine"]
