"""Processing backends for lecture transcription and quiz generation."""

from .factory import build_pipeline, build_transcription_engine
from .openai_client import build_openai_client, describe_openai_error
from .quiz_generation import OpenAIQuizGenerator, parse_quiz_payload
from .summarization import OpenAISummarizer
from .transcription import FasterWhisperTranscription, WhisperApiTranscription, build_transcript

__all__ = [
    "FasterWhisperTranscription",
    "OpenAIQuizGenerator",
    "OpenAISummarizer",
    "WhisperApiTranscription",
    "build_openai_client",
    "build_pipeline",
    "build_transcript",
    "build_transcription_engine",
    "describe_openai_error",
    "parse_quiz_payload",
]
