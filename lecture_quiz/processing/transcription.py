"""Speech-to-text engines producing timestamped transcripts."""

from __future__ import annotations

import logging
import math
import tempfile
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional

import openai

from ..errors import TranscriptionError
from ..models import Transcript, TranscriptSegment
from ..services.pipeline import TranscriptionEngine
from ..media import backend_filename, extension_hint
from .openai_client import describe_openai_error


LOGGER = logging.getLogger(__name__)


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _seconds(value: Any, *, label: str) -> float:
    try:
        seconds = float(value if value is not None else 0.0)
    except (TypeError, ValueError) as exc:
        raise TranscriptionError(
            f"Transcription backend returned a non-numeric {label}: {value!r}",
            kind=TranscriptionError.UNEXPECTED_RESPONSE,
        ) from exc
    if not math.isfinite(seconds):
        raise TranscriptionError(
            f"Transcription backend returned a non-finite {label}",
            kind=TranscriptionError.UNEXPECTED_RESPONSE,
        )
    return max(0.0, seconds)


# Phrases the speech-to-text API uses when the uploaded audio itself is at fault.
_AUDIO_INPUT_ERROR_MARKERS = (
    "file format",
    "unsupported file",
    "unsupported format",
    "unsupported audio",
    "invalid file",
    "audio file",
    "corrupt",
    "decode",
)


def _rejects_audio_input(error: openai.BadRequestError) -> bool:
    """Return ``True`` when a 400 response blames the uploaded file, not the request."""

    if getattr(error, "param", None) == "file":
        return True
    message = str(getattr(error, "message", None) or error).lower()
    return any(marker in message for marker in _AUDIO_INPUT_ERROR_MARKERS)


def build_transcript(
    raw_segments: Optional[Iterable[Any]],
    *,
    full_text: Optional[str] = None,
    duration: Any = None,
) -> Transcript:
    """Normalise backend segments into a :class:`Transcript`.

    Times are clamped to be non-negative and non-decreasing, text is trimmed
    and empty segments are dropped. When the backend offers no usable
    segments but does return text, a single segment spanning the whole
    recording is synthesised.
    """

    if raw_segments is not None and not isinstance(raw_segments, (list, tuple)):
        try:
            raw_segments = list(raw_segments)
        except TypeError as exc:
            raise TranscriptionError(
                "Transcription backend returned segments in an unexpected shape",
                kind=TranscriptionError.UNEXPECTED_RESPONSE,
            ) from exc

    segments: List[TranscriptSegment] = []
    previous_start = 0.0
    for raw in raw_segments or ():
        text = str(_field(raw, "text") or "").strip()
        if not text:
            continue
        start = max(_seconds(_field(raw, "start"), label="segment start"), previous_start)
        end = max(_seconds(_field(raw, "end"), label="segment end"), start)
        segments.append(TranscriptSegment(t0=start, t1=end, text=text))
        previous_start = start

    if not segments:
        text = str(full_text or "").strip()
        if not text:
            raise TranscriptionError(
                "No speech could be recognised in the uploaded file",
                kind=TranscriptionError.INVALID_INPUT,
            )
        LOGGER.debug("Backend returned no segments; synthesising a single segment")
        segments.append(
            TranscriptSegment(t0=0.0, t1=_seconds(duration, label="duration"), text=text)
        )

    return Transcript(segments=tuple(segments))


class WhisperApiTranscription(TranscriptionEngine):
    """Transcription engine backed by the hosted Whisper API."""

    def __init__(self, client: openai.OpenAI, *, model: str = "whisper-1") -> None:
        self._client = client
        self._model = model

    def transcribe(
        self,
        audio: bytes,
        *,
        mime_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Transcript:
        name = backend_filename(filename, mime_type)
        content_type = mime_type or f"audio/{extension_hint(filename, mime_type)}"
        LOGGER.debug(
            "Sending %d bytes to Whisper model %s as %s (%s)",
            len(audio),
            self._model,
            name,
            content_type,
        )
        try:
            response = self._client.audio.transcriptions.create(
                file=(name, audio, content_type),
                model=self._model,
                response_format="verbose_json",
            )
        except openai.BadRequestError as error:
            if _rejects_audio_input(error):
                raise TranscriptionError(
                    f"The audio file could not be transcribed: {describe_openai_error(error)}",
                    kind=TranscriptionError.INVALID_INPUT,
                ) from error
            raise TranscriptionError(
                f"Transcription request was rejected: {describe_openai_error(error)}",
                kind=TranscriptionError.BACKEND_UNAVAILABLE,
            ) from error
        except openai.APIResponseValidationError as error:
            raise TranscriptionError(
                f"Unexpected transcription response: {describe_openai_error(error)}",
                kind=TranscriptionError.UNEXPECTED_RESPONSE,
            ) from error
        except openai.OpenAIError as error:
            raise TranscriptionError(
                f"Transcription service unavailable: {describe_openai_error(error)}",
                kind=TranscriptionError.BACKEND_UNAVAILABLE,
            ) from error

        transcript = build_transcript(
            _field(response, "segments"),
            full_text=_field(response, "text"),
            duration=_field(response, "duration"),
        )
        LOGGER.debug(
            "Whisper returned %d segments covering %.1fs", len(transcript), transcript.duration
        )
        return transcript


class FasterWhisperTranscription(TranscriptionEngine):
    """Local transcription engine backed by :mod:`faster_whisper`."""

    def __init__(
        self,
        model_size: str = "base",
        *,
        download_root: Optional[Path] = None,
        compute_type: str = "int8",
        beam_size: int = 5,
    ) -> None:
        try:
            from faster_whisper import WhisperModel
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "faster-whisper is not installed; install the 'local' extra"
            ) from exc

        self._beam_size = beam_size
        self._model = WhisperModel(
            model_size,
            device="cpu",
            compute_type=compute_type,
            download_root=str(download_root) if download_root is not None else None,
        )
        LOGGER.debug(
            "Loaded faster_whisper model '%s' (compute_type=%s, beam_size=%s)",
            model_size,
            compute_type,
            beam_size,
        )

    def transcribe(
        self,
        audio: bytes,
        *,
        mime_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Transcript:
        suffix = f".{extension_hint(filename, mime_type)}"
        with tempfile.TemporaryDirectory(prefix="lecture-quiz-") as workdir:
            source = Path(workdir) / f"upload{suffix}"
            source.write_bytes(audio)
            try:
                segments, info = self._model.transcribe(str(source), beam_size=self._beam_size)
                # Segments are decoded lazily; consume them while the file exists.
                collected = list(segments)
            except ValueError as error:
                raise TranscriptionError(
                    f"The audio file could not be decoded: {error}",
                    kind=TranscriptionError.INVALID_INPUT,
                ) from error
            except (RuntimeError, OSError) as error:
                raise TranscriptionError(
                    f"Local transcription failed: {error}",
                    kind=TranscriptionError.BACKEND_UNAVAILABLE,
                ) from error

        LOGGER.debug("faster_whisper produced %d raw segments", len(collected))
        return build_transcript(
            collected,
            full_text=" ".join(str(_field(segment, "text") or "").strip() for segment in collected),
            duration=getattr(info, "duration", None),
        )


__all__ = ["FasterWhisperTranscription", "WhisperApiTranscription", "build_transcript"]
