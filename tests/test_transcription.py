from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest

from lecture_quiz.errors import TranscriptionError
from lecture_quiz.processing.transcription import WhisperApiTranscription, build_transcript


_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")


class _FakeTranscriptions:
    def __init__(self, response=None, error=None) -> None:
        self.response = response
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def _client(transcriptions: _FakeTranscriptions) -> SimpleNamespace:
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions))


def test_build_transcript_normalises_segments() -> None:
    transcript = build_transcript(
        [
            {"start": 0.0, "end": 2.5, "text": "  Hello class. "},
            {"start": 2.0, "end": 1.0, "text": "Overlap is clamped."},
            {"start": 3.0, "end": 4.0, "text": "   "},
            SimpleNamespace(start=5, end=6, text="Attribute access works too."),
        ]
    )

    assert [segment.text for segment in transcript.segments] == [
        "Hello class.",
        "Overlap is clamped.",
        "Attribute access works too.",
    ]
    starts = [segment.t0 for segment in transcript.segments]
    assert starts == sorted(starts)
    assert all(segment.t0 <= segment.t1 for segment in transcript.segments)


def test_build_transcript_synthesises_single_segment_from_text() -> None:
    transcript = build_transcript([], full_text="Whole lecture text", duration=61.5)

    assert len(transcript) == 1
    segment = transcript.segments[0]
    assert (segment.t0, segment.t1, segment.text) == (0.0, 61.5, "Whole lecture text")
    assert transcript.duration == 61.5
    assert transcript.to_dict() == {"segments": [{"t0": 0.0, "t1": 61.5, "text": "Whole lecture text"}]}


def test_build_transcript_without_speech_is_invalid_input() -> None:
    with pytest.raises(TranscriptionError) as excinfo:
        build_transcript(None, full_text="   ")

    assert excinfo.value.kind == TranscriptionError.INVALID_INPUT
    assert excinfo.value.status_code == 400


def test_build_transcript_rejects_non_numeric_times() -> None:
    with pytest.raises(TranscriptionError) as excinfo:
        build_transcript([{"start": "soon", "end": 1, "text": "hi"}])

    assert excinfo.value.kind == TranscriptionError.UNEXPECTED_RESPONSE


def test_whisper_api_sends_hinted_filename() -> None:
    transcriptions = _FakeTranscriptions(
        response=SimpleNamespace(
            text="Intro. Body.",
            duration=8.0,
            segments=[
                SimpleNamespace(start=0.0, end=3.0, text="Intro."),
                SimpleNamespace(start=3.0, end=8.0, text="Body."),
            ],
        )
    )
    engine = WhisperApiTranscription(_client(transcriptions), model="whisper-1")

    transcript = engine.transcribe(b"audio-bytes", mime_type="audio/ogg", filename="blob")

    assert len(transcript) == 2
    call = transcriptions.calls[0]
    assert call["model"] == "whisper-1"
    assert call["response_format"] == "verbose_json"
    assert call["file"] == ("blob.ogg", b"audio-bytes", "audio/ogg")


def test_whisper_api_bad_request_is_user_correctable() -> None:
    error = openai.BadRequestError(
        "Invalid file format.",
        response=httpx.Response(400, request=_REQUEST),
        body=None,
    )
    engine = WhisperApiTranscription(_client(_FakeTranscriptions(error=error)))

    with pytest.raises(TranscriptionError) as excinfo:
        engine.transcribe(b"garbage", mime_type="audio/mpeg", filename="lecture.mp3")

    assert excinfo.value.kind == TranscriptionError.INVALID_INPUT
    assert excinfo.value.user_correctable
    assert "Invalid file format." in excinfo.value.message


@pytest.mark.parametrize(
    ("message", "body"),
    [
        ("Invalid model whisper-9. The model argument should be left blank.", None),
        ("Unrecognized request argument supplied: language", {"param": "language"}),
    ],
)
def test_whisper_api_rejected_request_is_not_blamed_on_the_file(message, body) -> None:
    error = openai.BadRequestError(
        message,
        response=httpx.Response(400, request=_REQUEST),
        body=body,
    )
    engine = WhisperApiTranscription(_client(_FakeTranscriptions(error=error)))

    with pytest.raises(TranscriptionError) as excinfo:
        engine.transcribe(b"audio", mime_type="audio/mpeg", filename="lecture.mp3")

    assert excinfo.value.kind == TranscriptionError.BACKEND_UNAVAILABLE
    assert not excinfo.value.user_correctable
    assert excinfo.value.status_code == 500
    assert excinfo.value.message.startswith("Transcription request was rejected")


def test_whisper_api_file_param_error_is_user_correctable() -> None:
    error = openai.BadRequestError(
        "Something went wrong reading the upload.",
        response=httpx.Response(400, request=_REQUEST),
        body={"param": "file", "code": None},
    )
    engine = WhisperApiTranscription(_client(_FakeTranscriptions(error=error)))

    with pytest.raises(TranscriptionError) as excinfo:
        engine.transcribe(b"audio", filename="lecture.ogg")

    assert excinfo.value.status_code == 400


def test_whisper_api_connection_error_is_transient() -> None:
    error = openai.APIConnectionError(request=_REQUEST)
    engine = WhisperApiTranscription(_client(_FakeTranscriptions(error=error)))

    with pytest.raises(TranscriptionError) as excinfo:
        engine.transcribe(b"audio", filename="lecture.wav")

    assert excinfo.value.kind == TranscriptionError.BACKEND_UNAVAILABLE
    assert excinfo.value.status_code == 500
