from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lecture_quiz.bootstrap import Bootstrapper
from lecture_quiz.config import AppConfig
from lecture_quiz.models import Difficulty, QuestionDraft, QuizDraft, Transcript, TranscriptSegment
from lecture_quiz.services.pipeline import LecturePipeline
from lecture_quiz.services.storage import LectureRepository


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_file = config_dir / "default.json"
    config_file.write_text(
        """
        {
            \"storage_root\": \"storage\",\n
            \"database_file\": \"storage/lecture_quiz.db\",\n
            \"public_base_url\": \"https://quiz.example.edu/\"\n
        }
        """,
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LECTURE_QUIZ_PUBLIC_BASE_URL", raising=False)
    monkeypatch.delenv("LECTURE_QUIZ_TIMEOUT_SECONDS", raising=False)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/lecture_quiz.db",
            "public_base_url": "https://quiz.example.edu/",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def repository(temp_config: AppConfig) -> LectureRepository:
    return LectureRepository(temp_config)


def make_question(index: int, correct_index: int = 0) -> QuestionDraft:
    return QuestionDraft(
        prompt=f"Which statement about topic {index} is correct?",
        options=(f"A{index}", f"B{index}", f"C{index}", f"D{index}"),
        correct_index=correct_index,
        rationale=f"Stated at minute {index}.",
    )


def make_draft(count: int, *, correct_indices: Optional[Sequence[int]] = None) -> QuizDraft:
    indices = list(correct_indices) if correct_indices is not None else [i % 4 for i in range(count)]
    return QuizDraft(questions=[make_question(i, indices[i]) for i in range(count)])


SAMPLE_TRANSCRIPT = Transcript(
    segments=(
        TranscriptSegment(t0=0.0, t1=4.5, text="Today we cover Newton's laws."),
        TranscriptSegment(t0=4.5, t1=9.0, text="The first law is about inertia."),
    )
)


class FakeTranscriber:
    def __init__(
        self,
        transcript: Transcript = SAMPLE_TRANSCRIPT,
        *,
        error: Optional[Exception] = None,
        on_call: Optional[Callable[[], None]] = None,
    ) -> None:
        self.transcript = transcript
        self.error = error
        self.on_call = on_call
        self.calls: List[dict] = []

    def transcribe(self, audio: bytes, *, mime_type=None, filename=None) -> Transcript:
        self.calls.append({"bytes": len(audio), "mime_type": mime_type, "filename": filename})
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return self.transcript


class FakeSummarizer:
    def __init__(
        self,
        summary: str = "## Topics\n- Newton's laws",
        *,
        error: Optional[Exception] = None,
        on_call: Optional[Callable[[], None]] = None,
    ) -> None:
        self.summary = summary
        self.error = error
        self.on_call = on_call
        self.calls = 0

    def summarize(self, transcript: Transcript) -> str:
        self.calls += 1
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return self.summary


class FakeQuizGenerator:
    def __init__(
        self,
        draft: Optional[QuizDraft] = None,
        *,
        error: Optional[Exception] = None,
        on_call: Optional[Callable[[], None]] = None,
    ) -> None:
        self.draft = draft
        self.error = error
        self.on_call = on_call
        self.requests: List[dict] = []

    def generate(self, transcript: Transcript, *, difficulty: Difficulty, count: int) -> QuizDraft:
        self.requests.append({"difficulty": difficulty, "count": count})
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return self.draft if self.draft is not None else make_draft(count)


def build_fake_pipeline(
    repository: LectureRepository,
    *,
    transcriber: Optional[FakeTranscriber] = None,
    summarizer: Optional[FakeSummarizer] = None,
    generator: Optional[FakeQuizGenerator] = None,
    **kwargs,
) -> LecturePipeline:
    return LecturePipeline(
        repository,
        transcription_engine=transcriber or FakeTranscriber(),
        summarizer=summarizer or FakeSummarizer(),
        quiz_generator=generator or FakeQuizGenerator(),
        **kwargs,
    )
