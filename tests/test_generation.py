from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from conftest import SAMPLE_TRANSCRIPT
from lecture_quiz.errors import QuizGenerationError, SummarizationError
from lecture_quiz.models import Difficulty
from lecture_quiz.processing.quiz_generation import (
    OpenAIQuizGenerator,
    build_quiz_json_schema,
    build_system_prompt,
    parse_quiz_payload,
)
from lecture_quiz.processing.summarization import OpenAISummarizer


class _FakeCompletions:
    def __init__(self, content=None, error=None) -> None:
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(completions: _FakeCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _question(**overrides):
    question = {
        "type": "mcq",
        "prompt": "What does the first law describe?",
        "options": ["Inertia", "Gravity", "Friction", "Momentum"],
        "correct_index": 0,
        "rationale": "Said at 4.5s",
        "sources": [{"t0": 4.5, "t1": 9.0, "quote": "The first law is about inertia."}],
    }
    question.update(overrides)
    return question


def test_parse_quiz_payload_builds_drafts() -> None:
    content = json.dumps({"questions": [_question(), _question(correct_index=3, sources=None)]})

    draft = parse_quiz_payload(content, 2)

    assert len(draft.questions) == 2
    assert draft.questions[0].options == ("Inertia", "Gravity", "Friction", "Momentum")
    assert draft.questions[0].sources[0].quote == "The first law is about inertia."
    assert draft.questions[1].correct_index == 3
    assert draft.questions[1].sources is None


@pytest.mark.parametrize(
    "payload",
    [
        {"questions": [_question(options=["a", "b", "c"])]},
        {"questions": [_question(correct_index=4)]},
        {"questions": [_question(correct_index="1")]},
        {"questions": [_question(prompt="Why?")]},
        {"items": []},
    ],
)
def test_parse_quiz_payload_rejects_schema_violations(payload) -> None:
    with pytest.raises(QuizGenerationError, match="failed validation"):
        parse_quiz_payload(json.dumps(payload), 1)


def test_parse_quiz_payload_rejects_wrong_count() -> None:
    with pytest.raises(QuizGenerationError) as excinfo:
        parse_quiz_payload(json.dumps({"questions": [_question()]}), 5)

    assert excinfo.value.details == {"expected": 5, "received": 1}


def test_parse_quiz_payload_rejects_malformed_json() -> None:
    with pytest.raises(QuizGenerationError):
        parse_quiz_payload("{not json", 1)
    with pytest.raises(QuizGenerationError, match="empty"):
        parse_quiz_payload("", 1)


def test_system_prompt_mentions_bloom_levels_and_count() -> None:
    prompt = build_system_prompt(Difficulty.HARD, 7)

    assert "exactly 7" in prompt
    assert "Analyze, Evaluate" in prompt
    assert "correct_index" in prompt


def test_quiz_generator_requests_strict_schema_output() -> None:
    questions = [_question(), _question(rationale=None, sources=None), _question()]
    completions = _FakeCompletions(content=json.dumps({"questions": questions}))
    generator = OpenAIQuizGenerator(_client(completions), model="gpt-4o")

    draft = generator.generate(SAMPLE_TRANSCRIPT, difficulty=Difficulty.EASY, count=3)

    assert len(draft.questions) == 3
    assert draft.questions[1].rationale is None
    call = completions.calls[0]
    response_format = call["response_format"]
    assert response_format["type"] == "json_schema"
    assert response_format["json_schema"]["name"] == "QuizJSON"
    assert response_format["json_schema"]["strict"] is True
    questions_schema = response_format["json_schema"]["schema"]["properties"]["questions"]
    assert (questions_schema["minItems"], questions_schema["maxItems"]) == (3, 3)
    assert json.loads(call["messages"][1]["content"]) == SAMPLE_TRANSCRIPT.to_dict()
    assert "Remember, Understand" in call["messages"][0]["content"]


def test_quiz_json_schema_pins_options_and_answer_range() -> None:
    schema = build_quiz_json_schema(6)

    question = schema["properties"]["questions"]["items"]
    assert schema["additionalProperties"] is False
    assert question["additionalProperties"] is False
    assert set(question["required"]) == set(question["properties"])
    options = question["properties"]["options"]
    assert (options["minItems"], options["maxItems"]) == (4, 4)
    assert question["properties"]["correct_index"] == {"type": "integer", "minimum": 0, "maximum": 3}
    assert schema["properties"]["questions"]["minItems"] == 6


def test_quiz_generator_translates_sdk_errors() -> None:
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com"))
    generator = OpenAIQuizGenerator(_client(_FakeCompletions(error=error)))

    with pytest.raises(QuizGenerationError, match="Quiz generation failed"):
        generator.generate(SAMPLE_TRANSCRIPT, difficulty=Difficulty.MEDIUM, count=1)


def test_summarizer_returns_trimmed_markdown() -> None:
    completions = _FakeCompletions(content="\n## Topics\n- Inertia\n")
    summarizer = OpenAISummarizer(_client(completions), model="gpt-4o")

    assert summarizer.summarize(SAMPLE_TRANSCRIPT) == "## Topics\n- Inertia"
    user_message = completions.calls[0]["messages"][1]["content"]
    assert user_message.startswith("Summarize this lecture into Markdown")


def test_summarizer_rejects_empty_output() -> None:
    summarizer = OpenAISummarizer(_client(_FakeCompletions(content="  ")))

    with pytest.raises(SummarizationError):
        summarizer.summarize(SAMPLE_TRANSCRIPT)
