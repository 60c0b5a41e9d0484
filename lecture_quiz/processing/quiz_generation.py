"""Multiple-choice quiz generation with strict validation of the model output."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Literal, Optional, Tuple

import openai
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from ..errors import QuizGenerationError
from ..models import OPTION_COUNT, Difficulty, QuestionDraft, QuizDraft, SourceQuote, Transcript
from ..services.pipeline import QuizGenerator
from .openai_client import describe_openai_error


LOGGER = logging.getLogger(__name__)


QUIZ_SCHEMA_NAME = "QuizJSON"
MAX_QUOTE_LENGTH = 180

DIFFICULTY_BLOOM_LEVELS: Dict[Difficulty, Tuple[str, ...]] = {
    Difficulty.EASY: ("Remember", "Understand"),
    Difficulty.MEDIUM: ("Apply", "Analyze"),
    Difficulty.HARD: ("Analyze", "Evaluate"),
}


class GeneratedSource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    t0: float = Field(ge=0)
    t1: float = Field(ge=0)
    quote: str = Field(max_length=MAX_QUOTE_LENGTH)


class GeneratedQuestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["mcq"] = "mcq"
    prompt: str = Field(min_length=8)
    options: List[str] = Field(min_length=OPTION_COUNT, max_length=OPTION_COUNT)
    correct_index: StrictInt = Field(ge=0, le=OPTION_COUNT - 1)
    rationale: Optional[str] = None
    sources: Optional[List[GeneratedSource]] = None


class GeneratedQuiz(BaseModel):
    model_config = ConfigDict(extra="ignore")

    questions: List[GeneratedQuestion]


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors()[:5]:
        location = ".".join(str(part) for part in item.get("loc", ()))
        problems.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    remaining = error.error_count() - len(problems)
    if remaining > 0:
        problems.append(f"... {remaining} more")
    return "; ".join(problems)


def parse_quiz_payload(content: Optional[str], expected_count: int) -> QuizDraft:
    """Validate raw generator output and convert it into a :class:`QuizDraft`.

    Any deviation (malformed JSON, a question count other than
    ``expected_count``, option lists that are not exactly four long, or an
    out-of-range ``correct_index``) raises :class:`QuizGenerationError`.
    """

    if not content or not content.strip():
        raise QuizGenerationError("Quiz generation returned an empty response")
    try:
        quiz = GeneratedQuiz.model_validate_json(content)
    except ValidationError as error:
        raise QuizGenerationError(
            f"Generated quiz failed validation: {_describe_validation_error(error)}"
        ) from error

    if len(quiz.questions) != expected_count:
        raise QuizGenerationError(
            f"Generated quiz has {len(quiz.questions)} questions, expected {expected_count}",
            details={"expected": expected_count, "received": len(quiz.questions)},
        )

    return QuizDraft(
        questions=[
            QuestionDraft(
                prompt=question.prompt.strip(),
                options=tuple(option.strip() for option in question.options),
                correct_index=question.correct_index,
                rationale=question.rationale,
                sources=tuple(
                    SourceQuote(t0=source.t0, t1=source.t1, quote=source.quote)
                    for source in question.sources
                )
                if question.sources
                else None,
            )
            for question in quiz.questions
        ]
    )


def build_quiz_json_schema(count: int) -> Dict[str, Any]:
    """Return the strict structured-output schema for a quiz of *count* questions.

    Strict mode requires every property to be listed as required, so the
    optional fields are expressed as nullable instead.
    """

    source = {
        "type": "object",
        "properties": {
            "t0": {"type": "number", "minimum": 0},
            "t1": {"type": "number", "minimum": 0},
            "quote": {"type": "string"},
        },
        "required": ["t0", "t1", "quote"],
        "additionalProperties": False,
    }
    question = {
        "type": "object",
        "properties": {
            "type": {"type": "string", "enum": ["mcq"]},
            "prompt": {"type": "string"},
            "options": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": OPTION_COUNT,
                "maxItems": OPTION_COUNT,
            },
            "correct_index": {"type": "integer", "minimum": 0, "maximum": OPTION_COUNT - 1},
            "rationale": {"type": ["string", "null"]},
            "sources": {"type": ["array", "null"], "items": source},
        },
        "required": ["type", "prompt", "options", "correct_index", "rationale", "sources"],
        "additionalProperties": False,
    }
    return {
        "type": "object",
        "properties": {
            "questions": {
                "type": "array",
                "items": question,
                "minItems": count,
                "maxItems": count,
            }
        },
        "required": ["questions"],
        "additionalProperties": False,
    }


def build_response_format(count: int) -> Dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": QUIZ_SCHEMA_NAME,
            "strict": True,
            "schema": build_quiz_json_schema(count),
        },
    }


def build_system_prompt(difficulty: Difficulty, count: int) -> str:
    bloom_levels = ", ".join(DIFFICULTY_BLOOM_LEVELS[difficulty])
    return (
        f"Generate exactly {count} multiple-choice questions from the transcript. "
        f"Target Bloom levels: {bloom_levels}. Only use lecture content. "
        f"Each question has exactly {OPTION_COUNT} options and a zero-based correct_index. "
        "Cite supporting transcript quotes of at most "
        f"{MAX_QUOTE_LENGTH} characters in sources using the segment t0/t1 times. "
        "Output JSON only."
    )


class OpenAIQuizGenerator(QuizGenerator):
    """Quiz generator backed by chat completions with strict structured output."""

    def __init__(
        self,
        client: openai.OpenAI,
        *,
        model: str = "gpt-4o",
        temperature: float = 0.4,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature

    def generate(self, transcript: Transcript, *, difficulty: Difficulty, count: int) -> QuizDraft:
        LOGGER.debug(
            "Requesting %d %s questions from %s", count, Difficulty(difficulty).value, self._model
        )
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": build_system_prompt(Difficulty(difficulty), count)},
                    {
                        "role": "user",
                        "content": json.dumps(transcript.to_dict(), ensure_ascii=False),
                    },
                ],
                temperature=self._temperature,
                response_format=build_response_format(count),
            )
        except openai.OpenAIError as error:
            raise QuizGenerationError(
                f"Quiz generation failed: {describe_openai_error(error)}"
            ) from error

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise QuizGenerationError("Quiz generation response had an unexpected shape") from exc

        return parse_quiz_payload(content, count)


__all__ = [
    "DIFFICULTY_BLOOM_LEVELS",
    "GeneratedQuestion",
    "GeneratedQuiz",
    "OpenAIQuizGenerator",
    "build_quiz_json_schema",
    "build_response_format",
    "build_system_prompt",
    "parse_quiz_payload",
]
