"""Markdown lecture summaries generated from transcript segments."""

from __future__ import annotations

import json
import logging

import openai

from ..errors import SummarizationError
from ..models import Transcript
from ..services.pipeline import Summarizer
from .openai_client import describe_openai_error


LOGGER = logging.getLogger(__name__)


SUMMARY_SYSTEM_PROMPT = "You are a concise academic summarizer."
SUMMARY_INSTRUCTIONS = (
    "Summarize this lecture into Markdown with headings: Topics, Key Takeaways, Key Terms.\n\n"
)


class OpenAISummarizer(Summarizer):
    """Summarizer backed by the chat completions API."""

    def __init__(
        self,
        client: openai.OpenAI,
        *,
        model: str = "gpt-4o",
        temperature: float = 0.3,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature

    def summarize(self, transcript: Transcript) -> str:
        payload = json.dumps(transcript.to_dict(), ensure_ascii=False)
        LOGGER.debug(
            "Requesting summary from %s for %d segments", self._model, len(transcript)
        )
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": SUMMARY_INSTRUCTIONS + payload},
                ],
                temperature=self._temperature,
            )
        except openai.OpenAIError as error:
            raise SummarizationError(
                f"Summary generation failed: {describe_openai_error(error)}"
            ) from error

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise SummarizationError("Summary response had an unexpected shape") from exc

        summary = (content or "").strip()
        if not summary:
            raise SummarizationError("Summary generation returned no text")
        return summary


__all__ = ["OpenAISummarizer", "SUMMARY_INSTRUCTIONS", "SUMMARY_SYSTEM_PROMPT"]
