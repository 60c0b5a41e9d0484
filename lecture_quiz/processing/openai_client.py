"""Construction of the OpenAI client handed to the adapters."""

from __future__ import annotations

import logging
import os
from typing import Optional

import openai

from ..config import AppConfig


LOGGER = logging.getLogger(__name__)


def build_openai_client(
    config: AppConfig,
    *,
    api_key: Optional[str] = None,
    max_retries: int = 2,
) -> openai.OpenAI:
    """Return an explicitly configured client; nothing is cached at module level."""

    resolved_key = api_key or os.getenv("OPENAI_API_KEY")
    if not resolved_key:
        raise RuntimeError("OPENAI_API_KEY is not set. Export it before processing lectures.")

    LOGGER.debug(
        "Creating OpenAI client (timeout=%s, max_retries=%s)",
        config.adapter_timeout_seconds,
        max_retries,
    )
    return openai.OpenAI(
        api_key=resolved_key,
        timeout=config.adapter_timeout_seconds,
        max_retries=max_retries,
    )


def describe_openai_error(error: openai.OpenAIError) -> str:
    """Return a short operator-facing description of an SDK error."""

    status = getattr(error, "status_code", None)
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    return f"{message} (HTTP {status})" if status else message


__all__ = ["build_openai_client", "describe_openai_error"]
