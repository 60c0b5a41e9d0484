"""Configuration loading utilities for the Lecture Quiz application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".lecture_quiz_write_check"

TRANSCRIPTION_BACKENDS: Tuple[str, ...] = ("openai", "faster-whisper")

BASE_URL_ENV = "LECTURE_QUIZ_PUBLIC_BASE_URL"
TIMEOUT_ENV = "LECTURE_QUIZ_TIMEOUT_SECONDS"


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins; the flag tells whether a fallback was
    used. When nothing can be prepared the original ``preferred`` path is
    returned so that the bootstrap step reports the failure.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _coerce_timeout(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring invalid adapter timeout %r", value)
        return None
    return timeout if timeout > 0 else None


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and processing options for the application."""

    storage_root: Path
    database_file: Path
    public_base_url: str = "http://127.0.0.1:8000"
    transcription_backend: str = "openai"
    transcription_model: str = "whisper-1"
    summary_model: str = "gpt-4o"
    quiz_model: str = "gpt-4o"
    adapter_timeout_seconds: Optional[float] = 300.0
    expose_answer_key: bool = True

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".lecture_quiz" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()
        if storage_fallback_used:
            try:
                relative_database = database_file.relative_to(preferred_storage)
            except ValueError:
                relative_database = None
            if relative_database is not None:
                fallback_database = (storage_root / relative_database).resolve()
                if _ensure_writable_directory(fallback_database.parent):
                    LOGGER.warning(
                        "Preferred database location '%s' is not writable; using fallback '%s'.",
                        database_file,
                        fallback_database,
                    )
                    database_file = fallback_database

        if not _ensure_writable_directory(database_file.parent):
            fallback_database = (storage_root / database_file.name).resolve()
            if fallback_database != database_file and _ensure_writable_directory(
                fallback_database.parent
            ):
                LOGGER.warning(
                    "Preferred database location '%s' is not writable; using fallback '%s'.",
                    database_file,
                    fallback_database,
                )
                database_file = fallback_database
            else:
                LOGGER.warning(
                    "Database location '%s' is not writable and no fallback is available.",
                    database_file,
                )

        backend = str(mapping.get("transcription_backend", cls.transcription_backend)).lower()
        if backend not in TRANSCRIPTION_BACKENDS:
            raise ValueError(
                f"Unsupported transcription backend '{backend}'. "
                f"Choose one of: {', '.join(TRANSCRIPTION_BACKENDS)}"
            )

        public_base_url = os.environ.get(BASE_URL_ENV) or mapping.get(
            "public_base_url", cls.public_base_url
        )
        timeout_source = os.environ.get(TIMEOUT_ENV) or mapping.get(
            "adapter_timeout_seconds", cls.adapter_timeout_seconds
        )

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            public_base_url=str(public_base_url).rstrip("/"),
            transcription_backend=backend,
            transcription_model=str(mapping.get("transcription_model", cls.transcription_model)),
            summary_model=str(mapping.get("summary_model", cls.summary_model)),
            quiz_model=str(mapping.get("quiz_model", cls.quiz_model)),
            adapter_timeout_seconds=_coerce_timeout(timeout_source),
            expose_answer_key=bool(mapping.get("expose_answer_key", cls.expose_answer_key)),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "TRANSCRIPTION_BACKENDS", "load_config"]
