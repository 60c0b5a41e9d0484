"""Accepted lecture media formats and the extension hint given to backends."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Dict, Optional, Tuple

from .errors import BadRequestError


LOGGER = logging.getLogger(__name__)


SUPPORTED_EXTENSIONS: Tuple[str, ...] = (
    "flac",
    "m4a",
    "mp3",
    "mp4",
    "mpeg",
    "mpga",
    "oga",
    "ogg",
    "wav",
    "webm",
)
_SUPPORTED_SET = frozenset(SUPPORTED_EXTENSIONS)

DEFAULT_EXTENSION = "webm"

MAX_UPLOAD_BYTES = 25 * 1024 * 1024

_MIME_EXTENSIONS: Dict[str, str] = {
    "audio/flac": "flac",
    "audio/x-flac": "flac",
    "audio/m4a": "m4a",
    "audio/x-m4a": "m4a",
    "audio/mp3": "mp3",
    "audio/mpeg": "mp3",
    "audio/mpga": "mpga",
    "audio/mp4": "mp4",
    "video/mp4": "mp4",
    "video/mpeg": "mpeg",
    "audio/oga": "oga",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/wave": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "video/webm": "webm",
}


def _extension_from_filename(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix
    return suffix[1:].lower() if suffix else None


def _extension_from_mime(mime_type: Optional[str]) -> Optional[str]:
    if not mime_type:
        return None
    essence = mime_type.split(";", 1)[0].strip().lower()
    return _MIME_EXTENSIONS.get(essence)


def extension_hint(filename: Optional[str], mime_type: Optional[str]) -> str:
    """Return the extension presented to a transcription backend.

    The filename wins when it carries a supported extension, then the MIME
    type, then :data:`DEFAULT_EXTENSION`.
    """

    from_name = _extension_from_filename(filename)
    if from_name in _SUPPORTED_SET:
        return from_name
    from_mime = _extension_from_mime(mime_type)
    if from_mime is not None:
        return from_mime
    return DEFAULT_EXTENSION


def backend_filename(filename: Optional[str], mime_type: Optional[str]) -> str:
    """Return a safe ``<stem>.<ext>`` name for the upload."""

    stem = PurePosixPath((filename or "").replace("\\", "/")).stem or "audio"
    return f"{stem}.{extension_hint(filename, mime_type)}"


def validate_media_upload(filename: Optional[str], mime_type: Optional[str], size: int) -> str:
    """Reject uploads outside the format whitelist or size ceiling.

    Returns the resolved extension. Raises :class:`BadRequestError`.
    """

    extension = _extension_from_filename(filename)
    if extension is None:
        extension = _extension_from_mime(mime_type)
    if extension not in _SUPPORTED_SET:
        shown = f".{extension}" if extension else "unknown"
        raise BadRequestError(
            f"Unsupported file format: {shown}. Supported formats: {', '.join(SUPPORTED_EXTENSIONS)}",
            details={"supported": list(SUPPORTED_EXTENSIONS)},
        )

    if mime_type and _extension_from_mime(mime_type) is None:
        LOGGER.warning("Unexpected MIME type %s for file %s", mime_type, filename)

    if size <= 0:
        raise BadRequestError("Uploaded file is empty")
    if size > MAX_UPLOAD_BYTES:
        raise BadRequestError(
            f"File too large: {size / 1024 / 1024:.1f}MB. Maximum size: 25MB",
            details={"maxBytes": MAX_UPLOAD_BYTES, "receivedBytes": size},
        )
    return extension


__all__ = [
    "DEFAULT_EXTENSION",
    "MAX_UPLOAD_BYTES",
    "SUPPORTED_EXTENSIONS",
    "backend_filename",
    "extension_hint",
    "validate_media_upload",
]
