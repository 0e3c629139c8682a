"""
Upload checks performed before any file is written.
"""
from __future__ import annotations

import math
from pathlib import PurePath
from typing import Iterable


_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".ogg": "audio/ogg",
}


def _extension(file_name: str) -> str:
    # Browsers may send a full client path on some platforms.
    name = file_name.replace("\\", "/").rsplit("/", 1)[-1]
    return PurePath(name).suffix.lower().lstrip(".")


def _allowed_suffix(entry: str) -> str:
    """`video/mp4` -> `mp4`, `.mp3` -> `mp3`."""
    entry = entry.strip().lower()
    if "/" in entry:
        entry = entry.split("/", 1)[1]
    return entry.lstrip(".")


def is_allowed(declared_content_type: str, file_name: str, allowed_types: Iterable[str]) -> bool:
    """
    Accept an upload when its content type is allowed verbatim, or when its
    file extension equals the subtype of an allowed entry (case-insensitive).

    The second rule tolerates browsers that send `application/octet-stream`
    or no content type at all.
    """
    allowed = [entry for entry in allowed_types if entry and entry.strip()]
    if declared_content_type and declared_content_type in allowed:
        return True
    extension = _extension(file_name or "")
    if not extension:
        return False
    return any(_allowed_suffix(entry) == extension for entry in allowed)


def is_within_size_limit(size_bytes: int, max_file_size_bytes: int) -> bool:
    return size_bytes <= max_file_size_bytes


def is_valid_time_range(start_seconds: float, end_seconds: float) -> bool:
    if not (math.isfinite(start_seconds) and math.isfinite(end_seconds)):
        return False
    return start_seconds >= 0 and end_seconds > start_seconds


def content_type_for(file_name: str) -> str:
    """Response content type for a cut file, by extension."""
    suffix = PurePath(file_name).suffix.lower()
    return _CONTENT_TYPES.get(suffix, "application/octet-stream")
