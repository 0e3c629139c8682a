"""
Error taxonomy for media cuts.

Every failure carries a code, a structured context for the logs and a short
user-facing message. The context is never shown to the caller.
"""
from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, Optional


class ErrCode(str, Enum):
    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"
    TOO_LARGE = "TOO_LARGE"
    INVALID_RANGE = "INVALID_RANGE"
    STORAGE = "STORAGE"
    SPAWN = "SPAWN"
    NON_ZERO_EXIT = "NON_ZERO_EXIT"
    TIMED_OUT = "TIMED_OUT"
    EMPTY_OUTPUT = "EMPTY_OUTPUT"
    UNEXPECTED = "UNEXPECTED"


_CATEGORIES: dict[ErrCode, str] = {
    ErrCode.UNSUPPORTED_TYPE: "validation",
    ErrCode.TOO_LARGE: "validation",
    ErrCode.INVALID_RANGE: "validation",
    ErrCode.STORAGE: "storage",
    ErrCode.SPAWN: "spawn",
    ErrCode.NON_ZERO_EXIT: "execution",
    ErrCode.TIMED_OUT: "execution",
    ErrCode.EMPTY_OUTPUT: "empty_output",
    ErrCode.UNEXPECTED: "unexpected",
}

USER_MESSAGES: dict[ErrCode, str] = {
    ErrCode.UNSUPPORTED_TYPE: "Unsupported file format",
    ErrCode.TOO_LARGE: "File exceeds the size limit",
    ErrCode.INVALID_RANGE: "Invalid time range",
    ErrCode.STORAGE: "Could not save the uploaded file",
    ErrCode.SPAWN: "Media tool is unavailable, check the ffmpeg configuration",
    ErrCode.NON_ZERO_EXIT: "Media tool failed to cut the file",
    ErrCode.TIMED_OUT: "Media tool timed out while cutting the file",
    ErrCode.EMPTY_OUTPUT: "Media tool produced an empty output file",
    ErrCode.UNEXPECTED: "An error occurred while processing the file",
}


def category_of(code: ErrCode) -> str:
    return _CATEGORIES[code]


class StreamCutterError(RuntimeError):
    """
    Domain error with a code and structured context.
    """

    default_code: ErrCode = ErrCode.UNEXPECTED

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrCode] = None,
        ctx: Mapping[str, Any] | None = None,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.ctx: dict[str, Any] = dict(ctx or {})
        self.user_message = user_message or USER_MESSAGES[self.code]

    @property
    def category(self) -> str:
        return category_of(self.code)

    def with_context(self, extra: dict[str, Any]) -> StreamCutterError:
        # Existing keys win.
        for key, value in extra.items():
            self.ctx.setdefault(key, value)
        return self

    def __str__(self) -> str:
        return f"{self.code.value}: {super().__str__()}"


class CutValidationError(StreamCutterError):
    """Client-caused rejection, raised before any file is written."""

    default_code = ErrCode.INVALID_RANGE


class StorageError(StreamCutterError):
    default_code = ErrCode.STORAGE


class SpawnError(StreamCutterError):
    """The cutter binary could not be started (missing, not executable)."""

    default_code = ErrCode.SPAWN


class ExecutionError(StreamCutterError):
    default_code = ErrCode.NON_ZERO_EXIT


class EmptyOutputError(StreamCutterError):
    default_code = ErrCode.EMPTY_OUTPUT
