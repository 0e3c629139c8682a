"""
Data models for StreamCutter.

These models define the values passed between the validator, the temp
namespace, the process runner and the cut orchestrator.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Optional

from pydantic import BaseModel, ConfigDict, Field

from streamcutter.errors import ErrCode


class StreamCutterModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)


class TempFilePurpose(Enum):
    """Role of a file inside the temp namespace."""
    INPUT = "input"
    OUTPUT = "output"


class CutState(Enum):
    """States a single cut attempt moves through."""
    VALIDATING = "validating"
    PERSISTING = "persisting"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CutRequest(StreamCutterModel):
    """
    An upload plus the time range to extract from it.

    The range is deliberately not validated here: the orchestrator rejects a
    bad range with a typed result instead of a construction error.
    """
    source_stream: Any = Field(exclude=True, repr=False)
    original_file_name: str
    declared_content_type: str = ""
    size_bytes: int = 0
    start_seconds: float  # in seconds
    end_seconds: float  # in seconds

    @property
    def duration(self) -> float:
        return self.end_seconds - self.start_seconds

    @property
    def stream(self) -> BinaryIO:
        return self.source_stream


class TempFile(StreamCutterModel):
    """A reserved path in the temp namespace."""
    path: Path
    purpose: TempFilePurpose
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Human readable name offered for download (outputs only)
    display_name: Optional[str] = None

    @property
    def name(self) -> str:
        return self.display_name or self.path.name


class ProcessOutcome(StreamCutterModel):
    """Result of one child process invocation."""
    exit_code: Optional[int] = None  # None when the process was killed on timeout
    timed_out: bool = False
    stdout_lines: list[str] = Field(default_factory=list)
    stderr_lines: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    def stderr_tail(self, lines: int = 10) -> str:
        return "\n".join(self.stderr_lines[-lines:])


class CutResult(StreamCutterModel):
    """Terminal value of a cut; on success the caller owns output_path."""
    success: bool
    message: str
    output_path: Optional[Path] = None
    output_file_name: Optional[str] = None
    error_code: Optional[ErrCode] = None


@dataclass
class SweepReport:
    scanned: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
