"""
Cut orchestration.

Drives one cut through validate -> persist -> execute -> verify, and makes
sure a failed attempt leaves no temp file behind.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional

from streamcutter.config import Config, default_config
from streamcutter.errors import (
    CutValidationError,
    EmptyOutputError,
    ErrCode,
    ExecutionError,
    StorageError,
    StreamCutterError,
    USER_MESSAGES,
)
from streamcutter.models import (
    CutRequest,
    CutResult,
    CutState,
    ProcessOutcome,
    TempFile,
    TempFilePurpose,
)
from streamcutter.process_runner import ProcessRunner
from streamcutter.temp_files import TempNamespace
from streamcutter.validation import is_allowed, is_valid_time_range, is_within_size_limit

logger = logging.getLogger(__name__)

_COPY_CHUNK_SIZE = 1024 * 1024

SUCCESS_MESSAGE = "File cut successfully"


def format_timestamp(seconds: float) -> str:
    """Format seconds as HH:MM:SS.mmm (hours are not wrapped at 24)."""
    total_ms = int(round(max(0.0, seconds) * 1000))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def build_cut_arguments(
    input_path: Path,
    output_path: Path,
    start_seconds: float,
    end_seconds: float,
) -> list[str]:
    """Stream-copy cut: no re-encode, timestamps shifted to start at zero."""
    return [
        "-i", str(input_path),
        "-ss", format_timestamp(start_seconds),
        "-t", format_timestamp(end_seconds - start_seconds),
        "-c", "copy",
        "-avoid_negative_ts", "make_zero",
        str(output_path),
    ]


def _copy_limited(source: BinaryIO, destination: Path, limit: int) -> int:
    """Copy source into destination, refusing to write more than limit bytes."""
    written = 0
    with destination.open("xb") as handle:
        while True:
            chunk = source.read(_COPY_CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > limit:
                raise CutValidationError(
                    "Upload stream exceeds the size limit",
                    code=ErrCode.TOO_LARGE,
                    ctx={"limit": limit, "received_at_least": written},
                )
            handle.write(chunk)
    return written


@dataclass
class CutAttempt:
    """Per-request bookkeeping: current state and the temp files it created."""
    request: CutRequest
    state: CutState = CutState.VALIDATING
    temp_files: list[TempFile] = field(default_factory=list)
    input_file: Optional[TempFile] = None
    output_file: Optional[TempFile] = None


class CutOrchestrator:
    """
    Composes the validator, the temp namespace and the process runner.

    One instance serves every request; per-request state lives in a
    CutAttempt, so concurrent cuts share only the read-only config and the
    temp directory.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        namespace: Optional[TempNamespace] = None,
        runner: Optional[ProcessRunner] = None,
    ):
        self.config = config or default_config
        self.namespace = namespace or TempNamespace(self.config.resolved_temp_dir)
        self.runner = runner or ProcessRunner()

    def _transition(self, attempt: CutAttempt, state: CutState) -> None:
        logger.debug(
            "cut.state file=%s %s -> %s",
            attempt.request.original_file_name,
            attempt.state.value,
            state.value,
        )
        attempt.state = state

    def _reserve(self, attempt: CutAttempt, purpose: TempFilePurpose) -> TempFile:
        temp_file = self.namespace.reserve(purpose, attempt.request.original_file_name)
        attempt.temp_files.append(temp_file)
        return temp_file

    def _validate(self, request: CutRequest) -> None:
        if not is_valid_time_range(request.start_seconds, request.end_seconds):
            raise CutValidationError(
                "Invalid time range",
                code=ErrCode.INVALID_RANGE,
                ctx={"start": request.start_seconds, "end": request.end_seconds},
            )
        if not is_allowed(request.declared_content_type, request.original_file_name, self.config.allowed_types):
            raise CutValidationError(
                "Unsupported file type",
                code=ErrCode.UNSUPPORTED_TYPE,
                ctx={"content_type": request.declared_content_type, "file_name": request.original_file_name},
            )
        if not is_within_size_limit(request.size_bytes, self.config.max_file_size_bytes):
            raise CutValidationError(
                "Upload exceeds the size limit",
                code=ErrCode.TOO_LARGE,
                ctx={"size_bytes": request.size_bytes, "limit": self.config.max_file_size_bytes},
                user_message=f"File exceeds the {self.config.max_file_size_mb}MB size limit",
            )

    async def _persist(self, attempt: CutAttempt) -> TempFile:
        temp_file = self._reserve(attempt, TempFilePurpose.INPUT)
        attempt.input_file = temp_file
        try:
            written = await asyncio.to_thread(
                _copy_limited,
                attempt.request.stream,
                temp_file.path,
                self.config.max_file_size_bytes,
            )
        except OSError as exc:
            raise StorageError(
                f"Failed to persist upload: {exc}",
                ctx={"path": str(temp_file.path)},
            ) from exc
        logger.info("cut.persisted path=%s bytes=%d", temp_file.path, written)
        return temp_file

    async def _execute(self, attempt: CutAttempt, input_file: TempFile) -> TempFile:
        output_file = self._reserve(attempt, TempFilePurpose.OUTPUT)
        attempt.output_file = output_file
        request = attempt.request
        arguments = build_cut_arguments(
            input_file.path,
            output_file.path,
            request.start_seconds,
            request.end_seconds,
        )
        logger.info("cut.execute binary=%s args=%s", self.config.ffmpeg_path, " ".join(arguments))
        outcome = await self.runner.run(self.config.ffmpeg_path, arguments, self.config.timeout_seconds)
        self._check_outcome(outcome)
        return output_file

    def _check_outcome(self, outcome: ProcessOutcome) -> None:
        if outcome.timed_out:
            raise ExecutionError(
                f"Cutter exceeded {self.config.timeout_seconds:.0f}s and was killed",
                code=ErrCode.TIMED_OUT,
                ctx={"timeout_seconds": self.config.timeout_seconds},
            )
        if outcome.exit_code != 0:
            raise ExecutionError(
                f"Cutter exited with code {outcome.exit_code}",
                code=ErrCode.NON_ZERO_EXIT,
                ctx={"exit_code": outcome.exit_code, "stderr": outcome.stderr_tail()},
            )

    def _verify(self, output_file: TempFile) -> None:
        # The exit code alone is not trusted.
        try:
            size = output_file.path.stat().st_size
        except FileNotFoundError:
            size = None
        if not size:
            raise EmptyOutputError(
                "Cutter reported success but the output is missing or empty",
                ctx={"path": str(output_file.path), "size": size},
            )

    def _safe_delete(self, path: Path) -> None:
        try:
            self.namespace.delete(path)
        except OSError as exc:
            # The janitor reclaims whatever is left.
            logger.error("cut.cleanup.failed path=%s error=%s", path, exc)

    def _cleanup(self, attempt: CutAttempt) -> None:
        for temp_file in attempt.temp_files:
            self._safe_delete(temp_file.path)

    def _fail(self, attempt: CutAttempt, code: ErrCode, message: str) -> CutResult:
        self._transition(attempt, CutState.FAILED)
        self._cleanup(attempt)
        return CutResult(success=False, message=message, error_code=code)

    async def cut(self, request: CutRequest) -> CutResult:
        """
        Cut [start_seconds, end_seconds) out of the uploaded media.

        On success the output file exists, is non-empty and belongs to the
        caller; the input file is already gone. On failure every temp file
        created by this attempt has been deleted.
        """
        attempt = CutAttempt(request=request)
        logger.info(
            "cut.start file=%s type=%s size=%d range=%.3f-%.3f",
            request.original_file_name,
            request.declared_content_type,
            request.size_bytes,
            request.start_seconds,
            request.end_seconds,
        )
        try:
            self._validate(request)

            self._transition(attempt, CutState.PERSISTING)
            input_file = await self._persist(attempt)

            self._transition(attempt, CutState.EXECUTING)
            output_file = await self._execute(attempt, input_file)

            self._transition(attempt, CutState.VERIFYING)
            self._verify(output_file)
        except StreamCutterError as exc:
            log = logger.warning if exc.category == "validation" else logger.error
            log("cut.failed state=%s code=%s error=%s ctx=%s", attempt.state.value, exc.code.value, exc, exc.ctx)
            return self._fail(attempt, exc.code, exc.user_message)
        except asyncio.CancelledError:
            self._cleanup(attempt)
            raise
        except Exception:
            logger.exception("cut.failed state=%s unexpected error", attempt.state.value)
            return self._fail(attempt, ErrCode.UNEXPECTED, USER_MESSAGES[ErrCode.UNEXPECTED])

        self._transition(attempt, CutState.SUCCEEDED)
        self._safe_delete(input_file.path)
        # Ownership passes to the caller; the janitor remains the backstop.
        self.namespace.release(output_file.path)
        logger.info("cut.succeeded output=%s name=%s", output_file.path, output_file.name)
        return CutResult(
            success=True,
            message=SUCCESS_MESSAGE,
            output_path=output_file.path,
            output_file_name=output_file.name,
        )
