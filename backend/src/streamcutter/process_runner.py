"""
Child process execution with streamed output and a wall-clock timeout.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Sequence

from streamcutter.errors import SpawnError
from streamcutter.models import ProcessOutcome

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_LINE_BREAK = re.compile(rb"\r\n|\r|\n")

# Grace periods after the child exits (or is killed).
_REAP_TIMEOUT_SECONDS = 5.0
_DRAIN_TIMEOUT_SECONDS = 5.0

BINARY_CHECK_TIMEOUT_SECONDS = 5.0


async def _drain(stream: Optional[asyncio.StreamReader], sink: list[str], label: str) -> None:
    """Read a pipe until EOF, appending non-empty lines to sink."""
    if stream is None:
        return
    pending = b""
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        pending += chunk
        # Hold back a trailing "\r" until we know whether "\n" follows it.
        held = pending.endswith(b"\r")
        parts = _LINE_BREAK.split(pending[:-1] if held else pending)
        pending = parts.pop() + (b"\r" if held else b"")
        for raw in parts:
            _emit(raw, sink, label)
    for raw in _LINE_BREAK.split(pending):
        _emit(raw, sink, label)


def _emit(raw: bytes, sink: list[str], label: str) -> None:
    line = raw.decode("utf-8", errors="replace").strip()
    if not line:
        return
    sink.append(line)
    logger.debug("process.%s %s", label, line)


class ProcessRunner:
    """
    Runs one external command per call; calls share no state.
    """

    def __init__(
        self,
        *,
        reap_timeout: float = _REAP_TIMEOUT_SECONDS,
        drain_timeout: float = _DRAIN_TIMEOUT_SECONDS,
    ):
        self.reap_timeout = reap_timeout
        self.drain_timeout = drain_timeout

    async def _spawn(self, binary_path: str, arguments: Sequence[str]) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                binary_path,
                *arguments,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SpawnError(
                f"Cannot start {binary_path}: {exc}",
                ctx={"binary_path": binary_path, "errno": getattr(exc, "errno", None)},
            ) from exc

    async def _kill(self, process: asyncio.subprocess.Process, binary_path: str) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            # Exited between the timeout firing and the kill.
            pass
        except OSError as exc:
            logger.error("process.kill.failed binary=%s pid=%s error=%s", binary_path, process.pid, exc)
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.reap_timeout)
        except asyncio.TimeoutError:
            logger.error("process.reap.timeout binary=%s pid=%s", binary_path, process.pid)

    async def _finish_readers(self, readers: list[asyncio.Task]) -> None:
        _, pending = await asyncio.wait(readers, timeout=self.drain_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("process.drain.incomplete readers=%d", len(pending))

    async def run(self, binary_path: str, arguments: Sequence[str], timeout: float) -> ProcessOutcome:
        """
        Run binary_path with arguments, killing it once timeout seconds elapse.

        Both pipes are drained continuously while waiting, so a chatty child
        can never block on a full pipe buffer. Only SpawnError is raised.
        """
        process = await self._spawn(binary_path, arguments)
        logger.debug("process.start binary=%s pid=%s", binary_path, process.pid)

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout_lines, "stdout")),
            asyncio.create_task(_drain(process.stderr, stderr_lines, "stderr")),
        ]

        timed_out = False
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.error("process.timeout binary=%s pid=%s timeout=%.1fs", binary_path, process.pid, timeout)
            await self._kill(process, binary_path)
        except asyncio.CancelledError:
            await self._kill(process, binary_path)
            raise
        finally:
            await self._finish_readers(readers)

        if timed_out:
            return ProcessOutcome(
                exit_code=None,
                timed_out=True,
                stdout_lines=stdout_lines,
                stderr_lines=stderr_lines,
            )

        logger.debug("process.exit binary=%s pid=%s code=%s", binary_path, process.pid, process.returncode)
        return ProcessOutcome(
            exit_code=process.returncode,
            timed_out=False,
            stdout_lines=stdout_lines,
            stderr_lines=stderr_lines,
        )


async def check_binary(
    binary_path: str,
    runner: Optional[ProcessRunner] = None,
    timeout: float = BINARY_CHECK_TIMEOUT_SECONDS,
) -> bool:
    """Probe the cutter with `-version`; log the outcome, never raise."""
    runner = runner or ProcessRunner()
    try:
        outcome = await runner.run(binary_path, ["-version"], timeout)
    except SpawnError as exc:
        logger.warning("binary.unavailable binary=%s error=%s", binary_path, exc)
        return False
    if outcome.succeeded:
        version = outcome.stdout_lines[0] if outcome.stdout_lines else ""
        logger.info("binary.available binary=%s version=%s", binary_path, version)
        return True
    logger.warning(
        "binary.check.failed binary=%s code=%s timed_out=%s",
        binary_path,
        outcome.exit_code,
        outcome.timed_out,
    )
    return False
