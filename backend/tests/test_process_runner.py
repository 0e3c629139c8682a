from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path

import pytest

from streamcutter.errors import ErrCode, SpawnError
from streamcutter.process_runner import ProcessRunner, check_binary


def _run(arguments: list[str], timeout: float = 10.0):
    return asyncio.run(ProcessRunner().run(sys.executable, arguments, timeout))


def test_run_collects_exit_code_and_both_streams():
    outcome = _run(
        [
            "-c",
            "import sys; print('out-1'); print('out-2'); "
            "print('err-1', file=sys.stderr); sys.exit(3)",
        ]
    )

    assert outcome.timed_out is False
    assert outcome.exit_code == 3
    assert outcome.stdout_lines == ["out-1", "out-2"]
    assert outcome.stderr_lines == ["err-1"]
    assert outcome.succeeded is False


def test_run_splits_carriage_return_progress_lines_and_drops_blanks():
    outcome = _run(
        [
            "-c",
            "import sys; sys.stderr.write('frame=1\\rframe=2\\r\\n\\nsize=3\\r'); sys.stderr.flush()",
        ]
    )

    assert outcome.exit_code == 0
    assert outcome.stderr_lines == ["frame=1", "frame=2", "size=3"]


def test_run_drains_output_larger_than_pipe_buffers():
    # Far beyond a 64 KiB pipe buffer on both streams.
    outcome = _run(
        [
            "-c",
            "import sys\n"
            "for i in range(20000):\n"
            "    print('o' * 40, i)\n"
            "    print('e' * 40, i, file=sys.stderr)\n",
        ]
    )

    assert outcome.exit_code == 0
    assert len(outcome.stdout_lines) == 20000
    assert len(outcome.stderr_lines) == 20000
    assert outcome.stdout_lines[-1].endswith("19999")


def test_run_kills_process_on_timeout():
    started = time.monotonic()
    outcome = _run(["-c", "import time; print('started', flush=True); time.sleep(30)"], timeout=1.5)
    elapsed = time.monotonic() - started

    assert outcome.timed_out is True
    assert outcome.exit_code is None
    assert outcome.stdout_lines == ["started"]
    assert elapsed < 10


def test_run_raises_spawn_error_for_missing_binary(tmp_path: Path):
    missing = tmp_path / "no-such-ffmpeg"

    with pytest.raises(SpawnError) as excinfo:
        asyncio.run(ProcessRunner().run(str(missing), ["-version"], 5.0))

    assert excinfo.value.code is ErrCode.SPAWN
    assert excinfo.value.ctx["binary_path"] == str(missing)


def test_run_raises_spawn_error_for_non_executable_file(tmp_path: Path):
    not_executable = tmp_path / "ffmpeg"
    not_executable.write_text("#!/bin/sh\nexit 0\n")
    not_executable.chmod(0o644)

    with pytest.raises(SpawnError):
        asyncio.run(ProcessRunner().run(str(not_executable), [], 5.0))


def test_concurrent_runs_keep_separate_output():
    async def _both():
        runner = ProcessRunner()
        return await asyncio.gather(
            runner.run(sys.executable, ["-c", "print('first')"], 10.0),
            runner.run(sys.executable, ["-c", "print('second')"], 10.0),
        )

    first, second = asyncio.run(_both())

    assert first.stdout_lines == ["first"]
    assert second.stdout_lines == ["second"]


def test_check_binary_reports_availability(make_cutter, tmp_path: Path):
    assert asyncio.run(check_binary(str(make_cutter("ok")))) is True
    assert asyncio.run(check_binary(str(tmp_path / "missing-ffmpeg"))) is False
