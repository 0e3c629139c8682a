from __future__ import annotations

import asyncio
import io
from datetime import datetime
from pathlib import Path

import pytest

from streamcutter.errors import ErrCode
from streamcutter.models import CutRequest, ProcessOutcome
from streamcutter.orchestrator import CutOrchestrator, build_cut_arguments, format_timestamp
from streamcutter.temp_files import TempNamespace


class _FailingStream:
    def read(self, _size: int = -1) -> bytes:
        raise OSError(28, "No space left on device")


def _request(
    payload: bytes = b"\x00" * 1024,
    *,
    name: str = "clip.mp4",
    content_type: str = "video/mp4",
    start: float = 2.0,
    end: float = 5.5,
    size: int | None = None,
) -> CutRequest:
    return CutRequest(
        source_stream=io.BytesIO(payload),
        original_file_name=name,
        declared_content_type=content_type,
        size_bytes=len(payload) if size is None else size,
        start_seconds=start,
        end_seconds=end,
    )


@pytest.fixture
def build_orchestrator(make_config, make_cutter, temp_dir: Path):
    def _build(mode: str = "ok", **overrides) -> CutOrchestrator:
        config = make_config(ffmpeg_path=str(make_cutter(mode)), **overrides)
        namespace = TempNamespace(temp_dir, now=lambda: datetime(2026, 10, 19, 10, 30))
        return CutOrchestrator(config=config, namespace=namespace)

    return _build


def test_format_timestamp():
    assert format_timestamp(0) == "00:00:00.000"
    assert format_timestamp(2.0) == "00:00:02.000"
    assert format_timestamp(3.5) == "00:00:03.500"
    assert format_timestamp(3723.0456) == "01:02:03.046"
    assert format_timestamp(90_000) == "25:00:00.000"


def test_build_cut_arguments_uses_stream_copy():
    args = build_cut_arguments(Path("/t/in.mp4"), Path("/t/out.mp4"), 2.0, 5.5)

    assert args == [
        "-i", "/t/in.mp4",
        "-ss", "00:00:02.000",
        "-t", "00:00:03.500",
        "-c", "copy",
        "-avoid_negative_ts", "make_zero",
        "/t/out.mp4",
    ]


def test_successful_cut_returns_output_and_removes_input(build_orchestrator, read_calls, temp_dir, files_in):
    orchestrator = build_orchestrator("ok")

    result = asyncio.run(orchestrator.cut(_request(b"media-bytes" * 100)))

    assert result.success is True
    assert result.error_code is None
    assert result.output_file_name == "clip_202610191030.mp4"
    assert result.output_path is not None
    assert result.output_path.exists()
    assert result.output_path.stat().st_size > 0
    # Only the output survives; the input was consumed.
    assert files_in(temp_dir) == [result.output_path]
    assert not orchestrator.namespace.is_active(result.output_path)

    (call,) = read_calls(Path(orchestrator.config.ffmpeg_path))
    assert call[call.index("-ss") + 1] == "00:00:02.000"
    assert call[call.index("-t") + 1] == "00:00:03.500"
    assert call[-1] == str(result.output_path)


@pytest.mark.parametrize(("start", "end"), [(5.0, 5.0), (6.0, 5.0), (-1.0, 3.0)])
def test_invalid_range_fails_before_any_file_is_written(build_orchestrator, read_calls, temp_dir, files_in, start, end):
    orchestrator = build_orchestrator("ok")

    result = asyncio.run(orchestrator.cut(_request(start=start, end=end)))

    assert result.success is False
    assert result.error_code is ErrCode.INVALID_RANGE
    assert result.message == "Invalid time range"
    assert files_in(temp_dir) == []
    assert read_calls(Path(orchestrator.config.ffmpeg_path)) == []


def test_unsupported_type_is_rejected(build_orchestrator, temp_dir, files_in):
    orchestrator = build_orchestrator("ok")

    result = asyncio.run(orchestrator.cut(_request(name="notes.txt", content_type="text/plain")))

    assert result.success is False
    assert result.error_code is ErrCode.UNSUPPORTED_TYPE
    assert files_in(temp_dir) == []


def test_declared_size_over_limit_is_rejected(build_orchestrator, temp_dir, files_in):
    orchestrator = build_orchestrator("ok", max_file_size_mb=1)

    result = asyncio.run(orchestrator.cut(_request(size=2 * 1024 * 1024)))

    assert result.success is False
    assert result.error_code is ErrCode.TOO_LARGE
    assert "1MB" in result.message
    assert files_in(temp_dir) == []


def test_stream_longer_than_declared_size_is_rejected_and_cleaned(build_orchestrator, read_calls, temp_dir, files_in):
    orchestrator = build_orchestrator("ok", max_file_size_mb=1)
    payload = b"\x01" * (1024 * 1024 + 10)

    result = asyncio.run(orchestrator.cut(_request(payload, size=100)))

    assert result.success is False
    assert result.error_code is ErrCode.TOO_LARGE
    assert files_in(temp_dir) == []
    assert read_calls(Path(orchestrator.config.ffmpeg_path)) == []


def test_storage_failure_removes_partial_input(build_orchestrator, temp_dir, files_in):
    orchestrator = build_orchestrator("ok")
    request = _request()
    request.source_stream = _FailingStream()

    result = asyncio.run(orchestrator.cut(request))

    assert result.success is False
    assert result.error_code is ErrCode.STORAGE
    assert "No space" not in result.message
    assert files_in(temp_dir) == []


def test_non_zero_exit_cleans_input_and_partial_output(build_orchestrator, temp_dir, files_in):
    orchestrator = build_orchestrator("fail")

    result = asyncio.run(orchestrator.cut(_request()))

    assert result.success is False
    assert result.error_code is ErrCode.NON_ZERO_EXIT
    assert result.output_path is None
    assert files_in(temp_dir) == []


@pytest.mark.parametrize("mode", ["empty", "missing"])
def test_zero_exit_without_usable_output_is_empty_output(build_orchestrator, temp_dir, files_in, mode):
    orchestrator = build_orchestrator(mode)

    result = asyncio.run(orchestrator.cut(_request()))

    assert result.success is False
    assert result.error_code is ErrCode.EMPTY_OUTPUT
    assert files_in(temp_dir) == []


def test_timeout_kills_tool_and_leaves_no_files(build_orchestrator, temp_dir, files_in):
    orchestrator = build_orchestrator("hang", timeout_seconds=1.5)

    result = asyncio.run(orchestrator.cut(_request()))

    assert result.success is False
    assert result.error_code is ErrCode.TIMED_OUT
    assert "timed out" in result.message
    assert files_in(temp_dir) == []


def test_missing_binary_is_reported_as_spawn_error(make_config, temp_dir, tmp_path, files_in):
    config = make_config(ffmpeg_path=str(tmp_path / "does-not-exist" / "ffmpeg"))
    orchestrator = CutOrchestrator(config=config, namespace=TempNamespace(temp_dir))

    result = asyncio.run(orchestrator.cut(_request()))

    assert result.success is False
    assert result.error_code is ErrCode.SPAWN
    assert "ffmpeg configuration" in result.message
    assert files_in(temp_dir) == []


def test_unexpected_runner_error_is_masked_and_cleaned(make_config, temp_dir, files_in):
    class ExplodingRunner:
        async def run(self, binary_path, arguments, timeout):
            raise ValueError("internal detail")

    orchestrator = CutOrchestrator(
        config=make_config(),
        namespace=TempNamespace(temp_dir),
        runner=ExplodingRunner(),
    )

    result = asyncio.run(orchestrator.cut(_request()))

    assert result.success is False
    assert result.error_code is ErrCode.UNEXPECTED
    assert "internal detail" not in result.message
    assert files_in(temp_dir) == []


def test_exit_code_zero_is_not_trusted_without_output(make_config, temp_dir, files_in):
    class SilentRunner:
        async def run(self, binary_path, arguments, timeout):
            return ProcessOutcome(exit_code=0)

    orchestrator = CutOrchestrator(
        config=make_config(),
        namespace=TempNamespace(temp_dir),
        runner=SilentRunner(),
    )

    result = asyncio.run(orchestrator.cut(_request()))

    assert result.error_code is ErrCode.EMPTY_OUTPUT
    assert files_in(temp_dir) == []


def test_concurrent_cuts_of_same_file_name_do_not_collide(build_orchestrator, temp_dir, files_in):
    orchestrator = build_orchestrator("ok")

    async def _cut_many():
        return await asyncio.gather(*(orchestrator.cut(_request(bytes([i]) * 128)) for i in range(8)))

    results = asyncio.run(_cut_many())

    assert all(result.success for result in results)
    outputs = {result.output_path for result in results}
    assert len(outputs) == 8
    assert {result.output_file_name for result in results} == {"clip_202610191030.mp4"}
    assert set(files_in(temp_dir)) == outputs
    for index, result in enumerate(results):
        assert result.output_path.read_bytes() == bytes([index]) * 64
