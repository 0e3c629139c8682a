from __future__ import annotations

import json
import os
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from streamcutter.config import Config


_FAKE_CUTTER = textwrap.dedent(
    """\
    #!{python}
    import json
    import sys
    import time

    MODE = {mode!r}
    CALLS = {calls!r}

    args = sys.argv[1:]
    if args == ["-version"]:
        print("ffmpeg version 0.0-fake")
        sys.exit(0)

    with open(CALLS, "a", encoding="utf-8") as handle:
        handle.write(json.dumps(args) + "\\n")

    source = args[args.index("-i") + 1]
    output = args[-1]
    with open(source, "rb") as handle:
        data = handle.read()
    print("Input #0, from " + repr(source), file=sys.stderr)

    if MODE == "ok":
        with open(output, "wb") as handle:
            handle.write(data[:64] or b"x")
    elif MODE == "empty":
        open(output, "wb").close()
    elif MODE == "fail":
        with open(output, "wb") as handle:
            handle.write(b"partial")
        print("Invalid data found when processing input", file=sys.stderr)
        sys.exit(1)
    elif MODE == "hang":
        with open(output, "wb") as handle:
            handle.write(b"partial")
        time.sleep(60)
    """
)


@pytest.fixture
def make_cutter(tmp_path: Path) -> Callable[[str], Path]:
    """Build an executable stand-in for ffmpeg: ok, empty, missing, fail or hang."""

    def _make(mode: str = "ok") -> Path:
        script = tmp_path / f"fake-ffmpeg-{mode}"
        calls = tmp_path / f"fake-ffmpeg-{mode}.calls"
        script.write_text(_FAKE_CUTTER.format(python=sys.executable, mode=mode, calls=str(calls)))
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture
def read_calls() -> Callable[[Path], list[list[str]]]:
    """Argument lists the fake cutter was invoked with."""

    def _read(script: Path) -> list[list[str]]:
        calls = script.with_name(script.name + ".calls")
        if not calls.exists():
            return []
        return [json.loads(line) for line in calls.read_text().splitlines() if line]

    return _read


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path / "temp"


@pytest.fixture
def make_config(temp_dir: Path) -> Callable[..., Config]:
    def _make(**overrides) -> Config:
        base = Config(
            temp_dir=temp_dir,
            timeout_seconds=30.0,
            enable_tracing=False,
        )
        return base.with_overrides(**overrides)

    return _make


@pytest.fixture
def files_in() -> Callable[[Path], list[Path]]:
    def _list(directory: Path) -> list[Path]:
        if not directory.exists():
            return []
        return sorted(path for path in directory.iterdir() if path.is_file())

    return _list


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch):
    for key in list(os.environ):
        if key.startswith("STREAMCUTTER_"):
            monkeypatch.delenv(key, raising=False)
