"""Pytest configuration with isolated directories and runtime fakes."""

from __future__ import annotations

import asyncio
import stat
import sys
from pathlib import Path

import pytest

from clip_extractor.core.runtime import ExecResult

FAKE_OUTPUT = b"\x00\x00\x00\x18ftypmp42fake-clip"

# Stand-in for the FFmpeg binary: lists encoders, writes progress to stdout,
# a log line to stderr, and "encodes" by writing a marker into the last arg.
# FAKE_FFMPEG_FAIL exits with an error, FAKE_FFMPEG_HANG stalls mid-encode.
FAKE_FFMPEG_SCRIPT = """#!/bin/sh
if [ "$2" = "-encoders" ]; then
    echo " V....D libx264              libx264 H.264 / AVC"
    echo " A....D aac                  AAC (Advanced Audio Coding)"
    exit 0
fi
for last; do :; done
echo "Input #0, matroska,webm, from 'input.webm':" >&2
if [ -n "$FAKE_FFMPEG_FAIL" ]; then
    echo "input.webm: Invalid data found when processing input" >&2
    exit 1
fi
if [ -n "$FAKE_FFMPEG_HANG" ]; then
    printf 'out_time_us=500000\\nprogress=continue\\n'
    exec sleep 30
fi
printf 'out_time_us=500000\\nprogress=continue\\nout_time_us=1000000\\nprogress=continue\\nout_time_us=N/A\\nprogress=end\\n'
printf 'encoded' > "$last"
"""


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "asyncio: mark test as async")
    config.addinivalue_line(
        "markers", "ffmpeg: marks tests as requiring a real ffmpeg on PATH"
    )


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Point every clip-extractor directory at a temporary location."""
    dirs = {
        "config_dir": tmp_path / "config",
        "data_dir": tmp_path / "data",
        "cache_dir": tmp_path / "cache",
        "output_dir": tmp_path / "clips",
    }
    monkeypatch.setenv("CLIP_EXTRACTOR_CONFIG_DIR", str(dirs["config_dir"]))
    monkeypatch.setenv("CLIP_EXTRACTOR_DATA_DIR", str(dirs["data_dir"]))
    monkeypatch.setenv("CLIP_EXTRACTOR_CACHE_DIR", str(dirs["cache_dir"]))
    monkeypatch.setenv("CLIP_EXTRACTOR_OUTPUT_DIR", str(dirs["output_dir"]))
    monkeypatch.delenv("CLIP_EXTRACTOR_FFMPEG", raising=False)
    monkeypatch.delenv("FAKE_FFMPEG_FAIL", raising=False)
    monkeypatch.delenv("FAKE_FFMPEG_HANG", raising=False)
    return dirs


class FakeRuntime:
    """In-memory MediaRuntime double that records what the engine asks of it."""

    def __init__(
        self,
        *,
        fail_load: Exception | None = None,
        load_delay: float = 0.0,
        exec_returncode: int = 0,
        exec_error: Exception | None = None,
        output: bytes = FAKE_OUTPUT,
    ):
        self.fail_load = fail_load
        self.load_delay = load_delay
        self.exec_returncode = exec_returncode
        self.exec_error = exec_error
        self.output = output

        self.version = "test"
        self.binary: Path | None = None
        self.workspace: Path | None = None
        self.files: dict[str, bytes] = {}
        self.commands: list[list[str]] = []
        self.log_handlers = []
        self.load_calls = 0
        self.terminated = False

    @property
    def loaded(self) -> bool:
        return self.workspace is not None

    def add_log_handler(self, handler) -> None:
        self.log_handlers.append(handler)

    async def load(self, on_progress=None, *, required_encoders=()):
        self.load_calls += 1
        self.required_encoders = tuple(required_encoders)
        await asyncio.sleep(self.load_delay)
        if self.fail_load is not None:
            raise self.fail_load
        if on_progress:
            on_progress(0.5)
        self.binary = Path("/fake/ffmpeg")
        self.workspace = Path("/fake/workspace")

    async def write_file(self, name: str, data: bytes) -> None:
        self.files[name] = data

    async def read_file(self, name: str) -> bytes:
        if name not in self.files:
            raise FileNotFoundError(name)
        return self.files[name]

    async def delete_file(self, name: str, *, missing_ok: bool = False) -> None:
        if name not in self.files:
            if missing_ok:
                return
            raise FileNotFoundError(name)
        del self.files[name]

    def list_files(self) -> list[str]:
        return sorted(self.files)

    async def exec(self, args, *, duration=None, on_progress=None) -> ExecResult:
        self.commands.append(list(args))
        for handler in self.log_handlers:
            handler("frame=1 fps=0.0")
        await asyncio.sleep(0)

        if on_progress:
            on_progress(0.5)
            on_progress(1.0)

        if self.exec_error is not None:
            raise self.exec_error

        if self.exec_returncode != 0:
            # Partial output left behind by a failed encode
            self.files[args[-1]] = b"partial"
            return ExecResult(self.exec_returncode, ["Invalid data found when processing input"])

        self.files[args[-1]] = self.output
        return ExecResult(0, [])

    def terminate(self) -> None:
        self.terminated = True
        self.workspace = None
        self.binary = None
        self.files.clear()


class FakeRuntimeFactory:
    """Runtime factory handing out FakeRuntime instances built from `options`."""

    def __init__(self, **options):
        self.options = options
        self.created: list[FakeRuntime] = []

    def __call__(self) -> FakeRuntime:
        runtime = FakeRuntime(**self.options)
        self.created.append(runtime)
        return runtime

    @property
    def last(self) -> FakeRuntime:
        return self.created[-1]


@pytest.fixture
def runtime_factory():
    """Factory producing in-memory runtimes."""
    return FakeRuntimeFactory()


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """Executable shell script standing in for the ffmpeg binary."""
    if sys.platform == "win32":
        pytest.skip("shell script runtime requires a POSIX shell")

    script = tmp_path / "bin" / "ffmpeg"
    script.parent.mkdir(parents=True)
    script.write_text(FAKE_FFMPEG_SCRIPT)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script
