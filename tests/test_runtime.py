"""Tests for the media runtime: asset fetch, workspace and process protocol."""

from __future__ import annotations

import gzip
import hashlib
from unittest.mock import patch

import httpx
import pytest

from clip_extractor.config.settings import DEFAULT_RUNTIME_CONFIG
from clip_extractor.core.runtime import (
    MediaRuntime,
    active_workspaces,
    fetch_runtime_binary,
    parse_progress_line,
    runtime_asset_url,
    runtime_platform,
    workspace_owner_alive,
)

BINARY = b"#!/bin/sh\necho runtime\n"


def _runtime_config(**overrides):
    return {**DEFAULT_RUNTIME_CONFIG, **overrides}


class TestParseProgressLine:
    """Test -progress output parsing."""

    def test_out_time_fraction(self):
        assert parse_progress_line("out_time_us=7250000\n", 14.5) == pytest.approx(0.5)

    def test_out_time_ms_is_microseconds(self):
        assert parse_progress_line("out_time_ms=1450000", 14.5) == pytest.approx(0.1)

    def test_clamped_to_one(self):
        assert parse_progress_line("out_time_us=99000000", 14.5) == 1.0

    def test_end_marker(self):
        assert parse_progress_line("progress=end", None) == 1.0

    def test_ignored_lines(self):
        assert parse_progress_line("progress=continue", 10) is None
        assert parse_progress_line("frame=42", 10) is None
        assert parse_progress_line("out_time_us=N/A", 10) is None
        assert parse_progress_line("out_time_us=100", None) is None


class TestAssetUrl:
    """Test versioned asset URL resolution."""

    def test_linux_x64(self):
        with patch("clip_extractor.core.runtime.sys.platform", "linux"), patch(
            "clip_extractor.core.runtime.platform.machine", return_value="x86_64"
        ):
            url = runtime_asset_url(_runtime_config())

        assert url == (
            "https://github.com/eugeneware/ffmpeg-static/releases/download/b6.0/ffmpeg-linux-x64.gz"
        )

    def test_darwin_arm64(self):
        with patch("clip_extractor.core.runtime.sys.platform", "darwin"), patch(
            "clip_extractor.core.runtime.platform.machine", return_value="arm64"
        ):
            assert runtime_platform() == ("darwin", "arm64")

    def test_unsupported_architecture(self):
        with patch("clip_extractor.core.runtime.sys.platform", "linux"), patch(
            "clip_extractor.core.runtime.platform.machine", return_value="sparc64"
        ):
            with pytest.raises(RuntimeError, match="Unsupported architecture"):
                runtime_platform()


class TestFetchRuntimeBinary:
    """Test pinned build download."""

    @pytest.fixture(autouse=True)
    def linux_host(self):
        with patch("clip_extractor.core.runtime.sys.platform", "linux"), patch(
            "clip_extractor.core.runtime.platform.machine", return_value="x86_64"
        ):
            yield

    @pytest.mark.asyncio
    async def test_download_decompresses_and_reports_progress(self, isolated_dirs):
        archive = gzip.compress(BINARY)
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=archive)

        progress = []
        path = await fetch_runtime_binary(
            _runtime_config(sha256=hashlib.sha256(archive).hexdigest()),
            progress.append,
            transport=httpx.MockTransport(handler),
        )

        assert path.read_bytes() == BINARY
        assert path.parent.name == "6.0"
        assert path.stat().st_mode & 0o111
        assert str(requests[0].url).endswith("/b6.0/ffmpeg-linux-x64.gz")
        assert progress[-1] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_cached_binary_is_reused(self, isolated_dirs):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=gzip.compress(BINARY))

        transport = httpx.MockTransport(handler)
        first = await fetch_runtime_binary(_runtime_config(), transport=transport)
        second = await fetch_runtime_binary(_runtime_config(), transport=transport)

        assert first == second
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_checksum_mismatch_leaves_nothing(self, isolated_dirs):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=gzip.compress(BINARY)))

        with pytest.raises(RuntimeError, match="checksum mismatch"):
            await fetch_runtime_binary(_runtime_config(sha256="0" * 64), transport=transport)

        version_dir = isolated_dirs["cache_dir"] / "runtime" / "6.0"
        assert list(version_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_truncated_archive(self, isolated_dirs):
        archive = gzip.compress(BINARY * 50)[:-20]
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=archive))

        with pytest.raises(RuntimeError, match="truncated"):
            await fetch_runtime_binary(_runtime_config(), transport=transport)

    @pytest.mark.asyncio
    async def test_http_error(self, isolated_dirs):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))

        with pytest.raises(httpx.HTTPStatusError):
            await fetch_runtime_binary(_runtime_config(), transport=transport)


class TestMediaRuntime:
    """Test runtime lifecycle against a stand-in binary."""

    @pytest.mark.asyncio
    async def test_load_creates_private_workspace(self, fake_ffmpeg, isolated_dirs):
        runtime = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))

        await runtime.load()

        assert runtime.loaded is True
        assert runtime.version == "local"
        assert runtime.workspace.parent == isolated_dirs["data_dir"] / "workspaces"
        assert runtime.workspace in active_workspaces()
        assert workspace_owner_alive(runtime.workspace) is True
        assert runtime.list_files() == []

        runtime.terminate()

    @pytest.mark.asyncio
    async def test_load_missing_binary(self, tmp_path):
        runtime = MediaRuntime(_runtime_config(binary=str(tmp_path / "nope" / "ffmpeg")))

        with pytest.raises(FileNotFoundError):
            await runtime.load()

        assert runtime.loaded is False

    @pytest.mark.asyncio
    async def test_load_requires_encoders(self, fake_ffmpeg):
        runtime = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))

        with pytest.raises(RuntimeError, match="libvpx-vp9"):
            await runtime.load(required_encoders=("libx264", "libvpx-vp9"))

        assert runtime.loaded is False

    @pytest.mark.asyncio
    async def test_workspace_file_operations(self, fake_ffmpeg):
        runtime = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))
        await runtime.load()

        await runtime.write_file("input.webm", b"source")
        assert runtime.list_files() == ["input.webm"]
        assert await runtime.read_file("input.webm") == b"source"

        await runtime.delete_file("input.webm")
        await runtime.delete_file("input.webm", missing_ok=True)
        assert runtime.list_files() == []

        with pytest.raises(FileNotFoundError):
            await runtime.delete_file("input.webm")

        runtime.terminate()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "..", ".owner", "../escape.webm", "dir/input.webm"])
    async def test_workspace_rejects_paths(self, fake_ffmpeg, name):
        runtime = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))
        await runtime.load()

        with pytest.raises(ValueError):
            await runtime.write_file(name, b"x")

        runtime.terminate()

    @pytest.mark.asyncio
    async def test_file_operations_require_load(self):
        runtime = MediaRuntime(_runtime_config())

        with pytest.raises(RuntimeError, match="not loaded"):
            await runtime.write_file("input.webm", b"x")

        await runtime.delete_file("input.webm", missing_ok=True)
        assert runtime.list_files() == []

    @pytest.mark.asyncio
    async def test_exec_reports_progress_and_logs(self, fake_ffmpeg):
        runtime = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))
        logs = []
        runtime.add_log_handler(logs.append)
        await runtime.load()
        await runtime.write_file("input.webm", b"source")

        progress = []
        result = await runtime.exec(
            ["-i", "input.webm", "output.mp4"], duration=2.0, on_progress=progress.append
        )

        assert result.ok is True
        assert progress == [0.25, 0.5, 1.0]
        assert any("Input #0" in line for line in logs)
        assert await runtime.read_file("output.mp4") == b"encoded"

        runtime.terminate()

    @pytest.mark.asyncio
    async def test_exec_failure_returns_log_tail(self, fake_ffmpeg, monkeypatch):
        monkeypatch.setenv("FAKE_FFMPEG_FAIL", "1")
        runtime = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))
        await runtime.load()

        result = await runtime.exec(["-i", "input.webm", "output.mp4"], duration=2.0)

        assert result.ok is False
        assert result.returncode == 1
        assert "Invalid data found" in result.log_tail[-1]
        assert "output.mp4" not in runtime.list_files()

        runtime.terminate()

    @pytest.mark.asyncio
    async def test_terminate_removes_workspace(self, fake_ffmpeg):
        runtime = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))
        await runtime.load()
        workspace = runtime.workspace
        await runtime.write_file("input.webm", b"source")

        runtime.terminate()
        runtime.terminate()

        assert not workspace.exists()
        assert workspace not in active_workspaces()
        assert runtime.loaded is False
        with pytest.raises(RuntimeError):
            await runtime.exec(["-version"])

    @pytest.mark.asyncio
    async def test_runtimes_do_not_share_workspaces(self, fake_ffmpeg):
        first = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))
        second = MediaRuntime(_runtime_config(binary=str(fake_ffmpeg)))
        await first.load()
        await second.load()

        await first.write_file("input.webm", b"a")

        assert first.workspace != second.workspace
        assert second.list_files() == []

        first.terminate()
        second.terminate()

    @pytest.mark.asyncio
    async def test_load_fetches_pinned_build_when_no_binary(self, fake_ffmpeg):
        config = _runtime_config()

        async def fake_fetch(cfg, on_progress=None):
            on_progress(1.0)
            return fake_ffmpeg

        progress = []
        with patch("clip_extractor.core.runtime.fetch_runtime_binary", side_effect=fake_fetch) as mock_fetch:
            runtime = MediaRuntime(config)
            await runtime.load(progress.append)

        mock_fetch.assert_called_once()
        assert runtime.binary == fake_ffmpeg
        assert runtime.version == "6.0"
        assert progress == [1.0]

        runtime.terminate()
