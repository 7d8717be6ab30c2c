"""FFmpeg media runtime: pinned build fetch, private workspace and process execution."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import platform
import shutil
import stat
import sys
import tempfile
import zlib
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence

import httpx
import psutil

from ..config import get_runtime_config, get_runtime_dir, get_workspace_root
from .progress import ProgressCallback

logger = logging.getLogger(__name__)

REQUIRED_ENCODERS = ("libx264", "aac")
LOG_TAIL_LINES = 20

_MACHINE_ARCH = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "ia32",
    "i686": "ia32",
    "x86": "ia32",
}

# Workspaces owned by live runtimes in this process
_active_workspaces: set[Path] = set()


def active_workspaces() -> set[Path]:
    """Workspaces currently owned by loaded runtimes."""
    return set(_active_workspaces)


# Marks the process that owns a workspace, for sweeps from other processes
OWNER_FILE = ".owner"


def _write_owner(workspace: Path) -> None:
    me = psutil.Process()
    (workspace / OWNER_FILE).write_text(json.dumps({"pid": me.pid, "started": me.create_time()}))


def workspace_owner_alive(workspace: Path) -> bool:
    """
    Whether the process that created `workspace` is still running.

    The owner's start time is compared as well, so a recycled pid does not
    keep a dead process's workspace alive.
    """
    try:
        owner = json.loads((workspace / OWNER_FILE).read_text())
        process = psutil.Process(int(owner["pid"]))
        return abs(process.create_time() - float(owner["started"])) < 1.0
    except psutil.AccessDenied:
        # Running, but not ours to inspect
        return True
    except (OSError, ValueError, KeyError, TypeError, psutil.Error):
        return False


@dataclass
class ExecResult:
    """Outcome of one runtime command."""

    returncode: int
    log_tail: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def runtime_platform() -> tuple[str, str]:
    """
    Map the host to the platform/arch names used by the pinned builds.

    Returns:
        tuple: (platform, arch), e.g. ("linux", "x64")
    """
    if sys.platform.startswith("linux"):
        plat = "linux"
    elif sys.platform in ("darwin", "win32"):
        plat = sys.platform
    else:
        raise RuntimeError(f"Unsupported platform: {sys.platform}")

    machine = platform.machine().lower()
    arch = _MACHINE_ARCH.get(machine)
    if arch is None:
        raise RuntimeError(f"Unsupported architecture: {machine}")

    return plat, arch


def runtime_asset_url(config: dict[str, Any]) -> str:
    """Resolve the versioned asset URL from the runtime config templates."""
    plat, arch = runtime_platform()
    values = {"version": config["version"], "platform": plat, "arch": arch}
    base_url = config["base_url"].format(**values).rstrip("/")
    archive = config["archive"].format(**values)
    return f"{base_url}/{archive}"


def _binary_name() -> str:
    return "ffmpeg.exe" if sys.platform == "win32" else "ffmpeg"


async def fetch_runtime_binary(
    config: dict[str, Any],
    on_progress: ProgressCallback | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Path:
    """
    Fetch the pinned runtime build into the cache, or reuse a cached copy.

    The archive is streamed, gzip-decompressed on the fly and checked against
    the configured SHA-256 digest before being moved into place.

    Args:
        config: Runtime config (version, base_url, archive, sha256, timeout)
        on_progress: Optional callback receiving the downloaded fraction
        transport: Optional httpx transport

    Returns:
        Path to the executable runtime binary
    """
    dest = get_runtime_dir() / str(config["version"]) / _binary_name()
    if dest.exists():
        logger.debug(f"Using cached media runtime: {dest}")
        if on_progress:
            on_progress(1.0)
        return dest

    url = runtime_asset_url(config)
    dest.parent.mkdir(parents=True, exist_ok=True)
    part = dest.with_name(dest.name + ".part")
    digest = hashlib.sha256()
    decompressor = zlib.decompressobj(wbits=31) if url.endswith(".gz") else None

    logger.info(f"Fetching media runtime from {url}")

    try:
        async with httpx.AsyncClient(
            timeout=config.get("timeout", 300),
            follow_redirects=True,
            transport=transport,
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length") or 0)
                received = 0

                with open(part, "wb") as f:
                    async for chunk in response.aiter_raw():
                        received += len(chunk)
                        digest.update(chunk)
                        f.write(decompressor.decompress(chunk) if decompressor else chunk)
                        if on_progress and total > 0:
                            on_progress(received / total)

                    if decompressor:
                        f.write(decompressor.flush())

        if decompressor and not decompressor.eof:
            raise RuntimeError(f"Runtime asset is truncated: {url}")

        expected = config.get("sha256")
        if expected and digest.hexdigest() != expected.lower():
            raise RuntimeError(
                f"Runtime asset checksum mismatch: expected {expected}, got {digest.hexdigest()}"
            )

        part.chmod(part.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        os.replace(part, dest)
    finally:
        if part.exists():
            part.unlink()

    logger.info(f"Media runtime {config['version']} stored at {dest}")
    return dest


async def probe_encoders(binary: Path) -> set[str]:
    """List the encoder names a runtime binary offers."""
    process = await asyncio.create_subprocess_exec(
        str(binary),
        "-hide_banner",
        "-encoders",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
        raise RuntimeError(f"Media runtime failed to start: {message}")

    encoders = set()
    for line in stdout.decode(errors="replace").splitlines():
        parts = line.split()
        # " V....D libx264   libx264 H.264 / AVC ..."
        if len(parts) >= 2 and len(parts[0]) == 6 and parts[0][0] in "VAS":
            encoders.add(parts[1])
    return encoders


def parse_progress_line(line: str, duration: float | None) -> float | None:
    """
    Turn one `-progress` key=value line into a completion fraction.

    Returns:
        float in [0, 1], or None when the line carries no progress
    """
    key, _, value = line.strip().partition("=")

    if key == "progress" and value == "end":
        return 1.0

    # out_time_ms is microseconds too
    if key in ("out_time_us", "out_time_ms") and duration:
        try:
            micros = int(value)
        except ValueError:
            return None
        return min(max(micros / 1_000_000 / duration, 0.0), 1.0)

    return None


class MediaRuntime:
    """
    One FFmpeg runtime instance with a private workspace.

    The workspace is the runtime's virtual filesystem: files are addressed by
    plain names and commands run with the workspace as working directory.

    Lifecycle:
    - load(): resolve the binary, check encoders, create the workspace
    - exec(): run commands against workspace files
    - terminate(): kill running commands and delete the workspace
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = config if config is not None else get_runtime_config()
        self.binary: Path | None = None
        self.workspace: Path | None = None
        self._log_handlers: list[Callable[[str], None]] = []
        self._processes: set[asyncio.subprocess.Process] = set()

    @property
    def version(self) -> str:
        if self.config.get("binary"):
            return "local"
        return str(self.config["version"])

    @property
    def loaded(self) -> bool:
        return self.workspace is not None

    def add_log_handler(self, handler: Callable[[str], None]) -> None:
        """Receive every log line the runtime writes."""
        self._log_handlers.append(handler)

    async def load(
        self,
        on_progress: ProgressCallback | None = None,
        *,
        required_encoders: Sequence[str] = REQUIRED_ENCODERS,
    ) -> None:
        """Resolve and verify the runtime binary, then create the workspace."""
        if self.loaded:
            return

        configured = self.config.get("binary")
        if configured:
            resolved = shutil.which(str(configured))
            if resolved is None:
                raise FileNotFoundError(f"Media runtime binary not found: {configured}")
            binary = Path(resolved)
        else:
            binary = await fetch_runtime_binary(self.config, on_progress)

        encoders = await probe_encoders(binary)
        missing = [name for name in required_encoders if name not in encoders]
        if missing:
            raise RuntimeError(f"Media runtime lacks required encoders: {', '.join(missing)}")

        root = get_workspace_root()
        root.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix="engine-", dir=root))
        _write_owner(workspace)
        self.workspace = workspace
        self.binary = binary
        _active_workspaces.add(self.workspace)

        logger.info(f"Media runtime ready: {binary} (workspace {self.workspace})")

    def _path(self, name: str) -> Path:
        if self.workspace is None:
            raise RuntimeError("Media runtime is not loaded")
        if not name or name in (".", "..", OWNER_FILE) or "/" in name or "\\" in name:
            raise ValueError(f"Invalid workspace file name: {name!r}")
        return self.workspace / name

    async def write_file(self, name: str, data: bytes) -> None:
        await asyncio.to_thread(self._path(name).write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        return await asyncio.to_thread(self._path(name).read_bytes)

    async def delete_file(self, name: str, *, missing_ok: bool = False) -> None:
        if self.workspace is None and missing_ok:
            return
        self._path(name).unlink(missing_ok=missing_ok)

    def list_files(self) -> list[str]:
        if self.workspace is None or not self.workspace.exists():
            return []
        return sorted(p.name for p in self.workspace.iterdir() if p.name != OWNER_FILE)

    async def exec(
        self,
        args: Sequence[str],
        *,
        duration: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExecResult:
        """
        Run one command inside the workspace.

        Args:
            args: Arguments after the global options (inputs, codecs, output)
            duration: Expected output duration, used to turn timestamps into fractions
            on_progress: Optional callback for this command only

        Returns:
            ExecResult with the exit code and the last log lines
        """
        if self.binary is None or self.workspace is None:
            raise RuntimeError("Media runtime is not loaded")

        cmd = [
            str(self.binary),
            "-hide_banner",
            "-nostdin",
            "-y",
            "-nostats",
            "-progress", "pipe:1",
            *args,
        ]
        logger.debug(f"Executing media runtime: {' '.join(cmd)}")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(self.workspace),
        )
        self._processes.add(process)
        tail: deque[str] = deque(maxlen=LOG_TAIL_LINES)

        try:
            await asyncio.gather(
                self._read_progress(process.stdout, duration, on_progress),
                self._read_log(process.stderr, tail),
            )
            returncode = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        finally:
            self._processes.discard(process)

        return ExecResult(returncode=returncode, log_tail=list(tail))

    async def _read_progress(
        self,
        stream: asyncio.StreamReader,
        duration: float | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        async for raw in stream:
            fraction = parse_progress_line(raw.decode(errors="replace"), duration)
            if fraction is not None and on_progress:
                on_progress(fraction)

    async def _read_log(self, stream: asyncio.StreamReader, tail: deque[str]) -> None:
        async for raw in stream:
            line = raw.decode(errors="replace").rstrip()
            if not line:
                continue
            tail.append(line)
            for handler in self._log_handlers:
                handler(line)

    def terminate(self) -> None:
        """Kill running commands and delete the workspace."""
        for process in list(self._processes):
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
        self._processes.clear()

        if self.workspace is not None:
            _active_workspaces.discard(self.workspace)
            try:
                shutil.rmtree(self.workspace)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to remove workspace {self.workspace}: {e}")

        self.workspace = None
        self.binary = None
        self._log_handlers.clear()
