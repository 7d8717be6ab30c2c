"""Clip extraction engine: runtime lifecycle and time-range cuts."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable

from ..config import get_encoder_config
from ..errors import ClipCutError, EngineLoadError, NotLoadedError
from ..models import ClipRequest, ClipResult, EngineState, EngineStatus
from .progress import ProgressCallback, ProgressReporter
from .runtime import MediaRuntime

logger = logging.getLogger(__name__)


def format_seconds(value: float) -> str:
    """Decimal seconds for the command line, keeping sub-second precision."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text or "0"


def build_cut_args(
    input_name: str,
    output_name: str,
    start_seconds: float,
    duration_seconds: float,
    encoder: dict[str, Any],
) -> list[str]:
    """
    Build the transcode arguments for one cut.

    Seeks before the input, reads `duration_seconds`, and re-encodes to
    H.264/AAC in an MP4 container so the cut is frame-accurate and the
    result plays everywhere.
    """
    return [
        "-ss", format_seconds(start_seconds),
        "-i", input_name,
        "-t", format_seconds(duration_seconds),
        "-c:v", str(encoder["video_codec"]),
        "-preset", str(encoder["preset"]),
        "-crf", str(encoder["crf"]),
        "-c:a", str(encoder["audio_codec"]),
        "-b:a", str(encoder["audio_bitrate"]),
        "-movflags", "+faststart",
        output_name,
    ]


class ClipExtractionEngine:
    """
    Owns one media runtime and cuts time ranges out of videos with it.

    The runtime is loaded lazily and exactly once; concurrent load() callers
    share the same in-flight load. Each cut_video() call uses its own
    workspace file names and removes them before returning, so cuts on the
    same engine never see each other's files.

    Usage:
        async with ClipExtractionEngine() as engine:
            clip = await engine.cut_video(data, 30.5, 45.0)
    """

    def __init__(
        self,
        runtime_factory: Callable[[], MediaRuntime] = MediaRuntime,
        encoder: dict[str, Any] | None = None,
    ):
        self._runtime_factory = runtime_factory
        self._encoder = {**get_encoder_config(), **(encoder or {})}
        self._runtime: MediaRuntime | None = None
        self._state = EngineState.UNLOADED
        self._load_task: asyncio.Task | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    def is_loaded(self) -> bool:
        return self._state is EngineState.LOADED

    def status(self) -> EngineStatus:
        runtime = self._runtime
        return EngineStatus(
            state=self._state,
            loaded=self.is_loaded(),
            runtime_version=runtime.version if runtime else None,
            binary_path=str(runtime.binary) if runtime and runtime.binary else None,
            workspace=str(runtime.workspace) if runtime and runtime.workspace else None,
        )

    async def load(self, on_progress: ProgressCallback | None = None) -> None:
        """
        Load the media runtime if it is not loaded yet.

        Args:
            on_progress: Optional callback; receives 1.0 on success

        Raises:
            EngineLoadError: If the runtime could not be initialized
        """
        if self._state is EngineState.LOADED:
            logger.debug("Media runtime already loaded")
            return

        reporter = ProgressReporter(on_progress)

        if self._load_task is None:
            self._state = EngineState.LOADING
            self._load_task = asyncio.create_task(self._load(reporter))
        else:
            logger.debug("Waiting for in-flight media runtime load")

        await asyncio.shield(self._load_task)
        reporter.complete()

    async def _load(self, reporter: ProgressReporter) -> None:
        runtime: MediaRuntime | None = None
        try:
            runtime = self._runtime_factory()
            runtime.add_log_handler(self._log_sink)
            logger.info(f"Loading media runtime {runtime.version}")

            await runtime.load(
                reporter,
                required_encoders=(self._encoder["video_codec"], self._encoder["audio_codec"]),
            )
        except asyncio.CancelledError:
            self._abandon(runtime)
            raise
        except Exception as e:
            ctx = {"version": runtime.version} if runtime is not None else {}
            self._abandon(runtime)
            logger.error(f"Media runtime load failed: {e}")
            raise EngineLoadError(f"Failed to load media runtime: {e}", ctx=ctx) from e
        finally:
            self._load_task = None

        self._runtime = runtime
        self._state = EngineState.LOADED
        logger.info("Media runtime loaded successfully")

    def _abandon(self, runtime: MediaRuntime | None) -> None:
        # Failed or cancelled load: back to UNLOADED so load() can be retried
        self._state = EngineState.UNLOADED
        if runtime is not None:
            try:
                runtime.terminate()
            except Exception as e:
                logger.warning(f"Failed to tear down half-loaded runtime: {e}")

    def _log_sink(self, line: str) -> None:
        logger.debug(f"[ffmpeg] {line}")

    async def cut_video(
        self,
        source: bytes,
        start_seconds: float,
        end_seconds: float,
        on_progress: ProgressCallback | None = None,
        *,
        source_extension: str = ".webm",
    ) -> ClipResult:
        """
        Cut [start_seconds, end_seconds) out of `source` and re-encode it to MP4.

        Args:
            source: Source video bytes (recorder container, WebM by default)
            start_seconds: Clip start in seconds
            end_seconds: Clip end in seconds
            on_progress: Optional callback for this cut's transcode progress
            source_extension: Extension telling the runtime the source container

        Returns:
            ClipResult tagged video/mp4

        Raises:
            NotLoadedError: If load() has not completed successfully
            InvalidRangeError: If the range is empty, inverted or negative
            ClipCutError: If the transcode failed
        """
        runtime = self._runtime
        if self._state is not EngineState.LOADED or runtime is None:
            raise NotLoadedError(
                "Media runtime not loaded. Call load() first.",
                ctx={"state": self._state.value},
            )

        request = ClipRequest(
            source=source,
            start_seconds=float(start_seconds),
            end_seconds=float(end_seconds),
        )

        if not source_extension.startswith("."):
            source_extension = f".{source_extension}"
        token = uuid.uuid4().hex
        input_name = f"input-{token}{source_extension}"
        output_name = f"output-{token}.mp4"
        duration = request.duration_seconds

        ctx = {
            "start": request.start_seconds,
            "end": request.end_seconds,
            "input": input_name,
            "source_bytes": len(source),
        }
        reporter = ProgressReporter(on_progress)

        logger.info(
            f"Cutting video: {format_seconds(request.start_seconds)}s to "
            f"{format_seconds(request.end_seconds)}s (duration: {format_seconds(duration)}s)"
        )

        try:
            await runtime.write_file(input_name, request.source)

            result = await runtime.exec(
                build_cut_args(input_name, output_name, request.start_seconds, duration, self._encoder),
                duration=duration,
                on_progress=reporter,
            )
            if not runtime.loaded:
                raise ClipCutError("Video cutting aborted: media runtime was terminated", ctx=ctx)
            if not result.ok:
                detail = "; ".join(result.log_tail[-3:]) or "no log output"
                raise ClipCutError(
                    f"Video cutting failed (exit code {result.returncode}): {detail}",
                    ctx=ctx,
                )

            data = await runtime.read_file(output_name)
            if not data:
                raise ClipCutError("Video cutting failed: empty output", ctx=ctx)

        except ClipCutError as e:
            logger.error(f"Cut failed: {e} {e.ctx}")
            raise
        except Exception as e:
            logger.error(f"Cut failed: {e} {ctx}")
            raise ClipCutError(f"Video cutting failed: {e}", ctx=ctx) from e
        finally:
            await self._discard(runtime, input_name, output_name)

        reporter.complete()
        logger.info(f"Cut complete. Output size: {len(data) / 1024 / 1024:.2f}MB")

        return ClipResult(
            data=data,
            start_seconds=request.start_seconds,
            end_seconds=request.end_seconds,
        )

    async def _discard(self, runtime: MediaRuntime, *names: str) -> None:
        for name in names:
            try:
                await runtime.delete_file(name, missing_ok=True)
            except (OSError, RuntimeError) as e:
                logger.warning(f"Failed to delete workspace file {name}: {e}")

    async def terminate(self) -> None:
        """
        Tear down the runtime. Safe to call when nothing is loaded.

        An in-flight load is allowed to settle first; a later load() starts
        from a fresh runtime.
        """
        task = self._load_task
        if task is not None:
            await asyncio.wait({task})

        if self._runtime is None:
            if task is not None:
                # The awaited load failed, nothing to tear down
                self._state = EngineState.TERMINATED
            return

        self._runtime.terminate()
        self._runtime = None
        self._state = EngineState.TERMINATED
        logger.info("Media runtime terminated")

    async def __aenter__(self) -> ClipExtractionEngine:
        await self.load()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.terminate()
