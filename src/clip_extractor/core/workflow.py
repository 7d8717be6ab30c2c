"""Create a clip file from a source video on disk."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable

from ..config import get_clip_config, get_output_dir
from ..errors import InvalidRangeError
from ..models import ClipJob, ProcessingStep, check_time_range
from .engine import ClipExtractionEngine
from .media import format_time, probe_duration, save_poster
from .progress import ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)

# Share of overall progress reached at the end of each step
STEP_PROGRESS = {
    ProcessingStep.LOAD_ENGINE: 0.25,
    ProcessingStep.READ_SOURCE: 0.3,
    ProcessingStep.CUT: 0.9,
    ProcessingStep.SAVE: 1.0,
}


def check_clip_length(start_seconds: float, end_seconds: float) -> None:
    """
    Validate the range and the configured clip length limits.

    Raises:
        InvalidRangeError: If the range is invalid, shorter than min_seconds
            or longer than max_seconds (0 or null disables the maximum)
    """
    check_time_range(start_seconds, end_seconds)

    limits = get_clip_config()
    duration = end_seconds - start_seconds
    min_seconds = limits.get("min_seconds") or 0
    max_seconds = limits.get("max_seconds")

    if duration < min_seconds:
        raise InvalidRangeError(
            f"Clip must last at least {min_seconds} seconds (got {duration:.2f})",
            ctx={"start": start_seconds, "end": end_seconds},
        )
    if max_seconds and duration > max_seconds:
        raise InvalidRangeError(
            f"Clip cannot last more than {max_seconds} seconds (got {duration:.2f})",
            ctx={"start": start_seconds, "end": end_seconds},
        )


def default_output_path() -> Path:
    return get_output_dir() / f"clip_{int(time.time() * 1000)}.mp4"


async def create_clip(
    engine: ClipExtractionEngine,
    source_path: str | Path,
    start_seconds: float,
    end_seconds: float,
    output_path: str | Path | None = None,
    *,
    poster: bool = False,
    on_progress: ProgressCallback | None = None,
    on_step: Callable[[ProcessingStep], None] | None = None,
) -> ClipJob:
    """
    Cut a clip out of a video file and save it as MP4.

    Loads the engine on first use. Progress is reported over the whole
    workflow: engine load up to 0.25, source read up to 0.3, the cut up to
    0.9 and saving up to 1.0.

    Args:
        engine: Engine to cut with
        source_path: Source video file
        start_seconds: Clip start in seconds
        end_seconds: Clip end in seconds
        output_path: Where to save the clip (defaults to the output dir)
        poster: Also save a JPEG poster frame next to the clip
        on_progress: Optional overall progress callback
        on_step: Optional callback invoked when a step starts

    Returns:
        ClipJob describing the saved clip
    """
    check_clip_length(start_seconds, end_seconds)

    source_path = Path(source_path)
    if not source_path.is_file():
        raise FileNotFoundError(f"Source video not found: {source_path}")

    output_path = Path(output_path) if output_path else default_output_path()
    reporter = ProgressReporter(on_progress)

    def step(name: ProcessingStep) -> None:
        logger.debug(f"Clip step: {name.value}")
        if on_step:
            on_step(name)

    step(ProcessingStep.LOAD_ENGINE)
    if engine.is_loaded():
        reporter(STEP_PROGRESS[ProcessingStep.LOAD_ENGINE])
    else:
        await engine.load(reporter.child(0.0, STEP_PROGRESS[ProcessingStep.LOAD_ENGINE]))

    step(ProcessingStep.READ_SOURCE)
    data = await asyncio.to_thread(source_path.read_bytes)
    reporter(STEP_PROGRESS[ProcessingStep.READ_SOURCE])

    step(ProcessingStep.CUT)
    logger.info(
        f"Creating clip {format_time(start_seconds)} - {format_time(end_seconds)} "
        f"from {source_path.name}"
    )
    clip = await engine.cut_video(
        data,
        start_seconds,
        end_seconds,
        reporter.child(STEP_PROGRESS[ProcessingStep.READ_SOURCE], STEP_PROGRESS[ProcessingStep.CUT]),
        source_extension=source_path.suffix or ".webm",
    )

    step(ProcessingStep.SAVE)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(output_path.write_bytes, clip.data)
    duration = await asyncio.to_thread(probe_duration, output_path)

    poster_path = None
    if poster:
        poster_time = min(1.0, (duration or clip.duration_seconds) / 2)
        poster_path = await asyncio.to_thread(
            save_poster, output_path, output_path.with_suffix(".jpg"), poster_time
        )

    reporter.complete()
    logger.info(f"Clip saved to {output_path} ({clip.size} bytes)")

    return ClipJob(
        output_path=str(output_path),
        poster_path=str(poster_path) if poster_path else None,
        start_seconds=clip.start_seconds,
        end_seconds=clip.end_seconds,
        duration_seconds=duration,
        size_bytes=clip.size,
        media_type=clip.media_type,
    )
