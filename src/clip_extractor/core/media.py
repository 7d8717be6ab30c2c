"""Timestamps, duration probing and poster frames using PyAV."""

from __future__ import annotations

import io
import re
from pathlib import Path

import av
from av.error import FFmpegError
from PIL import Image


def parse_timestamp(timestamp: str | float) -> float:
    """
    Parse timestamp string to seconds.

    Supported formats:
    - "123.45" (seconds)
    - "1:23.45" (minutes:seconds)
    - "1:23:45.67" (hours:minutes:seconds)
    - "01:23:45,670" (SRT format)

    Returns:
        float: Timestamp in seconds
    """
    if isinstance(timestamp, (int, float)):
        return float(timestamp)

    timestamp = timestamp.strip()

    # Try parsing as float (seconds)
    try:
        return float(timestamp)
    except ValueError:
        pass

    # Replace comma with dot for SRT format
    timestamp = timestamp.replace(",", ".")

    match = re.fullmatch(r"(?:(\d+):)?(\d+):(\d+(?:\.\d+)?)", timestamp)
    if match:
        hours = int(match.group(1) or 0)
        minutes = int(match.group(2))
        seconds = float(match.group(3))
        return hours * 3600 + minutes * 60 + seconds

    raise ValueError(f"Invalid timestamp format: {timestamp}")


def format_time(seconds: float) -> str:
    """Format seconds as m:ss, the way clip selections are displayed."""
    mins = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{mins}:{secs:02d}"


def probe_duration(video_path: str | Path) -> float | None:
    """
    Get the playable duration of a video file.

    Returns:
        Duration in seconds, or None if it cannot be determined
    """
    video_path = Path(video_path)
    if not video_path.exists():
        return None

    try:
        with av.open(str(video_path)) as container:
            if container.duration is not None:
                return container.duration / av.time_base

            for stream in container.streams:
                if stream.duration is not None and stream.time_base is not None:
                    return float(stream.duration * stream.time_base)
    except (FFmpegError, OSError):
        return None

    return None


def _fit_size(size: tuple[int, int], width: int | None, height: int | None) -> tuple[int, int]:
    """Target size; a single given dimension keeps the aspect ratio."""
    orig_w, orig_h = size
    if width and height:
        return width, height
    if width:
        return width, max(1, round(orig_h * width / orig_w))
    return max(1, round(orig_w * height / orig_h)), height


def capture_poster(
    video_path: str | Path,
    timestamp: str | float = 0.0,
    width: int | None = None,
    height: int | None = None,
    output_format: str = "JPEG",
) -> tuple[bytes, str]:
    """
    Capture a poster frame from a clip.

    Seeks to the keyframe before `timestamp` and decodes forward to the first
    frame at or after it. Clips shorter than `timestamp` yield their last frame.

    Args:
        video_path: Path to the clip
        timestamp: Seconds (float) or a timestamp string
        width: Optional target width
        height: Optional target height
        output_format: JPEG or PNG

    Returns:
        tuple: (image_bytes, mime_type)
    """
    video_path = Path(video_path)
    if not video_path.exists():
        raise FileNotFoundError(f"Video file not found: {video_path}")

    target = parse_timestamp(timestamp)

    with av.open(str(video_path)) as container:
        if not container.streams.video:
            raise ValueError(f"No video stream in {video_path.name}")

        # av.time_base is 1/1000000 (microseconds)
        container.seek(int(target * av.time_base))

        poster = None
        for frame in container.decode(video=0):
            poster = frame
            if frame.time is None or frame.time >= target:
                break

        if poster is None:
            raise ValueError(f"Could not decode frame at timestamp {target}s")

        img = poster.to_image()

    if width or height:
        img = img.resize(_fit_size(img.size, width, height), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    if output_format.upper() == "PNG":
        img.save(buffer, format="PNG")
        return buffer.getvalue(), "image/png"

    img.save(buffer, format="JPEG", quality=90)
    return buffer.getvalue(), "image/jpeg"


def save_poster(
    video_path: str | Path,
    output_path: str | Path,
    timestamp: str | float = 0.0,
    width: int | None = None,
) -> Path:
    """
    Capture a poster frame and save it next to the clip.

    Returns:
        Path: The poster file path
    """
    output_path = Path(output_path)
    output_format = "PNG" if output_path.suffix.lower() == ".png" else "JPEG"

    image_bytes, _ = capture_poster(video_path, timestamp, width, None, output_format)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(image_bytes)

    return output_path
