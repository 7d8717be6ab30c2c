"""Core functionality for clip-extractor."""

from .cleanup import cleanup_stale_workspaces
from .engine import ClipExtractionEngine, build_cut_args, format_seconds
from .media import capture_poster, format_time, parse_timestamp, probe_duration, save_poster
from .progress import ProgressReporter
from .runtime import ExecResult, MediaRuntime, fetch_runtime_binary
from .scheduler import CleanupScheduler
from .workflow import check_clip_length, create_clip

__all__ = [
    "ClipExtractionEngine",
    "build_cut_args",
    "format_seconds",
    "ProgressReporter",
    "MediaRuntime",
    "ExecResult",
    "fetch_runtime_binary",
    # Clip workflow
    "create_clip",
    "check_clip_length",
    # Media helpers
    "parse_timestamp",
    "format_time",
    "probe_duration",
    "capture_poster",
    "save_poster",
    # Cleanup
    "cleanup_stale_workspaces",
    "CleanupScheduler",
]
