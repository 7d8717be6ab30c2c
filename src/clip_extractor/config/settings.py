"""Basic settings and directory management."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from platformdirs import user_cache_dir, user_config_dir, user_data_dir

APP_NAME = "clip-extractor"


def get_config_dir() -> Path:
    """Get the configuration directory."""
    return Path(os.environ.get("CLIP_EXTRACTOR_CONFIG_DIR", user_config_dir(APP_NAME)))


def get_data_dir() -> Path:
    """Get the data directory (engine workspaces live here)."""
    return Path(os.environ.get("CLIP_EXTRACTOR_DATA_DIR", user_data_dir(APP_NAME)))


def get_cache_dir() -> Path:
    """Get the cache directory for downloaded runtime builds."""
    return Path(os.environ.get("CLIP_EXTRACTOR_CACHE_DIR", user_cache_dir(APP_NAME)))


def get_output_dir() -> Path:
    """Get the default directory for saved clips."""
    default = Path.home() / "Videos" / APP_NAME
    return Path(os.environ.get("CLIP_EXTRACTOR_OUTPUT_DIR", str(default)))


def get_runtime_dir() -> Path:
    """Get the directory holding fetched runtime binaries."""
    return get_cache_dir() / "runtime"


def get_workspace_root() -> Path:
    """Get the parent directory of per-engine workspaces."""
    return get_data_dir() / "workspaces"


def get_config_file() -> Path:
    """Get the config file path."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from file."""
    config: dict[str, Any] = {}
    config_file = get_config_file()
    if config_file.exists():
        with open(config_file) as f:
            config = json.load(f)
    return config


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w") as f:
        json.dump(config, f, indent=2)


def ensure_dirs() -> None:
    """Ensure all required directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
    get_cache_dir().mkdir(parents=True, exist_ok=True)
    get_output_dir().mkdir(parents=True, exist_ok=True)
    get_runtime_dir().mkdir(parents=True, exist_ok=True)
    get_workspace_root().mkdir(parents=True, exist_ok=True)


# Pinned static FFmpeg build, gzip-compressed single binary per platform
DEFAULT_RUNTIME_CONFIG = {
    "version": "6.0",
    "base_url": "https://github.com/eugeneware/ffmpeg-static/releases/download/b{version}",
    "archive": "ffmpeg-{platform}-{arch}.gz",
    "sha256": None,
    "binary": None,
    "timeout": 300,
}

DEFAULT_ENCODER_CONFIG = {
    "video_codec": "libx264",
    "preset": "ultrafast",
    "crf": 23,
    "audio_codec": "aac",
    "audio_bitrate": "128k",
}

DEFAULT_CLIP_CONFIG = {
    "min_seconds": 1.0,
    "max_seconds": 60.0,
}

# Cleanup configuration
DEFAULT_CLEANUP_CONFIG = {
    "enabled": True,
    "retention_days": 1 / 24,  # 1 hour
    "schedule": "*/30 * * * *",  # Every 30 minutes
}


def get_runtime_config() -> dict[str, Any]:
    """Get media runtime configuration with defaults."""
    config = load_config()
    runtime = {**DEFAULT_RUNTIME_CONFIG, **config.get("runtime", {})}
    binary = os.environ.get("CLIP_EXTRACTOR_FFMPEG")
    if binary:
        runtime["binary"] = binary
    return runtime


def get_encoder_config() -> dict[str, Any]:
    """Get encoder settings for clip transcodes."""
    config = load_config()
    return {**DEFAULT_ENCODER_CONFIG, **config.get("encoder", {})}


def get_clip_config() -> dict[str, Any]:
    """Get clip length limits used by the clip workflow."""
    config = load_config()
    return {**DEFAULT_CLIP_CONFIG, **config.get("clip", {})}


def get_cleanup_config() -> dict[str, Any]:
    """Get cleanup configuration with defaults."""
    config = load_config()
    cleanup = config.get("cleanup", {})
    return {**DEFAULT_CLEANUP_CONFIG, **cleanup}
