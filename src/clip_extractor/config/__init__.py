"""Configuration module for clip-extractor."""

from .settings import (
    ensure_dirs,
    get_cache_dir,
    get_cleanup_config,
    get_clip_config,
    get_config_dir,
    get_config_file,
    get_data_dir,
    get_encoder_config,
    get_output_dir,
    get_runtime_config,
    get_runtime_dir,
    get_workspace_root,
    load_config,
    save_config,
)

__all__ = [
    "ensure_dirs",
    "get_cache_dir",
    "get_cleanup_config",
    "get_clip_config",
    "get_config_dir",
    "get_config_file",
    "get_data_dir",
    "get_encoder_config",
    "get_output_dir",
    "get_runtime_config",
    "get_runtime_dir",
    "get_workspace_root",
    "load_config",
    "save_config",
]
