"""Removal of engine workspaces left behind by stopped processes."""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Any

from ..config import get_workspace_root
from .runtime import active_workspaces, workspace_owner_alive

logger = logging.getLogger(__name__)


def get_workspace_age_days(workspace: Path) -> float | None:
    """
    Get workspace age in days based on the newest modification time.

    A workspace whose files were touched recently is still in use, so the
    newest mtime among the directory and its files counts.

    Returns:
        Age in days, or None if the workspace is inaccessible
    """
    try:
        mtimes = [workspace.stat().st_mtime]
        mtimes.extend(f.stat().st_mtime for f in workspace.rglob("*") if f.is_file())
        age_seconds = time.time() - max(mtimes)
        return age_seconds / 86400.0
    except OSError as e:
        logger.warning(f"Failed to get age for {workspace}: {e}")
        return None


def delete_workspace_safe(workspace: Path) -> tuple[bool, str | None, int]:
    """
    Delete a workspace directory with error handling.

    Returns:
        Tuple of (success, error_message, bytes_freed)
    """
    try:
        size = sum(f.stat().st_size for f in workspace.rglob("*") if f.is_file())
        shutil.rmtree(workspace)
        return True, None, size

    except PermissionError as e:
        error_msg = f"Permission denied: {e}"
        logger.warning(f"Skipped {workspace}: {error_msg}")
        return False, error_msg, 0

    except OSError as e:
        error_msg = f"Delete failed: {e}"
        logger.error(f"Failed to delete {workspace}: {error_msg}")
        return False, error_msg, 0


def cleanup_stale_workspaces(retention_days: float) -> dict[str, Any]:
    """
    Remove workspaces older than the retention period.

    Workspaces owned by a live runtime are never removed, whatever their
    age: those loaded in this process, and those whose owner file names a
    process that is still running.

    Args:
        retention_days: Number of days a workspace may stay idle

    Returns:
        Dictionary with cleanup statistics:
        {
            "success": True,  # False when any deletion failed
            "deleted_count": 2,
            "freed_bytes": 1234567,
            "skipped_active": 1,
            "errors": [],
        }
    """
    root = get_workspace_root()
    result: dict[str, Any] = {
        "success": True,
        "deleted_count": 0,
        "freed_bytes": 0,
        "skipped_active": 0,
        "errors": [],
    }

    if not root.exists():
        logger.info(f"Workspace directory does not exist: {root}")
        return result

    active = {path.resolve() for path in active_workspaces()}

    for workspace in root.iterdir():
        if not workspace.is_dir():
            continue

        if workspace.resolve() in active or workspace_owner_alive(workspace):
            result["skipped_active"] += 1
            continue

        age_days = get_workspace_age_days(workspace)
        if age_days is None or age_days <= retention_days:
            continue

        logger.info(f"Deleting stale workspace {workspace.name}: age {age_days:.2f} days")
        success, error_msg, size = delete_workspace_safe(workspace)

        if success:
            result["deleted_count"] += 1
            result["freed_bytes"] += size
        else:
            result["errors"].append({"workspace": workspace.name, "error": error_msg})

    result["success"] = not result["errors"]
    return result
