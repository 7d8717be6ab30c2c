"""Periodic sweep of workspaces left behind by dead processes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import get_cleanup_config
from .cleanup import cleanup_stale_workspaces

logger = logging.getLogger(__name__)

JOB_ID = "sweep_workspaces"


class CleanupScheduler:
    """
    Sweeps stale runtime workspaces on the `cleanup.schedule` crontab.

    The config is read on start() for the schedule and again on every sweep
    for the retention, so a retention change applies without a restart.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self.scheduler = scheduler or AsyncIOScheduler()

    @property
    def next_run_time(self) -> datetime | None:
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    @staticmethod
    def _trigger(schedule: str) -> CronTrigger | None:
        try:
            return CronTrigger.from_crontab(schedule)
        except ValueError as e:
            logger.error(f"Cleanup schedule '{schedule}' is not a crontab expression: {e}")
            return None

    async def start(self) -> bool:
        """Schedule the sweep. Returns False when disabled or misconfigured."""
        config = get_cleanup_config()
        if not config["enabled"]:
            logger.info("Workspace sweep disabled in config")
            return False

        trigger = self._trigger(config["schedule"])
        if trigger is None:
            return False

        self.scheduler.add_job(
            self.sweep,
            trigger=trigger,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()

        logger.info(f"Workspace sweep scheduled ({config['schedule']}), next run: {self.next_run_time}")
        return True

    async def sweep(self) -> dict[str, Any] | None:
        """Run one sweep now. Returns the cleanup result, or None if it raised."""
        retention_days = get_cleanup_config()["retention_days"]
        logger.info(f"Sweeping workspaces older than {retention_days} days")

        try:
            result = await asyncio.to_thread(cleanup_stale_workspaces, retention_days)
        except Exception as e:
            logger.error(f"Workspace sweep crashed: {e}", exc_info=True)
            return None

        self._log_result(result)
        return result

    @staticmethod
    def _log_result(result: dict[str, Any]) -> None:
        freed_mb = result["freed_bytes"] / 1024 / 1024
        summary = (
            f"{result['deleted_count']} deleted, {result['skipped_active']} in use, "
            f"{freed_mb:.2f} MB freed"
        )
        if result["success"]:
            logger.info(f"Workspace sweep done: {summary}")
            return

        logger.warning(f"Workspace sweep finished with {len(result['errors'])} errors: {summary}")
        for error in result["errors"]:
            logger.warning(f"{error['workspace']}: {error['error']}")

    async def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Workspace sweep stopped")
