"""
Sync Scheduler - Cron and On-Demand Execution

Manages scheduled and manual sync runs using APScheduler.

Features:
- Cron-based scheduling (configurable via SYNC_SCHEDULE_CRON)
- RUN_ONCE mode for immediate execution
- Redis event publishing after each run
- Graceful shutdown handling

Usage:
    # Scheduled mode (default)
    python -m apps.sync.scheduler

    # Run once and exit
    RUN_ONCE=true python -m apps.sync.scheduler
"""

import asyncio
import logging
import os
import signal
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from apps.sync.controller import SyncController, SyncReport
from apps.sync.publisher import publish_sync_event
from utils.auth import tracker_credentials
from utils.config import settings
from utils.db import Database
from utils.errors import ConfigurationError, PipelineError
from utils.http import ApiClient
from utils.logging import setup_logging

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Scheduler for periodic or on-demand sync runs.

    Handles:
    - APScheduler setup and management
    - Cron-based scheduling
    - RUN_ONCE immediate execution
    - Signal handling for graceful shutdown
    """

    def __init__(self, controller: SyncController, run_once: bool = False) -> None:
        """
        Initialize scheduler.

        Args:
            controller: Sync controller executing each run
            run_once: If True, run the sync once and exit
        """
        self.controller = controller
        self.run_once = run_once
        self.scheduler: AsyncIOScheduler | None = None
        self.shutdown_event = asyncio.Event()

        logger.info(
            "SyncScheduler initialized",
            extra={
                "run_once": run_once,
                "cron_schedule": settings.SYNC_SCHEDULE_CRON,
                "projects": settings.SYNC_PROJECTS,
            },
        )

    async def execute_sync(self) -> SyncReport:
        """
        Execute one sync run and publish its completion event.
        """
        logger.info("Starting sync execution")

        try:
            report = await self.controller.run(settings.SYNC_PROJECTS)
            await publish_sync_event(report)

            logger.info(
                "Sync execution completed",
                extra={
                    "run_id": report.run_id,
                    "succeeded": report.succeeded,
                    "failed": report.failed,
                    "failed_projects": report.failed_projects,
                },
            )
            return report

        except Exception as e:
            logger.error(
                "Sync execution failed",
                extra={"error": str(e)},
                exc_info=True,
            )
            raise

        finally:
            if self.run_once:
                logger.info("RUN_ONCE mode: signaling shutdown")
                self.shutdown_event.set()

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info("Received signal %d, initiating graceful shutdown", signum)
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> None:
        """
        Start scheduler or execute once.

        In scheduled mode, runs continuously until shutdown signal.
        In RUN_ONCE mode, executes immediately and exits.
        """
        self.setup_signal_handlers()

        if self.run_once:
            logger.info("Running in RUN_ONCE mode")
            await self.execute_sync()
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.execute_sync,
            trigger=CronTrigger.from_crontab(settings.SYNC_SCHEDULE_CRON),
            id="sync_job",
            name="Periodic Tracker Sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

        next_run = getattr(self.scheduler.get_job("sync_job"), "next_run_time", None)
        logger.info(
            "Running in scheduled mode",
            extra={"schedule": settings.SYNC_SCHEDULE_CRON, "next_run": str(next_run)},
        )

        try:
            await self.shutdown_event.wait()
        finally:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler shutdown complete")


async def main() -> None:
    """Main entry point for the sync scheduler."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    run_once = os.getenv("RUN_ONCE", "false").lower() in ("true", "1", "yes")

    try:
        credentials = tracker_credentials(settings)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    db = Database(settings.SQLITE_PATH)
    db.init_schema()

    async with ApiClient(settings.TRACKER_BASE_URL, timeout=settings.API_TIMEOUT) as client:
        scheduler = SyncScheduler(SyncController(client, credentials, db, settings), run_once=run_once)
        try:
            await scheduler.start()
        except PipelineError as e:
            logger.error("Sync run failed: %s", e, extra={"error_type": type(e).__name__})
            sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
