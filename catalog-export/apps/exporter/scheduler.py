"""
Export Scheduler - Cron and On-Demand Execution

Manages scheduled and one-off export runs using APScheduler.

Features:
- RUN_ONCE mode (default): run one export and exit with its exit code
- Cron-based scheduling (EXPORT_SCHEDULE_CRON) for periodic incremental runs
- Per-run log file named after the run start time
- Graceful shutdown handling

Usage:
    # Run once and exit
    python -m apps.exporter

    # Scheduled mode
    RUN_ONCE=false python -m apps.exporter
"""

import asyncio
import logging
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from pydantic import ValidationError

from apps.exporter.export_job import EXIT_CONFIG, EXIT_FAILED, run_export
from utils.config import Settings, get_settings
from utils.logging import setup_logging
from utils.schemas import ExportReport

logger = logging.getLogger(__name__)

ExportRunner = Callable[..., Awaitable[ExportReport]]


class ExportScheduler:
    """
    Scheduler for periodic or on-demand export runs.

    Handles:
    - APScheduler setup and management
    - Cron-based scheduling
    - RUN_ONCE immediate execution
    - Signal handling for graceful shutdown
    """

    def __init__(
        self,
        settings: Settings,
        run_once: Optional[bool] = None,
        runner: ExportRunner = run_export,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            settings: Application settings
            run_once: Override for settings.RUN_ONCE
            runner: Coroutine function performing one export
        """
        self.settings = settings
        self.run_once = settings.RUN_ONCE if run_once is None else run_once
        self.runner = runner
        self.scheduler: AsyncIOScheduler | None = None
        self.shutdown_event = asyncio.Event()
        self.last_report: ExportReport | None = None

    def configure_logging(self, started_at: datetime) -> None:
        log_file = None
        if self.settings.LOG_DIR:
            log_file = str(Path(self.settings.LOG_DIR) / self.settings.log_filename(started_at))
        setup_logging(
            level=self.settings.LOG_LEVEL,
            format_type=self.settings.LOG_FORMAT,
            log_file=log_file,
        )

    async def execute_export(self) -> ExportReport:
        """Execute one export with its own start time and log file."""
        started_at = datetime.now(timezone.utc)
        self.configure_logging(started_at)
        logger.info("Starting export execution", extra={"run_once": self.run_once})

        try:
            report = await self.runner(self.settings, started_at=started_at)
        except Exception as e:
            logger.error("Export execution failed: %s", e, exc_info=True)
            report = ExportReport(status="failed", exit_code=EXIT_FAILED)

        self.last_report = report
        logger.info(
            "Export execution finished",
            extra={"status": report.status, "exit_code": report.exit_code},
        )
        return report

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info("Received signal %d, initiating graceful shutdown", signum)
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> int:
        """
        Start scheduler or execute once.

        Returns:
            Process exit code; in scheduled mode, the last run's code
        """
        if self.run_once:
            report = await self.execute_export()
            return report.exit_code

        self.setup_signal_handlers()
        self.configure_logging(datetime.now(timezone.utc))
        logger.info("Running in scheduled mode")

        self.scheduler = AsyncIOScheduler()
        trigger = CronTrigger.from_crontab(self.settings.EXPORT_SCHEDULE_CRON)
        self.scheduler.add_job(
            self.execute_export,
            trigger=trigger,
            id="export_job",
            name="Periodic Catalog Export",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()

        job = self.scheduler.get_job("export_job")
        next_run = getattr(job, "next_run_time", None)
        logger.info(
            "Scheduled export job",
            extra={
                "schedule": self.settings.EXPORT_SCHEDULE_CRON,
                "next_run": str(next_run) if next_run is not None else None,
            },
        )

        await self.shutdown_event.wait()

        logger.info("Shutting down scheduler")
        self.scheduler.shutdown(wait=True)
        logger.info("Scheduler shutdown complete")
        return self.last_report.exit_code if self.last_report else 0


async def main() -> int:
    """Main entry point for the exporter."""
    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging()
        logger.error("Invalid configuration: %s", e)
        return EXIT_CONFIG

    scheduler = ExportScheduler(settings)
    try:
        return await scheduler.start()
    except Exception as e:
        logger.error("Scheduler failed: %s", e, exc_info=True)
        return EXIT_FAILED
