"""Job manager for the periodic pipeline workers."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

JobCallback = Callable[[], Awaitable[object]]

# Allows a new tick to start while a slow one is still running
MAX_INSTANCES = 3


@dataclass
class PeriodicJob:
    """A worker tick run on a fixed interval."""
    id: str
    name: str
    callback: JobCallback
    interval_seconds: float
    run_immediately: bool = True


class JobManager:
    """
    Manages the scheduled worker jobs.

    Uses APScheduler for async job scheduling. Every job runs on an interval
    and, unless disabled, once right after start.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        """Initialize the job manager."""
        self.scheduler = scheduler or AsyncIOScheduler()
        self._jobs: Dict[str, PeriodicJob] = {}
        self._is_running = False

    def add(self, job: PeriodicJob) -> None:
        """
        Register a periodic job.

        Args:
            job: Job definition; an existing job with the same id is replaced
        """
        if job.interval_seconds <= 0:
            raise ValueError(f"Job {job.id} needs a positive interval")
        self._jobs[job.id] = job

    @property
    def jobs(self) -> List[PeriodicJob]:
        return list(self._jobs.values())

    @staticmethod
    def _guarded(job: PeriodicJob) -> JobCallback:
        async def run():
            try:
                return await job.callback()
            except Exception as e:
                logger.error(f"Job {job.name} failed: {e}", exc_info=True)
                return None
        return run

    def start(self) -> None:
        """
        Start the scheduler.

        Raises:
            ValueError: If no jobs were registered
        """
        if not self._jobs:
            raise ValueError("No jobs registered. Call add() first.")

        if self._is_running:
            logger.warning("Scheduler is already running")
            return

        for job in self._jobs.values():
            callback = self._guarded(job)
            self.scheduler.add_job(
                callback,
                IntervalTrigger(seconds=job.interval_seconds),
                id=job.id,
                name=job.name,
                replace_existing=True,
                max_instances=MAX_INSTANCES,
                coalesce=True,
            )
            if job.run_immediately:
                self.scheduler.add_job(
                    callback,
                    DateTrigger(run_date=datetime.now()),
                    id=f"{job.id}_immediate",
                    name=f"Initial {job.name}",
                    replace_existing=True,
                )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            "Scheduler started: "
            + ", ".join(f"{job.name} every {job.interval_seconds}s" for job in self._jobs.values())
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._is_running:
            self.scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._is_running

    def get_next_run_time(self, job_id: str) -> Optional[datetime]:
        """Get the next scheduled run time of a job."""
        job = self.scheduler.get_job(job_id)
        if job:
            return job.next_run_time
        return None
