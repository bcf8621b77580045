"""Durable execution queue with a bounded worker pool."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from config import settings
from database.models import ExecutionJob, SourceType

logger = logging.getLogger(__name__)

JobHandler = Callable[[ExecutionJob], Awaitable[None]]
ExhaustedHandler = Callable[[ExecutionJob, str], Awaitable[None]]


class BrokerUnavailableError(Exception):
    """The job store could not accept the job."""


@dataclass
class RetryPolicy:
    """Attempts and capped exponential backoff for failed jobs."""
    max_attempts: int = 1
    backoff_base: float = 2.0
    backoff_max: float = 60.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.queue_max_attempts,
            backoff_base=settings.queue_backoff_base,
        )

    def delay(self, attempt: int) -> float:
        """Get the wait before the attempt after `attempt` (1-based)."""
        return min(self.backoff_base * (2 ** max(attempt - 1, 0)), self.backoff_max)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


class ExecutionQueue:
    """
    Queue of execution jobs backed by the job repository.

    Enqueue is idempotent on the job id. A claimed job is leased to one
    worker; jobs whose lease runs out without acknowledgement are claimed
    again, which makes delivery at-least-once.
    """

    def __init__(
        self,
        job_repo,
        handler: Optional[JobHandler] = None,
        concurrency: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        lease_seconds: Optional[int] = None,
        poll_interval: Optional[float] = None,
        dispatch_interval: Optional[float] = None,
        on_exhausted: Optional[ExhaustedHandler] = None,
    ):
        self.job_repo = job_repo
        self.handler = handler
        self.on_exhausted = on_exhausted
        self.concurrency = concurrency or settings.executor_concurrency
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.lease_seconds = lease_seconds or settings.queue_lease_seconds
        self.poll_interval = settings.queue_poll_interval if poll_interval is None else poll_interval
        self.dispatch_interval = settings.queue_dispatch_interval if dispatch_interval is None else dispatch_interval
        self._workers: List[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def enqueue(
        self,
        source_type: SourceType,
        record_id: int,
        config_id: int,
        source_event_id: str,
        replace_finished: bool = False,
    ) -> bool:
        """
        Enqueue execution of a copy record.

        Args:
            replace_finished: Re-queue a job that already finished (manual resubmission)

        Returns:
            True if a job was queued, False if one with the same id already exists

        Raises:
            BrokerUnavailableError: If the job store is unreachable
        """
        job = ExecutionJob.for_record(
            kind=source_type,
            source_event_id=source_event_id,
            record_id=record_id,
            config_id=config_id,
        )
        try:
            queued = await self.job_repo.enqueue(job, replace_finished=replace_finished)
        except Exception as e:
            raise BrokerUnavailableError(f"Could not enqueue {job.id}: {e}") from e

        if queued:
            logger.debug(f"Queued job {job.id}")
        return queued

    async def process_next(self) -> bool:
        """
        Claim and run one ready job.

        Returns:
            True if a job was processed, False if none was ready
        """
        job = await self.job_repo.claim(self.lease_seconds)
        if job is None:
            return False

        try:
            if self.handler is None:
                raise RuntimeError("No job handler registered")
            await self.handler(job)
        except Exception as e:
            if self.retry_policy.should_retry(job.attempts):
                delay = self.retry_policy.delay(job.attempts)
                logger.warning(
                    f"Job {job.id} attempt {job.attempts}/{self.retry_policy.max_attempts} "
                    f"failed, retrying in {delay}s: {e}"
                )
                await self.job_repo.retry(job.id, delay, str(e))
            else:
                logger.error(f"Job {job.id} failed after {job.attempts} attempt(s): {e}", exc_info=True)
                await self.job_repo.fail(job.id, str(e))
                await self._notify_exhausted(job, str(e))
            return True

        await self.job_repo.complete(job.id)
        return True

    async def _notify_exhausted(self, job: ExecutionJob, error: str) -> None:
        if self.on_exhausted is None:
            return
        try:
            await self.on_exhausted(job, error)
        except Exception as e:
            # Recovery picks the record up again on its next pass
            logger.error(f"Exhausted-job handler failed for {job.id}: {e}", exc_info=True)

    async def run_until_idle(self) -> int:
        """Process ready jobs until none are left. Returns the number processed."""
        processed = 0
        while await self.process_next():
            processed += 1
        return processed

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"Execution worker {worker_id} started")
        while self._running:
            try:
                processed = await self.process_next()
            except Exception as e:
                logger.error(f"Execution worker {worker_id} error: {e}", exc_info=True)
                processed = False
            await asyncio.sleep(self.dispatch_interval if processed else self.poll_interval)

    def start(self) -> None:
        """Start the worker pool."""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"execution-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Execution queue started with {self.concurrency} workers")

    async def stop(self) -> None:
        """Stop the worker pool. Jobs in flight are reclaimed after their lease."""
        self._running = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Execution queue stopped")

    async def stats(self):
        return await self.job_repo.counts()
