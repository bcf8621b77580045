"""Recovery of copy records orphaned by broker outages and restarts."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from config import settings
from database.models import RecordStatus
from services.execution_queue import BrokerUnavailableError
from utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    """Counters for one recovery pass."""
    requeued: int = 0
    already_queued: int = 0
    watches_resumed: int = 0
    errors: int = 0


class RecoveryService:
    """
    Puts pending work back in motion.

    Pending records created while the job store was unreachable, or whose
    job was lost or finished without settling them, are enqueued again under
    their original job id. Orders still awaiting settlement after a restart
    get a new settlement watch.
    """

    def __init__(
        self,
        record_repo,
        queue,
        settlement,
        clock: Clock = utc_now,
        grace_seconds: Optional[int] = None,
        batch_size: int = 100,
    ):
        self.records = record_repo
        self.queue = queue
        self.settlement = settlement
        self.clock = clock
        self.grace = timedelta(seconds=grace_seconds if grace_seconds is not None else settings.recovery_grace_seconds)
        self.batch_size = batch_size

    async def run(self) -> RecoveryResult:
        """Run one recovery pass."""
        result = RecoveryResult()
        await self._requeue_stale(result)
        await self._resume_watches(result)

        if result.requeued or result.watches_resumed or result.errors:
            logger.info(
                f"Recovery: requeued {result.requeued}, resumed {result.watches_resumed} "
                f"settlement watches, {result.errors} errors"
            )
        return result

    async def _requeue_stale(self, result: RecoveryResult) -> None:
        stale = await self.records.get_stale_pending(self.clock() - self.grace, limit=self.batch_size)
        for record in stale:
            try:
                # A finished job whose record is still pending did not complete its work
                queued = await self.queue.enqueue(
                    record.source_type,
                    record_id=record.id,
                    config_id=record.config_id,
                    source_event_id=record.source_event_id,
                    replace_finished=True,
                )
            except BrokerUnavailableError as e:
                logger.warning(f"Recovery could not enqueue record {record.id}: {e}")
                result.errors += 1
                # Broker still down; the rest would fail the same way
                return
            if queued:
                result.requeued += 1
            else:
                result.already_queued += 1

    async def _resume_watches(self, result: RecoveryResult) -> None:
        awaiting = await self.records.get_pending_settlement(limit=self.batch_size)
        for aggregate in awaiting:
            record = aggregate.record
            if aggregate.owner is None:
                logger.warning(f"Record {record.id} awaits settlement but has no owner")
                result.errors += 1
                continue
            before = self.settlement.active_watches
            self.settlement.watch(record.id, aggregate.owner, record.order_id)
            if self.settlement.active_watches > before:
                result.watches_resumed += 1

    async def resubmit(self, record_id: int) -> bool:
        """
        Manually re-enqueue one pending record.

        Only records that never reached the venue can be resubmitted.

        Returns:
            True if a job was queued

        Raises:
            ValueError: If the record does not exist or cannot be resubmitted
            BrokerUnavailableError: If the job store is unreachable
        """
        record = await self.records.get_by_id(record_id)
        if record is None:
            raise ValueError(f"Copy record {record_id} not found")
        if record.status != RecordStatus.PENDING or record.was_submitted:
            raise ValueError(f"Copy record {record_id} is {record.status.value} and cannot be resubmitted")
        if record.config_id is None:
            raise ValueError(f"Copy record {record_id} has no config")

        queued = await self.queue.enqueue(
            record.source_type,
            record_id=record.id,
            config_id=record.config_id,
            source_event_id=record.source_event_id,
            replace_finished=True,
        )
        logger.info(f"Resubmitted record {record_id}: {'queued' if queued else 'already queued'}")
        return queued
