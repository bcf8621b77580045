"""Detached order settlement watches."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from config import settings
from database.models import FailureCategory, Owner, RecordStatus
from utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class SettlementMonitor:
    """
    Polls the venue for submitted orders until they reach a terminal state.

    Each order is watched by its own background task so the executor never
    waits on settlement. Watches only write to the copy record and never
    resubmit the order.
    """

    def __init__(
        self,
        record_repo,
        venue,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.record_repo = record_repo
        self.venue = venue
        self.poll_interval = settings.settlement_poll_interval if poll_interval is None else poll_interval
        self.timeout = settings.settlement_timeout if timeout is None else timeout
        self.clock = clock
        self._sleep = sleep
        self._tasks: Dict[int, asyncio.Task] = {}

    @property
    def active_watches(self) -> int:
        return len(self._tasks)

    def watch(self, record_id: int, owner: Owner, order_id: str) -> asyncio.Task:
        """
        Start a detached watch for a submitted order.

        A second call for a record that is already watched returns the
        existing task.
        """
        existing = self._tasks.get(record_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self._run(record_id, owner, order_id),
            name=f"settlement-{record_id}",
        )
        self._tasks[record_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(record_id, None))
        return task

    async def _run(self, record_id: int, owner: Owner, order_id: str) -> Optional[RecordStatus]:
        try:
            return await self.wait_for_settlement(record_id, owner, order_id)
        except asyncio.CancelledError:
            logger.info(f"Settlement watch for record {record_id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Settlement watch for record {record_id} crashed: {e}", exc_info=True)
            return None

    async def wait_for_settlement(self, record_id: int, owner: Owner, order_id: str) -> RecordStatus:
        """
        Poll an order until it settles, fails or the watch times out.

        Returns:
            The record's final status
        """
        elapsed = 0.0
        last_status = None

        while elapsed < self.timeout:
            try:
                result = await self.venue.get_order_status(owner, order_id)
            except Exception as e:
                logger.warning(f"Order status check failed for {order_id}: {e}")
                result = None

            if result is not None and result.status:
                if result.status != last_status:
                    last_status = result.status
                    await self.record_repo.update_order_status(record_id, result.status)

                if result.is_settled:
                    await self.record_repo.mark_settled(
                        record_id,
                        order_status=result.status,
                        copied_price=result.price,
                        copied_shares=result.size_matched,
                        settlement_tx_hash=result.tx_hash,
                        now=self.clock(),
                    )
                    logger.info(f"Record {record_id} settled (order {order_id}, tx {result.tx_hash})")
                    return RecordStatus.SETTLED

                if result.is_failed:
                    await self.record_repo.mark_failed(
                        record_id,
                        error_message=f"Order {result.status.lower()}",
                        failure_category=FailureCategory.EXECUTION,
                        failure_reason=f"order_{result.status.lower()}",
                        from_statuses=(RecordStatus.PENDING_SETTLEMENT,),
                    )
                    logger.warning(f"Record {record_id} failed: order {order_id} {result.status}")
                    return RecordStatus.FAILED

            await self._sleep(self.poll_interval)
            elapsed += self.poll_interval

        await self.record_repo.mark_failed(
            record_id,
            error_message=f"Order {order_id} did not settle within {int(self.timeout)}s",
            failure_category=FailureCategory.EXECUTION,
            failure_reason="settlement_timeout",
            from_statuses=(RecordStatus.PENDING_SETTLEMENT,),
        )
        logger.warning(f"Record {record_id} settlement timed out (order {order_id})")
        return RecordStatus.FAILED

    async def stop(self) -> None:
        """Cancel all running watches."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
