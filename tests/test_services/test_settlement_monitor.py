"""Tests for the settlement monitor."""

import asyncio

import pytest
import pytest_asyncio

from core.polymarket.venue import OrderStatusResult
from database.models import FailureCategory, RecordStatus
from services.settlement_monitor import SettlementMonitor


async def no_sleep(seconds):
    await asyncio.sleep(0)


@pytest.fixture
def monitor(repos, venue, clock):
    return SettlementMonitor(repos.records, venue, poll_interval=1.0, timeout=3.0, clock=clock, sleep=no_sleep)


@pytest_asyncio.fixture
async def submitted(repos, owner, make_config, make_record, clock):
    """A record whose order was accepted by the venue."""
    config = await make_config()
    record = await make_record(config)
    await repos.records.mark_submission_started(record.id, clock())
    await repos.records.mark_submitted(record.id, "order-1", "LIVE", clock())
    return record


class TestWaitForSettlement:
    """Tests for SettlementMonitor.wait_for_settlement."""

    @pytest.mark.asyncio
    async def test_settled_order(self, monitor, repos, venue, owner, submitted, clock):
        """A matched order settles the record with fill details."""
        venue.statuses = [
            OrderStatusResult(status="LIVE"),
            OrderStatusResult(status="MATCHED", tx_hash="0xfill", size_matched=19.5, price=0.51),
        ]

        status = await monitor.wait_for_settlement(submitted.id, owner, "order-1")

        assert status == RecordStatus.SETTLED
        stored = await repos.records.get_by_id(submitted.id)
        assert stored.status == RecordStatus.SETTLED
        assert stored.order_status == "MATCHED"
        assert stored.copied_shares == 19.5
        assert stored.copied_price == 0.51
        assert stored.settlement_tx_hash == "0xfill"
        assert stored.settled_at == clock()

    @pytest.mark.asyncio
    async def test_cancelled_order_fails(self, monitor, repos, venue, owner, submitted):
        venue.statuses = [OrderStatusResult(status="CANCELED")]

        status = await monitor.wait_for_settlement(submitted.id, owner, "order-1")

        assert status == RecordStatus.FAILED
        stored = await repos.records.get_by_id(submitted.id)
        assert stored.failure_category == FailureCategory.EXECUTION
        assert stored.failure_reason == "order_canceled"

    @pytest.mark.asyncio
    async def test_timeout_fails(self, monitor, repos, venue, owner, submitted):
        """An order that never reaches a terminal state times out."""
        status = await monitor.wait_for_settlement(submitted.id, owner, "order-1")

        assert status == RecordStatus.FAILED
        assert venue.status_calls == 3
        stored = await repos.records.get_by_id(submitted.id)
        assert stored.failure_reason == "settlement_timeout"
        assert stored.error_message == "Order order-1 did not settle within 3s"

    @pytest.mark.asyncio
    async def test_status_errors_are_retried(self, monitor, repos, venue, owner, submitted):
        venue.statuses = [ConnectionError("clob down"), OrderStatusResult(status="FILLED")]

        status = await monitor.wait_for_settlement(submitted.id, owner, "order-1")

        assert status == RecordStatus.SETTLED
        assert venue.status_calls == 2

    @pytest.mark.asyncio
    async def test_never_touches_terminal_record(self, monitor, repos, venue, owner, submitted):
        """A watch cannot move a record out of a terminal state."""
        venue.statuses = [OrderStatusResult(status="MATCHED")]
        await repos.records.mark_failed(
            submitted.id,
            error_message="manual",
            failure_category=FailureCategory.OTHER,
            failure_reason="manual",
            from_statuses=(RecordStatus.PENDING_SETTLEMENT,),
        )

        await monitor.wait_for_settlement(submitted.id, owner, "order-1")

        stored = await repos.records.get_by_id(submitted.id)
        assert stored.status == RecordStatus.FAILED
        assert venue.submissions == []


class TestWatch:
    """Tests for detached watches."""

    @pytest.mark.asyncio
    async def test_watch_runs_in_background(self, monitor, repos, venue, owner, submitted):
        venue.statuses = [OrderStatusResult(status="MATCHED")]

        task = monitor.watch(submitted.id, owner, "order-1")
        assert monitor.active_watches == 1
        await task
        await asyncio.sleep(0)

        assert monitor.active_watches == 0
        stored = await repos.records.get_by_id(submitted.id)
        assert stored.status == RecordStatus.SETTLED

    @pytest.mark.asyncio
    async def test_watch_is_not_duplicated(self, repos, venue, owner, submitted, clock):
        monitor = SettlementMonitor(repos.records, venue, poll_interval=60.0, timeout=600.0, clock=clock)

        first = monitor.watch(submitted.id, owner, "order-1")
        second = monitor.watch(submitted.id, owner, "order-1")

        assert first is second
        await monitor.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_watches(self, repos, venue, owner, submitted, clock):
        """Stopped watches leave the record pending settlement."""
        monitor = SettlementMonitor(repos.records, venue, poll_interval=60.0, timeout=600.0, clock=clock)
        task = monitor.watch(submitted.id, owner, "order-1")
        await asyncio.sleep(0)

        await monitor.stop()

        assert task.cancelled()
        stored = await repos.records.get_by_id(submitted.id)
        assert stored.status == RecordStatus.PENDING_SETTLEMENT
