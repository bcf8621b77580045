"""Tests for the copy executor."""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from core.polymarket.clob_client import OrderResult
from database.models import ExecutionJob, FailureCategory, RecordStatus, SourceType, TradeType
from services.executor import CopyExecutor


@pytest.fixture
def settlement():
    return MagicMock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor(repos, venue, balances, settlement, clock, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return CopyExecutor(
        repos, venue, balances, settlement,
        clock=clock,
        max_attempts=5,
        backoff_base=1.0,
        backoff_max=10.0,
        sleep=fake_sleep,
    )


class TestExecuteBuy:
    """Tests for buy execution."""

    @pytest.mark.asyncio
    async def test_successful_buy(self, executor, repos, venue, settlement, make_config, make_record):
        """A sized and submitted buy waits for settlement."""
        config = await make_config(buy_amount=10.0, slippage=0.05)
        record = await make_record(config)

        outcome = await executor.execute(record.id)

        assert outcome.submitted is True
        assert outcome.order_id == "order-1"
        stored = await repos.records.get_by_id(record.id)
        assert stored.status == RecordStatus.PENDING_SETTLEMENT
        assert stored.order_id == "order-1"
        assert stored.copied_amount == 10.0
        assert stored.cost_basis == 10.0
        assert stored.submission_attempted_at is not None

        assert len(venue.submissions) == 1
        submission = venue.submissions[0]
        assert submission["side"] == "BUY"
        assert submission["amount"] == 10.0
        assert submission["price"] == 0.5
        assert submission["slippage"] == 0.05
        assert submission["token_id"] == record.token_id

        settlement.watch.assert_called_once()
        record_id, _, order_id = settlement.watch.call_args.args
        assert (record_id, order_id) == (record.id, "order-1")

    @pytest.mark.asyncio
    async def test_buy_counts_against_daily_quota(self, executor, repos, make_config, make_record, clock):
        config = await make_config(max_buy_trades_per_day=2, last_reset_date=clock())
        record = await make_record(config)

        await executor.execute(record.id)

        stored = await repos.configs.get_by_id(config.id)
        assert stored.trades_count_today == 1

    @pytest.mark.asyncio
    async def test_quota_reached_skips(self, executor, repos, venue, make_config, make_record, clock):
        """A buy past the daily limit is skipped without submission."""
        config = await make_config(max_buy_trades_per_day=1, trades_count_today=1, last_reset_date=clock())
        record = await make_record(config)

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.SKIPPED
        assert outcome.reason == "Maximum buy trades per day reached (1/1)"
        assert venue.submissions == []

    @pytest.mark.asyncio
    async def test_concurrent_buys_respect_quota(
        self, executor, repos, venue, balances, make_config, make_record, clock, monkeypatch
    ):
        """Workers racing for the last buy slot submit exactly one order."""
        config = await make_config(max_buy_trades_per_day=1, last_reset_date=clock())
        first = await make_record(config, event_id="0xtx1")
        second = await make_record(config, event_id="0xtx2")

        async def slow_balance(address):
            await asyncio.sleep(0)
            return 1000.0

        monkeypatch.setattr(balances, "get_collateral_balance", slow_balance)

        outcomes = await asyncio.gather(executor.execute(first.id), executor.execute(second.id))

        assert len(venue.submissions) == 1
        assert sorted(o.status.value for o in outcomes) == ["pending-settlement", "skipped"]
        stored = await repos.configs.get_by_id(config.id)
        assert stored.trades_count_today == 1

    @pytest.mark.asyncio
    async def test_concurrent_delivery_of_one_record_submits_once(
        self, executor, balances, venue, make_config, make_record, monkeypatch
    ):
        config = await make_config()
        record = await make_record(config)

        async def slow_balance(address):
            await asyncio.sleep(0)
            return 1000.0

        monkeypatch.setattr(balances, "get_collateral_balance", slow_balance)

        await asyncio.gather(executor.execute(record.id), executor.execute(record.id))

        assert len(venue.submissions) == 1

    @pytest.mark.asyncio
    async def test_quota_reset_before_execution(self, executor, repos, venue, make_config, make_record, clock):
        """An old quota window is reset so the buy goes through."""
        config = await make_config(
            max_buy_trades_per_day=1,
            trades_count_today=1,
            last_reset_date=clock() - timedelta(hours=30),
        )
        record = await make_record(config)

        outcome = await executor.execute(record.id)

        assert outcome.submitted is True
        stored = await repos.configs.get_by_id(config.id)
        assert stored.trades_count_today == 1
        assert stored.last_reset_date == clock()

    @pytest.mark.asyncio
    async def test_disabled_config_skips(self, executor, repos, venue, make_config, make_record):
        config = await make_config()
        record = await make_record(config)
        await repos.configs.update(config.id, enabled=False)

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.SKIPPED
        stored = await repos.records.get_by_id(record.id)
        assert stored.error_message == "Copy trading is disabled or not authorized"
        assert venue.submissions == []

    @pytest.mark.asyncio
    async def test_expired_duration_skips_and_pauses(self, executor, repos, make_config, make_record, clock):
        config = await make_config(duration_days=1, start_date=clock() - timedelta(days=2))
        record = await make_record(config)

        outcome = await executor.execute(record.id)

        assert outcome.reason == "Copy trading duration has expired"
        stored = await repos.configs.get_by_id(config.id)
        assert stored.enabled is False

    @pytest.mark.asyncio
    async def test_insufficient_balance_fails(self, executor, repos, venue, balances, make_config, make_record):
        """A buy larger than the collateral balance fails before submission."""
        balances.collateral = 5.0
        config = await make_config(buy_amount=10.0)
        record = await make_record(config)

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.FAILED
        stored = await repos.records.get_by_id(record.id)
        assert stored.failure_category == FailureCategory.BALANCE
        assert stored.failure_reason == "insufficient_balance"
        assert stored.error_message == "Insufficient balance. Required: 10.0 USDC, Available: 5.0 USDC"
        assert venue.submissions == []

    @pytest.mark.asyncio
    async def test_balance_lookup_error_fails(self, executor, repos, venue, balances, make_config, make_record):
        balances.error = ConnectionError("rpc down")
        config = await make_config()
        record = await make_record(config)

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.FAILED
        assert venue.submissions == []

    @pytest.mark.asyncio
    async def test_rejected_order_is_classified(self, executor, repos, venue, make_config, make_record, clock):
        """Venue rejections are classified and release the buy slot."""
        config = await make_config(max_buy_trades_per_day=3, last_reset_date=clock())
        record = await make_record(config)
        venue.buy_results = [OrderResult(success=False, error="not enough balance / allowance")]

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.FAILED
        assert outcome.failure.category == FailureCategory.BALANCE
        stored = await repos.records.get_by_id(record.id)
        assert stored.failure_reason == "insufficient_balance"
        config = await repos.configs.get_by_id(config.id)
        assert config.trades_count_today == 0

    @pytest.mark.asyncio
    async def test_submission_retried_with_backoff(self, executor, repos, venue, make_config, make_record, sleeps):
        """Failed submissions are retried up to the config's max retries."""
        config = await make_config(max_retries=3)
        record = await make_record(config)
        venue.buy_results = [
            TimeoutError("request timed out"),
            OrderResult(success=False, error="429 Too Many Requests"),
        ]

        outcome = await executor.execute(record.id)

        assert outcome.submitted is True
        assert len(venue.submissions) == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, executor, repos, venue, make_config, make_record, sleeps):
        config = await make_config(max_retries=2)
        record = await make_record(config)
        venue.buy_results = [
            OrderResult(success=False, error="429 Too Many Requests"),
            OrderResult(success=False, error="429 Too Many Requests"),
        ]

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.FAILED
        assert outcome.failure.reason == "rate_limited"
        assert len(venue.submissions) == 2
        assert sleeps == [1.0]


class TestExecuteSell:
    """Tests for sell execution."""

    @pytest.mark.asyncio
    async def test_successful_sell(self, executor, repos, venue, balances, make_config, make_record):
        """Sells are sized in shares against the token balance."""
        config = await make_config(sell_amount=10.0)
        record = await make_record(config, side=TradeType.SELL, amount=10.0, price=0.5)
        balances.tokens[record.token_id] = 50.0

        outcome = await executor.execute(record.id)

        assert outcome.submitted is True
        assert venue.submissions[0]["side"] == "SELL"
        assert venue.submissions[0]["amount"] == 20.0
        stored = await repos.records.get_by_id(record.id)
        assert stored.cost_basis is None

    @pytest.mark.asyncio
    async def test_quota_does_not_limit_sells(self, executor, balances, make_config, make_record, clock):
        config = await make_config(max_buy_trades_per_day=1, trades_count_today=1, last_reset_date=clock())
        record = await make_record(config, side=TradeType.SELL, amount=10.0, price=0.5)
        balances.tokens[record.token_id] = 50.0

        outcome = await executor.execute(record.id)

        assert outcome.submitted is True

    @pytest.mark.asyncio
    async def test_sell_without_tokens_fails(self, executor, repos, venue, make_config, make_record):
        config = await make_config(sell_amount=10.0)
        record = await make_record(config, side=TradeType.SELL, amount=10.0, price=0.5)

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.FAILED
        assert outcome.failure.category == FailureCategory.BALANCE
        assert "shares" in outcome.failure.message
        assert venue.submissions == []


class TestAtMostOnceSubmission:
    """Redelivered jobs never submit the same copy twice."""

    @pytest.mark.asyncio
    async def test_redelivered_job_after_success(self, executor, venue, make_config, make_record):
        config = await make_config()
        record = await make_record(config)

        await executor.execute(record.id)
        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.PENDING_SETTLEMENT
        assert len(venue.submissions) == 1

    @pytest.mark.asyncio
    async def test_interrupted_submission_is_failed(self, executor, repos, venue, make_config, make_record, clock):
        """A record whose submission started but never finished is not resubmitted."""
        config = await make_config()
        record = await make_record(config)
        await repos.records.mark_submission_started(record.id, clock())

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.FAILED
        stored = await repos.records.get_by_id(record.id)
        assert stored.failure_category == FailureCategory.EXECUTION
        assert stored.failure_reason == "submission_interrupted"
        assert venue.submissions == []

    @pytest.mark.asyncio
    async def test_terminal_record_is_left_alone(self, executor, repos, venue, make_config, make_record):
        config = await make_config()
        record = await make_record(config)
        await repos.records.mark_skipped(record.id, "manual")

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.SKIPPED
        assert venue.submissions == []


class TestHandleJob:
    """Tests for the queue handler entry point."""

    @pytest.mark.asyncio
    async def test_handle_job_executes_record(self, executor, repos, venue, make_config, make_record):
        config = await make_config()
        record = await make_record(config)
        job = ExecutionJob.for_record(
            kind=SourceType.TRADE,
            source_event_id=record.source_event_id,
            record_id=record.id,
            config_id=config.id,
        )

        await executor.handle_job(job)

        assert len(venue.submissions) == 1

    @pytest.mark.asyncio
    async def test_missing_record_is_dropped(self, executor, venue):
        outcome = await executor.execute(999)

        assert outcome.status is None
        assert outcome.reason == "record not found"
        assert venue.submissions == []

    @pytest.mark.asyncio
    async def test_deleted_config_fails_record(self, executor, repos, venue, make_config, make_record):
        """A pending record whose config is gone fails with a reason."""
        config = await make_config()
        record = await make_record(config)
        await repos.configs.delete(config.id)

        outcome = await executor.execute(record.id)

        assert outcome.status == RecordStatus.FAILED
        assert venue.submissions == []
        stored = await repos.records.get_by_id(record.id)
        assert stored.failure_category == FailureCategory.VALIDATION
        assert stored.failure_reason == "config_not_found"


class TestHandleExhausted:
    """Tests for CopyExecutor.handle_exhausted."""

    @pytest.mark.asyncio
    async def test_pending_record_fails_with_reason(self, executor, repos, make_config, make_record):
        config = await make_config()
        record = await make_record(config)
        job = ExecutionJob.for_record(SourceType.TRADE, record.source_event_id, record.id, config.id)

        await executor.handle_exhausted(job, "connection reset")

        stored = await repos.records.get_by_id(record.id)
        assert stored.status == RecordStatus.FAILED
        assert stored.failure_category == FailureCategory.EXECUTION
        assert stored.failure_reason == "job_failed"
        assert stored.error_message == "Execution job failed: connection reset"

    @pytest.mark.asyncio
    async def test_started_submission_is_interrupted(self, executor, repos, make_config, make_record, clock):
        config = await make_config()
        record = await make_record(config)
        await repos.records.mark_submission_started(record.id, clock())
        job = ExecutionJob.for_record(SourceType.TRADE, record.source_event_id, record.id, config.id)

        await executor.handle_exhausted(job, "connection reset")

        stored = await repos.records.get_by_id(record.id)
        assert stored.failure_reason == "submission_interrupted"

    @pytest.mark.asyncio
    async def test_finished_record_untouched(self, executor, repos, make_config, make_record):
        config = await make_config()
        record = await make_record(config)
        await repos.records.mark_skipped(record.id, "manual")
        job = ExecutionJob.for_record(SourceType.TRADE, record.source_event_id, record.id, config.id)

        await executor.handle_exhausted(job, "boom")

        stored = await repos.records.get_by_id(record.id)
        assert stored.status == RecordStatus.SKIPPED
