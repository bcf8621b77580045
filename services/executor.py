"""Copy trade and copy signal executor."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from config import settings
from core.polymarket.clob_client import OrderResult
from database.models import (
    CopyConfig,
    CopyRecord,
    ExecutionJob,
    FailureCategory,
    Owner,
    RecordStatus,
)
from services.failure import Failure, classify_failure, insufficient_balance
from services.position_sizer import SizingResult, size_position
from utils.clock import Clock, utc_now
from utils.user_logger import owner_logger

logger = logging.getLogger(__name__)


@dataclass
class ExecutionOutcome:
    """What the executor did with one copy record."""
    record_id: int
    status: Optional[RecordStatus]
    order_id: Optional[str] = None
    reason: Optional[str] = None
    failure: Optional[Failure] = None

    @property
    def submitted(self) -> bool:
        return self.status == RecordStatus.PENDING_SETTLEMENT


class CopyExecutor:
    """
    Executes pending copy records.

    Moves a record from pending to skipped, failed or pending-settlement.
    The venue is called at most once per record: the submission marker is
    claimed with a conditional write before the call, so a redelivered job
    can never submit the same copy twice.
    """

    def __init__(
        self,
        repos,
        venue,
        balances,
        settlement,
        clock: Clock = utc_now,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.records = repos.records
        self.configs = repos.configs
        self.venue = venue
        self.balances = balances
        self.settlement = settlement
        self.clock = clock
        self.max_attempts = max_attempts or settings.execution_max_attempts
        self.backoff_base = settings.execution_backoff_base if backoff_base is None else backoff_base
        self.backoff_max = settings.execution_backoff_max if backoff_max is None else backoff_max
        self._sleep = sleep

    async def handle_job(self, job: ExecutionJob) -> None:
        """Queue handler."""
        await self.execute(job.record_id)

    async def handle_exhausted(self, job: ExecutionJob, error: str) -> None:
        """Fail a still-pending record whose job ran out of attempts."""
        record = await self.records.get_by_id(job.record_id)
        if record is None or record.status != RecordStatus.PENDING:
            return
        if record.was_submitted:
            failure = Failure(
                category=FailureCategory.EXECUTION,
                reason="submission_interrupted",
                message="Order submission was interrupted; the order may or may not have been placed",
            )
        else:
            failure = Failure(
                category=FailureCategory.EXECUTION,
                reason="job_failed",
                message=f"Execution job failed: {error}",
            )
        await self._fail(record, failure)
        logger.warning(f"Record {record.id} failed after its job was exhausted: {error}")

    async def execute(self, record_id: int) -> ExecutionOutcome:
        """
        Execute one copy record.

        Args:
            record_id: Copy record to execute

        Returns:
            ExecutionOutcome describing the transition (status None means
            nothing was changed)
        """
        aggregate = await self.records.get_aggregate(record_id)
        if aggregate is None:
            logger.error(f"Copy record {record_id} not found, dropping job")
            return ExecutionOutcome(record_id=record_id, status=None, reason="record not found")

        record = aggregate.record
        if aggregate.config is None or aggregate.owner is None:
            logger.error(f"Copy record {record_id} has no config or owner, dropping job")
            if record.status == RecordStatus.PENDING and not record.was_submitted:
                failure = Failure(
                    category=FailureCategory.VALIDATION,
                    reason="config_not_found",
                    message="Copy trading config or owner no longer exists",
                )
                await self._fail(record, failure)
                return ExecutionOutcome(record_id=record_id, status=RecordStatus.FAILED, failure=failure)
            return ExecutionOutcome(record_id=record_id, status=None, reason="config not found")

        if record.status != RecordStatus.PENDING:
            logger.info(f"Copy record {record_id} already {record.status.value}, nothing to do")
            return ExecutionOutcome(record_id=record_id, status=record.status, order_id=record.order_id)

        owner = aggregate.owner
        log = owner_logger(logger, owner)

        if record.was_submitted:
            # Redelivered after a crash between submission and result write
            failure = Failure(
                category=FailureCategory.EXECUTION,
                reason="submission_interrupted",
                message="Order submission was interrupted; the order may or may not have been placed",
            )
            await self._fail(record, failure)
            log.warning(f"Record {record_id}: {failure.message}")
            return ExecutionOutcome(record_id=record_id, status=RecordStatus.FAILED, failure=failure)

        config = await self._refresh_config(aggregate.config)
        reason = config.ineligibility_reason(self.clock(), record.is_buy) if config else "Copy trading config not found"
        if reason:
            if config is not None and config.duration_expired(self.clock()):
                await self.configs.auto_pause(config.id)
            await self.records.mark_skipped(record_id, reason)
            log.info(f"Record {record_id} skipped: {reason}")
            return ExecutionOutcome(record_id=record_id, status=RecordStatus.SKIPPED, reason=reason)

        try:
            sizing = await self._size(record, config, owner)
        except Exception as e:
            failure = classify_failure(f"Balance lookup failed: {e}")
            await self._fail(record, failure)
            log.error(f"Record {record_id} sizing failed: {e}")
            return ExecutionOutcome(record_id=record_id, status=RecordStatus.FAILED, failure=failure)

        if sizing.quantity <= 0:
            failure = Failure(
                category=FailureCategory.VALIDATION,
                reason="below_minimum_size",
                message="Computed copy size is zero",
            )
            await self._fail(record, failure)
            return ExecutionOutcome(record_id=record_id, status=RecordStatus.FAILED, failure=failure)

        if not sizing.is_sufficient:
            failure = insufficient_balance(
                sizing.quantity,
                sizing.balance,
                unit="USDC" if record.is_buy else "shares",
            )
            await self._fail(record, failure)
            log.info(f"Record {record_id} failed: {failure.message}")
            return ExecutionOutcome(record_id=record_id, status=RecordStatus.FAILED, failure=failure)

        await self.records.save_sizing(
            record_id,
            copied_amount=sizing.amount,
            copied_price=sizing.price,
            copied_shares=sizing.shares,
            cost_basis=sizing.amount if record.is_buy else None,
        )

        if record.is_buy and not await self.configs.reserve_buy_slot(config.id):
            reason = (
                f"Maximum buy trades per day reached "
                f"({config.max_buy_trades_per_day}/{config.max_buy_trades_per_day})"
            )
            await self.records.mark_skipped(record_id, reason)
            log.info(f"Record {record_id} skipped: {reason}")
            return ExecutionOutcome(record_id=record_id, status=RecordStatus.SKIPPED, reason=reason)

        if not await self.records.mark_submission_started(record_id, self.clock()):
            if record.is_buy:
                await self.configs.release_buy_slot(config.id)
            log.info(f"Record {record_id} is being submitted by another worker")
            return ExecutionOutcome(record_id=record_id, status=None, reason="already claimed")

        result = await self._submit_with_retry(record, config, owner, sizing)

        if not result.success:
            if record.is_buy:
                await self.configs.release_buy_slot(config.id)
            failure = classify_failure(result.error)
            await self._fail(record, failure)
            log.warning(f"Record {record_id} failed ({failure.category.value}/{failure.reason}): {failure.message}")
            return ExecutionOutcome(record_id=record_id, status=RecordStatus.FAILED, failure=failure)

        await self.records.mark_submitted(record_id, result.order_id, result.status, self.clock())
        log.info(
            f"Record {record_id} submitted: {record.trade_type.value} {sizing.quantity} "
            f"on {record.market_id[:16]}... order {result.order_id}"
        )
        self.settlement.watch(record_id, owner, result.order_id)
        return ExecutionOutcome(
            record_id=record_id,
            status=RecordStatus.PENDING_SETTLEMENT,
            order_id=result.order_id,
        )

    async def _refresh_config(self, config: CopyConfig) -> Optional[CopyConfig]:
        """Apply a due daily quota reset and reload the config."""
        now = self.clock()
        if config.max_buy_trades_per_day and config.quota_reset_due(now):
            await self.configs.reset_daily_counter(config.id, config.last_reset_date, now)
            return await self.configs.get_by_id(config.id)
        return config

    async def _size(self, record: CopyRecord, config: CopyConfig, owner: Owner) -> SizingResult:
        if record.is_buy:
            balance = await self.balances.get_collateral_balance(owner.funder_address)
        else:
            token_id = await self.venue.resolve_token(record.market_id, record.outcome_index, record.token_id)
            balance = (
                await self.balances.get_outcome_token_balance(owner.funder_address, token_id)
                if token_id else 0.0
            )
        return size_position(
            config,
            is_buy=record.is_buy,
            original_amount=record.original_amount,
            original_price=record.original_price,
            original_shares=record.original_shares,
            balance=balance,
        )

    async def _submit_with_retry(
        self,
        record: CopyRecord,
        config: CopyConfig,
        owner: Owner,
        sizing: SizingResult,
    ) -> OrderResult:
        """Call the venue with capped exponential backoff between failed attempts."""
        attempts = max(1, min(config.max_retries or 1, self.max_attempts))
        submit = self.venue.submit_buy if record.is_buy else self.venue.submit_sell
        result = OrderResult(success=False, error="Order was not submitted")

        for attempt in range(1, attempts + 1):
            try:
                result = await submit(
                    owner,
                    record.market_id,
                    record.outcome_index,
                    sizing.quantity,
                    sizing.price,
                    config.slippage,
                    token_id=record.token_id,
                )
            except Exception as e:
                result = OrderResult(success=False, error=str(e))

            if result.success:
                return result

            logger.warning(f"Record {record.id} attempt {attempt}/{attempts} failed: {result.error}")
            if attempt < attempts:
                await self._sleep(min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max))

        return result

    async def _fail(self, record: CopyRecord, failure: Failure) -> None:
        await self.records.mark_failed(
            record.id,
            error_message=failure.message,
            failure_category=failure.category,
            failure_reason=failure.reason,
        )
