"""Redemption of settled copies on resolved markets."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from config import settings
from core.polymarket.gamma_client import Market
from database.models import CopyRecord, CopyRecordAggregate
from utils.clock import Clock, utc_now
from utils.user_logger import owner_logger

logger = logging.getLogger(__name__)


@dataclass
class RedemptionResult:
    """Result of one redemption candidate."""
    record_id: int
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None


def position_outcome(record: CopyRecord, market: Optional[Market]) -> Tuple[Optional[str], Optional[float]]:
    """
    Get the outcome label and pnl of a resolved buy position.

    Returns:
        ("won" | "lost", pnl) or (None, None) when unknown
    """
    if market is None or not record.is_buy:
        return None, None
    winner = market.winning_outcome()
    if winner is None:
        return None, None
    won = winner == record.outcome_index
    if record.copied_shares is None or record.cost_basis is None:
        return ("won" if won else "lost"), None
    payout = record.copied_shares if won else 0.0
    return ("won" if won else "lost"), round(payout - record.cost_basis, 6)


class RedemptionScanner:
    """
    Periodically redeems collateral for settled copies on resolved markets.

    Markets are processed one at a time with a small delay between them;
    a failure in one market never stops the scan.
    """

    def __init__(
        self,
        record_repo,
        gamma,
        venue,
        clock: Clock = utc_now,
        delay: Optional[float] = None,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        redeem_when_unknown: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.records = record_repo
        self.gamma = gamma
        self.venue = venue
        self.clock = clock
        self.delay = settings.redemption_delay if delay is None else delay
        self.batch_size = batch_size or settings.redemption_batch_size
        self.max_attempts = max_attempts or settings.redemption_max_attempts
        self.redeem_when_unknown = (
            settings.redeem_when_status_unknown if redeem_when_unknown is None else redeem_when_unknown
        )
        self._sleep = sleep

    async def scan(self) -> List[RedemptionResult]:
        """
        Run one redemption pass.

        Candidates for the same owner and market are redeemed together with
        one relayer call.

        Returns:
            One result per candidate considered
        """
        candidates = await self.records.get_redemption_candidates(self.batch_size, self.max_attempts)
        if not candidates:
            return []

        await self.records.mark_redemption_checked([c.record.id for c in candidates], self.clock())

        groups: Dict[Tuple[Optional[int], str], List[CopyRecordAggregate]] = {}
        for aggregate in candidates:
            owner_id = aggregate.owner.id if aggregate.owner else None
            groups.setdefault((owner_id, aggregate.record.market_id), []).append(aggregate)

        logger.info(f"Redemption scan: {len(candidates)} candidate(s) in {len(groups)} market(s)")
        results: List[RedemptionResult] = []

        for index, group in enumerate(groups.values()):
            try:
                group_results = await self.redeem_group(group)
            except Exception as e:
                logger.error(f"Redemption of market {group[0].record.market_id[:16]}... crashed: {e}", exc_info=True)
                group_results = [
                    RedemptionResult(record_id=a.record.id, success=False, error=str(e)) for a in group
                ]
            results.extend(group_results)

            attempted = any(not r.skipped for r in group_results)
            if index < len(groups) - 1 and attempted:
                await self._sleep(self.delay)

        succeeded = sum(1 for r in results if r.success)
        failed = sum(1 for r in results if not r.success and not r.skipped)
        logger.info(f"Redemption scan finished: {succeeded} redeemed, {failed} failed")
        return results

    async def _lookup_market(self, record: CopyRecord) -> Optional[Market]:
        try:
            if record.market_slug:
                return await self.gamma.get_market_by_slug(record.market_slug)
            return await self.gamma.get_market_by_condition_id(record.market_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Market lookup failed for record {record.id}: {e}")
            return None

    async def redeem_group(self, group: List[CopyRecordAggregate]) -> List[RedemptionResult]:
        """
        Redeem an owner's candidates in one market.

        Args:
            group: Candidates sharing owner and market

        Returns:
            One result per candidate
        """
        owner = group[0].owner
        records = [a.record for a in group]

        def skip_all(reason: str) -> List[RedemptionResult]:
            return [RedemptionResult(record_id=r.id, success=False, skipped=True, reason=reason) for r in records]

        if owner is None:
            return skip_all("owner not found")

        log = owner_logger(logger, owner)
        market = await self._lookup_market(records[0])
        resolved = market.is_closed if market is not None else None

        if resolved is False:
            return skip_all("market not resolved")
        if resolved is None and not self.redeem_when_unknown:
            return skip_all("market status unknown")

        results: Dict[int, RedemptionResult] = {}
        pending: List[CopyRecord] = []
        for record in records:
            if resolved:
                outcome, pnl = position_outcome(record, market)
                await self.records.mark_resolved(record.id, self.clock(), outcome=outcome, pnl=pnl)
            if await self.records.mark_redemption_pending(record.id):
                pending.append(record)
            else:
                results[record.id] = RedemptionResult(
                    record_id=record.id, success=False, skipped=True, reason="already redeemed"
                )

        if pending:
            shares_by_outcome: Dict[int, float] = {}
            for record in pending:
                if record.copied_shares:
                    shares_by_outcome[record.outcome_index] = (
                        shares_by_outcome.get(record.outcome_index, 0.0) + record.copied_shares
                    )

            market_id = records[0].market_id
            try:
                result = await self.venue.redeem(
                    owner,
                    market_id,
                    neg_risk=market.neg_risk if market else False,
                    shares_by_outcome=shares_by_outcome,
                )
                success, tx_hash, error = result.success, result.tx_hash, result.error
            except Exception as e:
                success, tx_hash, error = False, None, str(e)

            if success:
                for record in pending:
                    await self.records.mark_redeemed(record.id, tx_hash, self.clock())
                    results[record.id] = RedemptionResult(record_id=record.id, success=True, tx_hash=tx_hash)
                log.info(f"Redeemed {len(pending)} record(s) on {market_id[:16]}... tx {tx_hash}")
            else:
                error = error or "Redemption failed"
                for record in pending:
                    await self.records.mark_redemption_failed(record.id, error)
                    results[record.id] = RedemptionResult(record_id=record.id, success=False, error=error)
                log.warning(f"Redemption on {market_id[:16]}... failed for {len(pending)} record(s): {error}")

        return [results[r.id] for r in records]
