"""Execution and redemption venues backed by Polymarket."""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from config.constants import FAILED_ORDER_STATUSES, MAX_PRICE, MIN_PRICE, SETTLED_ORDER_STATUSES
from core.polymarket.client_cache import ClobClientCache
from core.polymarket.clob_client import OrderResult, PublicCLOB
from core.polymarket.gamma_client import GammaMarketClient
from core.polymarket.relayer_client import PolymarketRelayer, RelayerResult
from database.models import Owner

logger = logging.getLogger(__name__)


@dataclass
class OrderStatusResult:
    """Venue view of an order."""
    status: Optional[str]
    tx_hash: Optional[str] = None
    size_matched: Optional[float] = None
    price: Optional[float] = None
    error: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return (self.status or "").upper() in SETTLED_ORDER_STATUSES

    @property
    def is_failed(self) -> bool:
        return (self.status or "").upper() in FAILED_ORDER_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.is_settled or self.is_failed


def price_limit(ref_price: float, slippage: float, is_buy: bool) -> float:
    """
    Get the worst acceptable price for a market order.

    Buys accept up to ref * (1 + slippage), sells down to ref * (1 - slippage),
    clamped to the venue's tick range.
    """
    limit = ref_price * (1 + slippage) if is_buy else ref_price * (1 - slippage)
    return round(min(max(limit, MIN_PRICE), MAX_PRICE), 2)


def _to_float(value) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class PolymarketVenue:
    """Submits copy orders for owners through their cached CLOB clients."""

    def __init__(
        self,
        clients: ClobClientCache,
        gamma: Optional[GammaMarketClient] = None,
        public: Optional[PublicCLOB] = None,
    ):
        self.clients = clients
        self.gamma = gamma or GammaMarketClient()
        self._public = public

    async def resolve_token(self, market_id: str, outcome_index: int, token_id: Optional[str]) -> Optional[str]:
        """Get the CLOB token for an outcome, looking it up when the event carried none."""
        if token_id:
            return token_id
        market = await self.gamma.get_market_by_condition_id(market_id)
        return market.token_for_outcome(outcome_index) if market else None

    async def _submit(
        self,
        owner: Owner,
        side: str,
        market_id: str,
        outcome_index: int,
        amount: float,
        ref_price: float,
        slippage: float,
        token_id: Optional[str],
    ) -> OrderResult:
        token = await self.resolve_token(market_id, outcome_index, token_id)
        if not token:
            return OrderResult(success=False, error=f"No orderbook token for market {market_id} outcome {outcome_index}")

        client = await self.clients.get(owner)
        limit = price_limit(ref_price, slippage, is_buy=side == "BUY")
        logger.info(
            f"Submitting {side} for {owner.short_address}: {amount:.6f} @ <= {limit} "
            f"on {market_id[:16]}... outcome {outcome_index}"
        )
        return await client.place_market_order(token_id=token, amount=amount, side=side, price=limit)

    async def submit_buy(
        self,
        owner: Owner,
        market_id: str,
        outcome_index: int,
        amount: float,
        ref_price: float,
        slippage: float,
        token_id: Optional[str] = None,
    ) -> OrderResult:
        """Spend `amount` USDC on an outcome."""
        return await self._submit(owner, "BUY", market_id, outcome_index, amount, ref_price, slippage, token_id)

    async def submit_sell(
        self,
        owner: Owner,
        market_id: str,
        outcome_index: int,
        amount: float,
        ref_price: float,
        slippage: float,
        token_id: Optional[str] = None,
    ) -> OrderResult:
        """Sell `amount` outcome shares."""
        return await self._submit(owner, "SELL", market_id, outcome_index, amount, ref_price, slippage, token_id)

    async def get_order_status(self, owner: Owner, order_id: str) -> OrderStatusResult:
        client = await self.clients.get(owner)
        order = await client.get_order(order_id)
        if not order:
            return OrderStatusResult(status=None, error="Order lookup failed")

        tx_hashes = order.get("transactionsHashes") or []
        tx_hash = order.get("transactionHash") or (tx_hashes[0] if tx_hashes else None)
        return OrderStatusResult(
            status=str(order.get("status") or "").upper() or None,
            tx_hash=tx_hash,
            size_matched=_to_float(order.get("size_matched")),
            price=_to_float(order.get("price")),
        )

    async def has_orderbook(self, token_id: str) -> Optional[bool]:
        if self._public is None:
            self._public = PublicCLOB()
        return await self._public.order_book_exists(token_id)


class PolymarketRedemptionVenue:
    """Redeems settled positions through the relayer."""

    def __init__(self, relayer: Optional[PolymarketRelayer] = None):
        self.relayer = relayer or PolymarketRelayer()

    async def redeem(
        self,
        owner: Owner,
        market_id: str,
        neg_risk: bool = False,
        shares_by_outcome: Optional[Dict[int, float]] = None,
    ) -> RelayerResult:
        return await self.relayer.redeem(
            user_address=owner.funder_address,
            market_id=market_id,
            neg_risk=neg_risk,
            shares_by_outcome=shares_by_outcome,
        )
