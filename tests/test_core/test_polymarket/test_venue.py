"""Tests for the Polymarket execution and redemption venues."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from core.polymarket.clob_client import OrderResult
from core.polymarket.gamma_client import Market
from core.polymarket.relayer_client import RelayerResult
from core.polymarket.venue import (
    OrderStatusResult,
    PolymarketRedemptionVenue,
    PolymarketVenue,
    price_limit,
)


@pytest.fixture
def clob():
    client = MagicMock()
    client.place_market_order = AsyncMock(return_value=OrderResult(success=True, order_id="order-1", status="MATCHED"))
    client.get_order = AsyncMock(return_value=None)
    return client


@pytest.fixture
def gamma():
    client = MagicMock()
    client.get_market_by_condition_id = AsyncMock(return_value=None)
    return client


@pytest.fixture
def polymarket_venue(clob, gamma):
    clients = MagicMock()
    clients.get = AsyncMock(return_value=clob)
    return PolymarketVenue(clients, gamma=gamma, public=MagicMock())


class TestPriceLimit:
    """Tests for price_limit."""

    def test_buy_allows_higher_price(self):
        assert price_limit(0.5, 0.1, is_buy=True) == 0.55

    def test_sell_allows_lower_price(self):
        assert price_limit(0.5, 0.1, is_buy=False) == 0.45

    def test_clamped_to_tick_range(self):
        assert price_limit(0.98, 0.1, is_buy=True) == 0.99
        assert price_limit(0.01, 0.5, is_buy=False) == 0.01


class TestOrderStatusResult:
    """Tests for OrderStatusResult flags."""

    @pytest.mark.parametrize("status", ["MATCHED", "filled", "MINED"])
    def test_settled(self, status):
        result = OrderStatusResult(status=status)
        assert result.is_settled and result.is_terminal

    @pytest.mark.parametrize("status", ["CANCELED", "expired"])
    def test_failed(self, status):
        result = OrderStatusResult(status=status)
        assert result.is_failed and result.is_terminal

    def test_live_is_not_terminal(self):
        assert OrderStatusResult(status="LIVE").is_terminal is False
        assert OrderStatusResult(status=None).is_terminal is False


class TestPolymarketVenue:
    """Tests for PolymarketVenue."""

    @pytest.mark.asyncio
    async def test_submit_buy_with_price_limit(self, polymarket_venue, clob, owner):
        result = await polymarket_venue.submit_buy(owner, "0xcondition", 0, 10.0, 0.5, 0.02, token_id="123")

        assert result.order_id == "order-1"
        clob.place_market_order.assert_awaited_once_with(token_id="123", amount=10.0, side="BUY", price=0.51)

    @pytest.mark.asyncio
    async def test_submit_sell(self, polymarket_venue, clob, owner):
        await polymarket_venue.submit_sell(owner, "0xcondition", 1, 20.0, 0.5, 0.02, token_id="456")

        assert clob.place_market_order.await_args.kwargs["side"] == "SELL"
        assert clob.place_market_order.await_args.kwargs["price"] == 0.49

    @pytest.mark.asyncio
    async def test_token_resolved_from_market(self, polymarket_venue, gamma, clob, owner):
        gamma.get_market_by_condition_id.return_value = Market(
            condition_id="0xcondition",
            question="Q",
            slug="q",
            category=None,
            token_ids=["yes", "no"],
            outcome_prices=[0.5, 0.5],
            active=True,
            closed=False,
            accepting_orders=True,
        )

        await polymarket_venue.submit_buy(owner, "0xcondition", 1, 10.0, 0.5, 0.02)

        assert clob.place_market_order.await_args.kwargs["token_id"] == "no"

    @pytest.mark.asyncio
    async def test_unknown_token_fails_without_submitting(self, polymarket_venue, clob, owner):
        result = await polymarket_venue.submit_buy(owner, "0xcondition", 0, 10.0, 0.5, 0.02)

        assert result.success is False
        assert "No orderbook token" in result.error
        clob.place_market_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_order_status(self, polymarket_venue, clob, owner):
        clob.get_order.return_value = {
            "status": "matched",
            "transactionsHashes": ["0xfill"],
            "size_matched": "20",
            "price": "0.5",
        }

        status = await polymarket_venue.get_order_status(owner, "order-1")

        assert status == OrderStatusResult(status="MATCHED", tx_hash="0xfill", size_matched=20.0, price=0.5)

    @pytest.mark.asyncio
    async def test_get_order_status_lookup_failed(self, polymarket_venue, owner):
        status = await polymarket_venue.get_order_status(owner, "order-1")

        assert status.status is None
        assert status.error == "Order lookup failed"


class TestPolymarketRedemptionVenue:
    """Tests for PolymarketRedemptionVenue."""

    @pytest.mark.asyncio
    async def test_redeem_uses_funder_address(self, owner):
        relayer = MagicMock()
        relayer.redeem = AsyncMock(return_value=RelayerResult(success=True, tx_hash="0xredeem"))

        result = await PolymarketRedemptionVenue(relayer).redeem(owner, "0xcondition", neg_risk=True, shares_by_outcome={0: 5.0})

        assert result.tx_hash == "0xredeem"
        relayer.redeem.assert_awaited_once_with(
            user_address=owner.funder_address,
            market_id="0xcondition",
            neg_risk=True,
            shares_by_outcome={0: 5.0},
        )
