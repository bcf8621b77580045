"""Shared pytest fixtures for PolyCopy tests.

This module provides reusable fixtures for the in-memory repositories,
a controllable clock, encryption, and fakes for the venue, balances and
market data services.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from cryptography.fernet import Fernet

from core.polymarket.clob_client import OrderResult
from core.polymarket.data_client import SourceEvent
from core.polymarket.gamma_client import Market
from core.polymarket.relayer_client import RelayerResult
from core.polymarket.venue import OrderStatusResult
from core.wallet.encryption import KeyEncryption
from database.models import AmountType, ConfigStatus, CopyConfig, NewCopyRecord, SourceType, TradeType
from database.repositories import InMemoryStore, Repositories

OWNER_ADDRESS = "0x1111111111111111111111111111111111111111"
TRADER_ADDRESS = "0x2222222222222222222222222222222222222222"
CONDITION_ID = "0x" + "ab" * 32
TOKEN_ID = "71321045679252212594626385532706912750332728571942532289631379312455583992563"

# Real encryption key for testing (generated fresh)
TEST_ENCRYPTION_KEY = Fernet.generate_key().decode()


class FakeClock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeVenue:
    """Records venue calls and returns scripted results."""

    def __init__(self):
        self.buy_results: List[OrderResult] = []
        self.sell_results: List[OrderResult] = []
        self.statuses: List[OrderStatusResult] = []
        self.orderbooks: Dict[str, Optional[bool]] = {}
        self.submissions: List[dict] = []
        self.status_calls = 0
        self.token_for_market: Optional[str] = TOKEN_ID

    async def resolve_token(self, market_id, outcome_index, token_id):
        return token_id or self.token_for_market

    async def _submit(self, side, results, owner, market_id, outcome_index, amount, ref_price, slippage, token_id=None):
        self.submissions.append({
            "side": side,
            "owner_id": owner.id,
            "market_id": market_id,
            "outcome_index": outcome_index,
            "amount": amount,
            "price": ref_price,
            "slippage": slippage,
            "token_id": token_id,
        })
        if results:
            result = results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return OrderResult(success=True, order_id=f"order-{len(self.submissions)}", status="LIVE")

    async def submit_buy(self, owner, market_id, outcome_index, amount, ref_price, slippage, token_id=None):
        return await self._submit("BUY", self.buy_results, owner, market_id, outcome_index, amount, ref_price, slippage, token_id)

    async def submit_sell(self, owner, market_id, outcome_index, amount, ref_price, slippage, token_id=None):
        return await self._submit("SELL", self.sell_results, owner, market_id, outcome_index, amount, ref_price, slippage, token_id)

    async def get_order_status(self, owner, order_id):
        self.status_calls += 1
        if self.statuses:
            result = self.statuses.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return OrderStatusResult(status="LIVE")

    async def has_orderbook(self, token_id):
        return self.orderbooks.get(token_id, True)


class FakeBalances:
    """Collateral and outcome token balances by address."""

    def __init__(self, collateral: float = 1000.0):
        self.collateral = collateral
        self.tokens: Dict[str, float] = {}
        self.error: Optional[Exception] = None

    async def get_collateral_balance(self, address: str) -> float:
        if self.error:
            raise self.error
        return self.collateral

    async def get_outcome_token_balance(self, address: str, token_id: str) -> float:
        if self.error:
            raise self.error
        return self.tokens.get(token_id, 0.0)


class FakeGamma:
    """Market metadata keyed by slug."""

    def __init__(self):
        self.closed_slugs: Set[str] = set()
        self.markets: Dict[str, Market] = {}
        self.slugs: Dict[str, str] = {}

    async def is_open(self, slug: str) -> bool:
        return slug not in self.closed_slugs

    async def find_slug(self, condition_id: str) -> Optional[str]:
        return self.slugs.get(condition_id)

    async def get_market_by_slug(self, slug: str) -> Optional[Market]:
        return self.markets.get(slug)

    async def get_market_by_condition_id(self, condition_id: str) -> Optional[Market]:
        for market in self.markets.values():
            if market.condition_id == condition_id:
                return market
        return None


class FakeRedemptionVenue:
    """Records redemption calls."""

    def __init__(self):
        self.calls: List[dict] = []
        self.results: List[RelayerResult] = []

    async def redeem(self, owner, market_id, neg_risk=False, shares_by_outcome=None):
        self.calls.append({
            "owner_id": owner.id,
            "market_id": market_id,
            "neg_risk": neg_risk,
            "shares_by_outcome": shares_by_outcome,
        })
        if self.results:
            return self.results.pop(0)
        return RelayerResult(success=True, tx_hash=f"0xredeem{len(self.calls)}")


def make_event(
    event_id: str = "0xtx1",
    side: TradeType = TradeType.BUY,
    amount: float = 100.0,
    price: float = 0.5,
    shares: Optional[float] = None,
    timestamp: Optional[datetime] = None,
    **kwargs,
) -> SourceEvent:
    """Build a source event with sensible defaults."""
    fields = {
        "market_id": CONDITION_ID,
        "outcome_index": 0,
        "token_id": TOKEN_ID,
        "market_slug": "will-it-rain",
        "event_slug": "weather-nyc",
        "tx_hash": event_id,
    }
    fields.update(kwargs)
    return SourceEvent(
        event_id=event_id,
        side=side,
        amount=amount,
        price=price,
        shares=shares if shares is not None else (amount / price if price else None),
        timestamp=timestamp or datetime(2025, 1, 15, 12, 30, tzinfo=timezone.utc),
        **fields,
    )


@pytest.fixture
def encryption_key() -> str:
    """Provide a real Fernet key as the master key."""
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def key_encryption(encryption_key: str) -> KeyEncryption:
    """Create a KeyEncryption instance with few iterations for speed."""
    return KeyEncryption(encryption_key, iterations=1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
def repos(store: InMemoryStore) -> Repositories:
    """In-memory repository set sharing one store."""
    return Repositories.in_memory(store)


@pytest.fixture
def venue() -> FakeVenue:
    return FakeVenue()


@pytest.fixture
def balances() -> FakeBalances:
    return FakeBalances()


@pytest.fixture
def gamma() -> FakeGamma:
    return FakeGamma()


@pytest.fixture
def redemption_venue() -> FakeRedemptionVenue:
    return FakeRedemptionVenue()


@pytest_asyncio.fixture
async def owner(repos: Repositories):
    """Create a test owner."""
    return await repos.owners.create(
        address=OWNER_ADDRESS,
        encrypted_private_key=b"ciphertext",
        encryption_salt=b"salt",
    )


@pytest.fixture
def make_config(repos: Repositories, owner):
    """Factory creating an enabled, authorized copy config."""

    async def create(source_type: SourceType = SourceType.TRADE, **overrides):
        fields = {
            "copy_buys": True,
            "copy_sells": True,
            "amount_type": AmountType.FIXED,
            "buy_amount": 10.0,
            "sell_amount": 10.0,
            "slippage": 0.05,
            "max_retries": 1,
            "enabled": True,
            "authorized": True,
            "status": ConfigStatus.ACTIVE,
        }
        if source_type == SourceType.TRADE:
            fields["trader_address"] = TRADER_ADDRESS
        else:
            fields["signal_categories"] = ["sports"]
        fields.update(overrides)
        return await repos.configs.create(owner.id, source_type, **fields)

    return create


@pytest.fixture
def make_record(repos: Repositories):
    """Factory creating a pending copy record for a stored config."""

    async def create(
        config: CopyConfig,
        event_id: str = "0xtx1",
        side: TradeType = TradeType.BUY,
        amount: float = 100.0,
        price: float = 0.5,
        **overrides,
    ):
        fields = {
            "config_id": config.id,
            "owner_id": config.owner_id,
            "source_type": config.source_type,
            "source_event_id": event_id,
            "market_id": CONDITION_ID,
            "outcome_index": 0,
            "trade_type": side,
            "original_amount": amount,
            "original_price": price,
            "original_shares": amount / price,
            "token_id": TOKEN_ID,
            "market_slug": "will-it-rain",
            "event_slug": "weather-nyc",
            "source_tx_hash": event_id,
        }
        fields.update(overrides)
        return await repos.records.create_pending(NewCopyRecord(**fields))

    return create


@pytest.fixture
def event_factory():
    """Factory for source events."""
    return make_event


@pytest.fixture
def build_config(clock: FakeClock):
    """Factory building a CopyConfig without storing it."""

    def build(**overrides) -> CopyConfig:
        fields = {
            "id": 1,
            "owner_id": 1,
            "source_type": SourceType.TRADE,
            "trader_address": TRADER_ADDRESS,
            "signal_categories": [],
            "copy_buys": True,
            "copy_sells": True,
            "amount_type": AmountType.FIXED,
            "buy_amount": 10.0,
            "sell_amount": 10.0,
            "min_buy_amount": None,
            "max_buy_amount": None,
            "min_sell_amount": None,
            "max_sell_amount": None,
            "market_categories": [],
            "slippage": 0.05,
            "max_retries": 1,
            "max_buy_trades_per_day": None,
            "trades_count_today": 0,
            "last_reset_date": None,
            "start_date": None,
            "duration_days": None,
            "enabled": True,
            "authorized": True,
            "status": ConfigStatus.ACTIVE,
            "created_at": clock(),
        }
        fields.update(overrides)
        return CopyConfig(**fields)

    return build
