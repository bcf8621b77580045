"""Polymarket Data API client for trader activity."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from config import settings
from config.constants import ACTIVITY_MAX_PAGES, ACTIVITY_PAGE_LIMIT
from database.models import TradeType
from utils.clock import from_timestamp

logger = logging.getLogger(__name__)


@dataclass
class SourceEvent:
    """A trade or signal that a copy config may mirror."""

    event_id: str
    market_id: str
    outcome_index: int
    side: TradeType
    amount: float  # USDC notional
    price: float
    timestamp: datetime
    shares: Optional[float] = None
    tx_hash: Optional[str] = None
    token_id: Optional[str] = None
    market_slug: Optional[str] = None
    event_slug: Optional[str] = None
    category: Optional[str] = None
    title: Optional[str] = None

    @property
    def is_buy(self) -> bool:
        return self.side == TradeType.BUY

    @property
    def category_hint(self) -> str:
        """Get the text used to infer the market category."""
        return self.category or self.event_slug or self.market_slug or self.title or ""

    @classmethod
    def from_activity(cls, data: Dict[str, Any]) -> "SourceEvent":
        """Create SourceEvent from a Data API activity item."""
        tx_hash = data.get("transactionHash")
        side = str(data.get("side", "BUY")).upper()
        timestamp = from_timestamp(data.get("timestamp"))
        event_id = tx_hash or f"{int(timestamp.timestamp())}-{data.get('asset', '')}-{side}"

        size = data.get("size")
        return cls(
            event_id=event_id,
            market_id=data.get("conditionId", ""),
            outcome_index=int(data.get("outcomeIndex", 0) or 0),
            side=TradeType.SELL if side == "SELL" else TradeType.BUY,
            amount=float(data.get("usdcSize", 0) or 0),
            price=float(data.get("price", 0) or 0),
            timestamp=timestamp,
            shares=float(size) if size is not None else None,
            tx_hash=tx_hash,
            token_id=data.get("asset"),
            market_slug=data.get("slug"),
            event_slug=data.get("eventSlug"),
            title=data.get("title"),
        )


class DataApiClient:
    """Client for the Polymarket Data API (trader activity feed)."""

    def __init__(self, host: Optional[str] = None):
        self.host = host or settings.data_api_url
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_trader_activity(
        self,
        trader_address: str,
        since: datetime,
        limit: int = ACTIVITY_PAGE_LIMIT,
        max_pages: int = ACTIVITY_MAX_PAGES,
    ) -> List[SourceEvent]:
        """
        Fetch a trader's trades newer than a point in time.

        Pages through the activity feed until a page comes back short or
        reaches trades older than ``since``.

        Args:
            trader_address: Trader proxy wallet
            since: Only trades at or after this time are returned
            limit: Page size
            max_pages: Upper bound on requests per call

        Returns:
            Trades, newest first

        Raises:
            httpx.HTTPError: When the Data API request fails
        """
        client = await self._get_client()
        events: Dict[str, SourceEvent] = {}

        for page in range(max_pages):
            response = await client.get(
                f"{self.host}/activity",
                params={
                    "user": trader_address.lower(),
                    "limit": limit,
                    "offset": page * limit,
                    "type": "TRADE",
                    "start": int(since.timestamp()),
                },
            )
            response.raise_for_status()

            payload = response.json()
            items = payload if isinstance(payload, list) else payload.get("data", [])

            reached_since = False
            for item in items:
                if item.get("type", "TRADE") != "TRADE":
                    continue
                try:
                    event = SourceEvent.from_activity(item)
                except (TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed activity item from {trader_address[:10]}...: {e}")
                    continue
                if event.timestamp < since:
                    reached_since = True
                    continue
                events.setdefault(event.event_id, event)

            if len(items) < limit or reached_since:
                break
        else:
            logger.warning(f"Activity for {trader_address[:10]}... exceeds {max_pages} pages; fetch stopped early")

        result = sorted(events.values(), key=lambda e: e.timestamp, reverse=True)
        logger.debug(f"Fetched {len(result)} trades for {trader_address[:10]}...")
        return result
