"""External signal feed client."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from config import settings
from config.constants import DEFAULT_REFERENCE_PRICE
from core.polymarket.data_client import SourceEvent
from database.models import TradeType
from utils.clock import from_timestamp, utc_now

logger = logging.getLogger(__name__)


def parse_signal(data: Dict[str, Any]) -> SourceEvent:
    """
    Create a SourceEvent from a signal feed item.

    Feeds name their fields inconsistently, so each field accepts the
    common aliases (id/signalId, marketId/conditionId, amount/usdcSize...).
    """
    signal_id = data.get("id") or data.get("signalId")
    if not signal_id:
        raise ValueError("signal has no id")

    market_id = data.get("marketId") or data.get("conditionId")
    if not market_id:
        raise ValueError(f"signal {signal_id} has no market")

    side_text = str(data.get("tradeType") or data.get("side") or "BUY").upper()
    if "outcomeIndex" in data and data["outcomeIndex"] is not None:
        outcome_index = int(data["outcomeIndex"])
    else:
        # YES/NO sides name the outcome rather than the direction
        outcome_index = 1 if side_text == "YES" else 0
    side = TradeType.SELL if side_text == "SELL" else TradeType.BUY

    price = float(data.get("price") or DEFAULT_REFERENCE_PRICE)
    shares = data.get("shares", data.get("size"))
    timestamp_raw = data.get("timestamp") or data.get("createdAt")

    return SourceEvent(
        event_id=str(signal_id),
        market_id=str(market_id),
        outcome_index=outcome_index,
        side=side,
        amount=float(data.get("amount") or data.get("usdcSize") or 0),
        price=price,
        timestamp=from_timestamp(timestamp_raw) if timestamp_raw else utc_now(),
        shares=float(shares) if shares is not None else None,
        token_id=data.get("tokenId") or data.get("asset"),
        market_slug=data.get("slug") or data.get("marketSlug"),
        event_slug=data.get("eventSlug"),
        category=data.get("category"),
        title=data.get("title") or data.get("question"),
    )


class SignalFeedClient:
    """Client for the external trading signal feed."""

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None):
        self.url = url if url is not None else settings.signals_api_url
        self.api_key = api_key if api_key is not None else settings.signals_api_key
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

    def is_configured(self) -> bool:
        return bool(self.url)

    async def fetch_signals(
        self,
        categories: List[str],
        since: datetime,
    ) -> List[SourceEvent]:
        """
        Fetch signals in the given categories newer than a point in time.

        Args:
            categories: Category names to keep (empty keeps all)
            since: Only signals at or after this time are returned

        Returns:
            Signals, newest first
        """
        if not self.is_configured():
            return []

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        client = await self._get_client()
        response = await client.get(self.url, headers=headers)
        response.raise_for_status()

        payload = response.json()
        items = payload.get("signals", []) if isinstance(payload, dict) else payload

        wanted = {c.lower() for c in categories}
        events = []
        for item in items:
            try:
                event = parse_signal(item)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed signal: {e}")
                continue
            if wanted and (event.category or "").lower() not in wanted:
                continue
            if event.timestamp < since:
                continue
            events.append(event)

        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events
