"""Polymarket Gamma API client for market data and market status."""

import json
import logging
from typing import Optional, List, Dict, Any
from dataclasses import dataclass

import httpx

from config import settings

logger = logging.getLogger(__name__)


def _json_list(value) -> list:
    """Gamma returns some list fields as JSON-encoded strings."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return []
    return list(value or [])


@dataclass
class Market:
    """Market data model."""
    condition_id: str
    question: str
    slug: Optional[str]
    category: Optional[str]
    token_ids: List[str]
    outcome_prices: List[float]
    active: bool
    closed: bool
    accepting_orders: bool
    neg_risk: bool = False
    event_slug: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Market":
        """Create Market from a Gamma /markets item."""
        events = data.get("events") or []
        event_slug = events[0].get("slug") if events and isinstance(events[0], dict) else None

        prices = []
        for price in _json_list(data.get("outcomePrices")):
            try:
                prices.append(float(price))
            except (TypeError, ValueError):
                prices.append(0.0)

        return cls(
            condition_id=data.get("conditionId", ""),
            question=data.get("question", ""),
            slug=data.get("slug"),
            category=data.get("category"),
            token_ids=[str(t) for t in _json_list(data.get("clobTokenIds"))],
            outcome_prices=prices,
            active=bool(data.get("active", False)),
            closed=bool(data.get("closed", False)),
            # Older markets omit acceptingOrders; treat missing as accepting
            accepting_orders=bool(data.get("acceptingOrders", True)),
            neg_risk=bool(data.get("negRisk", False)),
            event_slug=event_slug,
        )

    @property
    def is_open(self) -> bool:
        """Market is live and accepting orders."""
        return self.active and not self.closed and self.accepting_orders

    @property
    def is_closed(self) -> bool:
        """Market is closed or no longer active."""
        return self.closed or not self.active

    def token_for_outcome(self, outcome_index: int) -> Optional[str]:
        """Get the CLOB token id for an outcome index."""
        if 0 <= outcome_index < len(self.token_ids):
            return self.token_ids[outcome_index]
        return None

    def winning_outcome(self) -> Optional[int]:
        """Get the index of the outcome priced at 1 after resolution."""
        for index, price in enumerate(self.outcome_prices):
            if price >= 0.999:
                return index
        return None


class GammaMarketClient:
    """Client for Polymarket Gamma API (market data)."""

    def __init__(self, host: Optional[str] = None):
        self.host = host or settings.gamma_host
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

    async def get_market_by_slug(self, slug: str) -> Optional[Market]:
        """
        Get market by URL slug.

        Args:
            slug: Market slug from URL (e.g., 'bitcoin-100k-2025')

        Returns:
            Market or None if not found

        Raises:
            httpx.HTTPError: On transport errors or non-404 error responses
        """
        client = await self._get_client()
        response = await client.get(f"{self.host}/markets/slug/{slug}")

        if response.status_code == 404:
            logger.warning(f"Market slug not found: {slug}")
            return None

        response.raise_for_status()
        return Market.from_api(response.json())

    async def get_market_by_condition_id(self, condition_id: str) -> Optional[Market]:
        """
        Get market by condition ID.

        Returns:
            Market or None if not found or the lookup failed
        """
        try:
            client = await self._get_client()
            response = await client.get(
                f"{self.host}/markets",
                params={"condition_ids": condition_id},
            )
            response.raise_for_status()

            data = response.json()
            if data:
                return Market.from_api(data[0])
            return None

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch market {condition_id[:16]}...: {e}")
            return None

    async def find_slug(self, condition_id: str) -> Optional[str]:
        """Look up a market slug for a condition id."""
        market = await self.get_market_by_condition_id(condition_id)
        return market.slug if market else None

    async def is_open(self, slug: str) -> bool:
        """
        Check whether a market is live and accepting orders.

        Lookup failures count as closed so nothing is copied into a market
        whose state is unknown.
        """
        try:
            market = await self.get_market_by_slug(slug)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Market status lookup failed for '{slug}': {e}")
            return False
        return market is not None and market.is_open
