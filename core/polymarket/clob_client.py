"""Polymarket CLOB API client wrapper."""

import asyncio
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass

from py_clob_client.client import ClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    MarketOrderArgs,
    OrderType,
)
from py_clob_client.order_builder.constants import BUY, SELL
from py_builder_signing_sdk.config import BuilderConfig
from py_builder_signing_sdk.sdk_types import BuilderApiKeyCreds

from config import settings

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    """Result of an order placement."""
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    status: Optional[str] = None
    tx_hash: Optional[str] = None


def _builder_config() -> Optional[BuilderConfig]:
    """Configure builder attribution if credentials are provided."""
    if not settings.poly_builder_api_key:
        return None
    builder_creds = BuilderApiKeyCreds(
        key=settings.poly_builder_api_key,
        secret=settings.poly_builder_secret,
        passphrase=settings.poly_builder_passphrase,
    )
    return BuilderConfig(local_builder_creds=builder_creds)


class PolymarketCLOB:
    """Wrapper for Polymarket CLOB API operations for one owner."""

    def __init__(
        self,
        private_key: str,
        funder_address: Optional[str] = None,
        signature_type: Optional[int] = None,
    ):
        """
        Initialize CLOB client.

        Args:
            private_key: Wallet private key for signing
            funder_address: Proxy wallet holding the funds (defaults to signer)
            signature_type: 0 for EOA, 1 for proxy wallets, 2 for Safe
        """
        self.funder_address = funder_address
        self.client = ClobClient(
            host=settings.clob_host,
            key=private_key,
            chain_id=settings.chain_id,
            signature_type=settings.clob_signature_type if signature_type is None else signature_type,
            funder=funder_address,
            builder_config=_builder_config(),
        )
        self._api_creds: Optional[ApiCreds] = None

    async def initialize(self) -> None:
        """Create or derive API credentials."""
        try:
            self._api_creds = await asyncio.to_thread(self.client.create_or_derive_api_creds)
            self.client.set_api_creds(self._api_creds)
            logger.info("CLOB client initialized with API credentials")
        except Exception as e:
            logger.error(f"Failed to initialize CLOB client: {e}")
            raise

    @property
    def api_credentials(self) -> Optional[Dict[str, str]]:
        """Get API credentials for storage."""
        if self._api_creds:
            return {
                "api_key": self._api_creds.api_key,
                "api_secret": self._api_creds.api_secret,
                "api_passphrase": self._api_creds.api_passphrase,
            }
        return None

    def set_api_credentials(
        self,
        api_key: str,
        api_secret: str,
        api_passphrase: str,
    ) -> None:
        """Set API credentials from stored values."""
        self._api_creds = ApiCreds(
            api_key=api_key,
            api_secret=api_secret,
            api_passphrase=api_passphrase,
        )
        self.client.set_api_creds(self._api_creds)

    async def place_market_order(
        self,
        token_id: str,
        amount: float,
        side: str,
        price: Optional[float] = None,
    ) -> OrderResult:
        """
        Place a fill-or-kill market order.

        Args:
            token_id: The token ID to trade
            amount: USDC to spend for buys, shares to sell for sells
            side: "BUY" or "SELL"
            price: Worst acceptable price (slippage bound)

        Returns:
            OrderResult; on failure `error` carries the venue's raw message
        """
        try:
            side_const = BUY if side.upper() == "BUY" else SELL
            args = MarketOrderArgs(
                token_id=token_id,
                amount=amount,
                side=side_const,
                price=price or 0,
            )
            order = await asyncio.to_thread(self.client.create_market_order, args)
            result = await asyncio.to_thread(self.client.post_order, order, OrderType.FOK)

            if result and result.get("orderID") and result.get("success", True):
                tx_hashes = result.get("transactionsHashes") or []
                return OrderResult(
                    success=True,
                    order_id=result["orderID"],
                    status=str(result.get("status") or "MATCHED").upper(),
                    tx_hash=tx_hashes[0] if tx_hashes else None,
                )
            error = (result or {}).get("errorMsg") or (str(result) if result else "Order rejected")
            return OrderResult(success=False, error=error)

        except Exception as e:
            logger.error(f"Market order failed: {e}")
            return OrderResult(success=False, error=str(e))

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        """
        Get order details.

        Returns:
            Order details or None if the lookup failed
        """
        try:
            return await asyncio.to_thread(self.client.get_order, order_id)
        except Exception as e:
            logger.error(f"Get order failed: {e}")
            return None


class PublicCLOB:
    """Unauthenticated CLOB reads (orderbooks)."""

    def __init__(self, host: Optional[str] = None):
        self.client = ClobClient(host or settings.clob_host, chain_id=settings.chain_id)

    async def order_book_exists(self, token_id: str) -> Optional[bool]:
        """
        Check whether the CLOB has an orderbook for a token.

        Returns:
            False when the venue reports no orderbook, None when the check failed
        """
        try:
            await asyncio.to_thread(self.client.get_order_book, token_id)
            return True
        except Exception as e:
            text = str(e).lower()
            if "no orderbook exists" in text or "orderbook does not exist" in text:
                return False
            logger.warning(f"Orderbook check failed for {token_id[:16]}...: {e}")
            return None
