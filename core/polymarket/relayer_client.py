"""Polymarket Relayer API client for gasless position redemption."""

import asyncio
import hmac
import hashlib
import base64
import binascii
import time
import json
import logging
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
from enum import Enum

import httpx
from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from config import settings
from config.constants import (
    BINARY_INDEX_SETS,
    CTF_ADDRESS,
    HASH_ZERO,
    NEG_RISK_ADAPTER_ADDRESS,
    SHARE_DECIMALS,
    USDC_E_ADDRESS,
)

logger = logging.getLogger(__name__)

# CTF redeemPositions(address collateralToken, bytes32 parentCollectionId, bytes32 conditionId, uint256[] indexSets)
REDEEM_POSITIONS_SELECTOR = "0x" + keccak(
    text="redeemPositions(address,bytes32,bytes32,uint256[])"
)[:4].hex()

# NegRiskAdapter redeemPositions(bytes32 conditionId, uint256[] amounts)
NEG_RISK_REDEEM_SELECTOR = "0x" + keccak(
    text="redeemPositions(bytes32,uint256[])"
)[:4].hex()

# Retry settings for relayer rate limits
RELAYER_MAX_RETRIES = 3
RELAYER_INITIAL_DELAY = 2.0  # seconds


class RelayerTxType(Enum):
    """Transaction type for relayer."""
    PROXY = "PROXY"
    SAFE = "SAFE"


@dataclass
class RelayerResult:
    """Result of a relayer operation."""
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


def _condition_bytes(condition_id: str) -> bytes:
    """Convert a hex condition id to bytes32."""
    value = condition_id[2:] if condition_id.startswith("0x") else condition_id
    return bytes.fromhex(value).rjust(32, b"\x00")


class PolymarketRelayer:
    """
    Client for Polymarket Relayer API.

    Submits gasless redeemPositions calls on behalf of an owner's proxy
    wallet once a market has resolved.
    """

    def __init__(self, host: Optional[str] = None):
        self.host = host or settings.relayer_host
        self.api_key = settings.poly_builder_api_key
        self.api_secret = settings.poly_builder_secret
        self.api_passphrase = settings.poly_builder_passphrase
        self._client: Optional[httpx.AsyncClient] = None

    def _get_secret_bytes(self) -> bytes:
        """
        Get the API secret as bytes.

        The secret is base64 URL-safe encoded (same format as py-clob-client).
        """
        try:
            return base64.urlsafe_b64decode(self.api_secret)
        except (binascii.Error, ValueError):
            return self.api_secret.encode("utf-8")

    def _sign_request(
        self,
        method: str,
        path: str,
        timestamp: str,
        body: str = "",
    ) -> str:
        """
        Generate HMAC-SHA256 signature for relayer request.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Request path
            timestamp: Unix timestamp string
            body: Request body as string

        Returns:
            URL-safe Base64-encoded signature
        """
        message = timestamp + method.upper() + path + body
        signature = hmac.new(
            self._get_secret_bytes(),
            message.encode("utf-8"),
            hashlib.sha256,
        )
        return base64.urlsafe_b64encode(signature.digest()).decode("utf-8")

    def _get_headers(
        self,
        method: str,
        path: str,
        body: str = "",
    ) -> Dict[str, str]:
        """Build builder-authenticated (POLY_BUILDER_*) headers."""
        timestamp = str(int(time.time()))
        signature = self._sign_request(method, path, timestamp, body)

        return {
            "POLY_BUILDER_API_KEY": self.api_key,
            "POLY_BUILDER_PASSPHRASE": self.api_passphrase,
            "POLY_BUILDER_SIGNATURE": signature,
            "POLY_BUILDER_TIMESTAMP": timestamp,
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=60.0)
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def is_configured(self) -> bool:
        """Check if relayer credentials are configured."""
        return bool(
            self.api_key
            and self.api_secret
            and self.api_passphrase
        )

    def _encode_redeem_positions(
        self,
        condition_id: str,
        index_sets: List[int],
    ) -> str:
        """
        Encode CTF redeemPositions call against USDC.e collateral.

        Args:
            condition_id: Market condition ID (bytes32)
            index_sets: Outcome index sets to redeem

        Returns:
            Hex-encoded calldata
        """
        params = encode(
            ["address", "bytes32", "bytes32", "uint256[]"],
            [
                to_checksum_address(USDC_E_ADDRESS),
                _condition_bytes(HASH_ZERO),
                _condition_bytes(condition_id),
                index_sets,
            ],
        )
        return REDEEM_POSITIONS_SELECTOR + params.hex()

    def _encode_neg_risk_redeem(self, condition_id: str, amounts: List[int]) -> str:
        """Encode NegRiskAdapter redeemPositions call."""
        params = encode(
            ["bytes32", "uint256[]"],
            [_condition_bytes(condition_id), amounts],
        )
        return NEG_RISK_REDEEM_SELECTOR + params.hex()

    async def _submit_transaction(
        self,
        user_address: str,
        to: str,
        data: str,
        value: int = 0,
    ) -> RelayerResult:
        """
        Submit a single transaction via relayer.

        Rate-limited submissions are retried with exponential backoff.

        Args:
            user_address: User's proxy wallet address
            to: Contract address to call
            data: Encoded calldata
            value: Native value to send (usually 0)

        Returns:
            RelayerResult with transaction hash
        """
        path = "/submit"
        body = {
            "type": RelayerTxType.PROXY.value,
            "data": {
                "address": to_checksum_address(user_address),
                "transactions": [
                    {
                        "to": to_checksum_address(to),
                        "data": data,
                        "value": str(value),
                    }
                ],
            },
        }
        body_str = json.dumps(body)
        delay = RELAYER_INITIAL_DELAY

        for attempt in range(RELAYER_MAX_RETRIES):
            try:
                client = await self._get_client()
                headers = self._get_headers("POST", path, body_str)

                logger.debug(f"Relayer request to {self.host}{path}")
                response = await client.post(
                    f"{self.host}{path}",
                    headers=headers,
                    content=body_str,
                )
            except httpx.HTTPError as e:
                logger.error(f"Relayer submit failed: {e}")
                return RelayerResult(success=False, error=str(e))

            if response.status_code == 200:
                result = response.json()
                return RelayerResult(
                    success=True,
                    tx_hash=result.get("transactionHash") or result.get("txHash") or result.get("hash"),
                    data=result,
                )

            if response.status_code == 429 and attempt < RELAYER_MAX_RETRIES - 1:
                logger.warning(
                    f"Relayer rate limited, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{RELAYER_MAX_RETRIES})"
                )
                await asyncio.sleep(delay)
                delay *= 2
                continue

            error_text = response.text
            logger.error(f"Relayer error {response.status_code}: {error_text}")
            return RelayerResult(
                success=False,
                error=f"Relayer error: {response.status_code} - {error_text}",
            )

        return RelayerResult(success=False, error="Relayer retries exhausted")

    async def redeem_positions(
        self,
        user_address: str,
        condition_id: str,
        index_sets: Optional[List[int]] = None,
        is_neg_risk: bool = False,
        amounts: Optional[List[int]] = None,
    ) -> RelayerResult:
        """
        Redeem positions via relayer (gasless).

        Called after a market resolves to claim winnings back to collateral.

        Args:
            user_address: Owner's proxy wallet address
            condition_id: Market condition ID
            index_sets: Outcome index sets to redeem (1 for YES, 2 for NO)
            is_neg_risk: Whether this is a negative risk market
            amounts: Per-outcome share amounts in base units (neg risk only)

        Returns:
            RelayerResult with transaction hash
        """
        if not self.is_configured():
            return RelayerResult(
                success=False,
                error="Relayer not configured - missing builder credentials",
            )

        if is_neg_risk:
            if not amounts:
                return RelayerResult(success=False, error="Neg risk redemption requires share amounts")
            calldata = self._encode_neg_risk_redeem(condition_id, amounts)
            target = NEG_RISK_ADAPTER_ADDRESS
        else:
            calldata = self._encode_redeem_positions(condition_id, index_sets or BINARY_INDEX_SETS)
            target = CTF_ADDRESS

        logger.info(
            f"Redeeming positions via relayer: {user_address} "
            f"market={condition_id[:16]}... neg_risk={is_neg_risk}"
        )
        return await self._submit_transaction(
            user_address=user_address,
            to=target,
            data=calldata,
        )

    async def redeem(
        self,
        user_address: str,
        market_id: str,
        neg_risk: bool = False,
        shares_by_outcome: Optional[Dict[int, float]] = None,
    ) -> RelayerResult:
        """
        Redeem an owner's position in one market.

        Standard markets redeem both binary index sets; neg risk markets
        redeem exactly the share amounts given per outcome index.
        """
        amounts = None
        if neg_risk and shares_by_outcome:
            amounts = [0, 0]
            for outcome_index, shares in shares_by_outcome.items():
                if 0 <= outcome_index < len(amounts) and shares:
                    amounts[outcome_index] += int(round(shares * (10 ** SHARE_DECIMALS)))
            if not any(amounts):
                amounts = None
        return await self.redeem_positions(
            user_address=user_address,
            condition_id=market_id,
            is_neg_risk=neg_risk,
            amounts=amounts,
        )
