"""Real-time blockchain balance queries for collateral and outcome tokens."""

import asyncio
import logging
from typing import Optional

from web3 import Web3

from config import settings
from config.constants import CTF_ADDRESS, SHARE_DECIMALS, USDC_E_ADDRESS, USDC_DECIMALS

logger = logging.getLogger(__name__)

# Minimal ERC20 ABI for balanceOf
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    }
]

# Minimal ERC1155 ABI for balanceOf (conditional tokens)
ERC1155_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    }
]


class BalanceService:
    """Service for querying real-time USDC.e and outcome token balances."""

    def __init__(self, rpc_url: Optional[str] = None):
        """
        Initialize balance service.

        Args:
            rpc_url: Polygon RPC URL (defaults to settings)
        """
        self.rpc_url = rpc_url or settings.polygon_rpc_url
        self.w3 = Web3(Web3.HTTPProvider(self.rpc_url))

        # USDC.e contract (Polymarket collateral)
        self.usdc_e_contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(USDC_E_ADDRESS),
            abi=ERC20_BALANCE_ABI,
        )
        # Conditional Token Framework (outcome tokens)
        self.ctf_contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(CTF_ADDRESS),
            abi=ERC1155_BALANCE_ABI,
        )

    def get_balance(self, address: str) -> float:
        """
        Get USDC.e balance for an address.

        Args:
            address: Wallet address

        Returns:
            Balance in USDC.e (as float, e.g., 21.50)

        Raises:
            Exception: When the RPC call fails
        """
        balance_raw = self.usdc_e_contract.functions.balanceOf(
            Web3.to_checksum_address(address)
        ).call()

        balance = balance_raw / (10 ** USDC_DECIMALS)
        logger.debug(f"Balance for {address[:10]}...: ${balance:.2f} USDC.e")
        return balance

    def get_token_balance(self, address: str, token_id: str) -> float:
        """
        Get outcome token balance for an address.

        Args:
            address: Wallet address
            token_id: CLOB token id (ERC1155 position id)

        Returns:
            Share count
        """
        balance_raw = self.ctf_contract.functions.balanceOf(
            Web3.to_checksum_address(address),
            int(token_id),
        ).call()
        return balance_raw / (10 ** SHARE_DECIMALS)

    async def get_collateral_balance(self, address: str) -> float:
        """Async wrapper for get_balance."""
        return await asyncio.to_thread(self.get_balance, address)

    async def get_outcome_token_balance(self, address: str, token_id: str) -> float:
        """Async wrapper for get_token_balance."""
        return await asyncio.to_thread(self.get_token_balance, address, token_id)

