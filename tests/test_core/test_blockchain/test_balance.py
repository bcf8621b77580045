"""Tests for on-chain balance queries."""

from unittest.mock import MagicMock

import pytest
from web3 import Web3

from core.blockchain.balance import BalanceService

ADDRESS = "0x742d35cc6634c0532925a3b844bc9e7595f1abcd"


@pytest.fixture
def service() -> BalanceService:
    service = BalanceService(rpc_url="http://localhost:8545")
    service.usdc_e_contract = MagicMock()
    service.ctf_contract = MagicMock()
    return service


class TestBalanceService:
    """Tests for BalanceService."""

    @pytest.mark.asyncio
    async def test_collateral_balance(self, service):
        service.usdc_e_contract.functions.balanceOf.return_value.call.return_value = 21_500_000

        assert await service.get_collateral_balance(ADDRESS) == 21.5
        service.usdc_e_contract.functions.balanceOf.assert_called_once_with(Web3.to_checksum_address(ADDRESS))

    @pytest.mark.asyncio
    async def test_outcome_token_balance(self, service):
        service.ctf_contract.functions.balanceOf.return_value.call.return_value = 12_345_678

        balance = await service.get_outcome_token_balance(ADDRESS, "123")

        assert balance == pytest.approx(12.345678)
        assert service.ctf_contract.functions.balanceOf.call_args.args[1] == 123

    @pytest.mark.asyncio
    async def test_rpc_errors_propagate(self, service):
        service.usdc_e_contract.functions.balanceOf.return_value.call.side_effect = ConnectionError("rpc down")

        with pytest.raises(ConnectionError):
            await service.get_collateral_balance(ADDRESS)
