"""Position sizing for copied trades."""

from dataclasses import dataclass
from typing import Optional

from config.constants import DEFAULT_REFERENCE_PRICE, SHARE_DECIMALS, USDC_DECIMALS
from database.models import AmountType, CopyConfig


@dataclass
class SizingResult:
    """Result of sizing one copy.

    For buys the order quantity is `amount` USDC; for sells it is `shares`.
    `balance` is the collateral balance for buys and the outcome token
    balance for sells.
    """
    amount: float
    amount_in_base_units: int
    is_sufficient: bool
    balance: float
    shares: float
    price: float
    is_buy: bool = True

    @property
    def quantity(self) -> float:
        """Get the venue order quantity."""
        return self.amount if self.is_buy else self.shares


def to_base_units(value: float, decimals: int) -> int:
    return int(round(value * (10 ** decimals)))


def _clamp(value: float, low: Optional[float], high: Optional[float]) -> float:
    if low is not None and low > 0 and value < low:
        value = low
    if high is not None and high > 0 and value > high:
        value = high
    return value


def size_position(
    config: CopyConfig,
    is_buy: bool,
    original_amount: float,
    original_price: float,
    original_shares: Optional[float],
    balance: float,
) -> SizingResult:
    """
    Compute the copy size for a source event.

    Args:
        config: Copy config with the amount policy
        is_buy: Side of the source event
        original_amount: Source USDC notional
        original_price: Source fill price
        original_shares: Source share count, if known
        balance: Owner's collateral balance (buys) or outcome token balance (sells)

    Returns:
        SizingResult; the copied notional is clamped to the side's [min, max]
    """
    price = original_price if original_price and original_price > 0 else DEFAULT_REFERENCE_PRICE
    policy_value = config.buy_amount if is_buy else config.sell_amount
    amount_type = AmountType(config.amount_type)
    low, high = config.amount_bounds(is_buy)

    if is_buy:
        if amount_type == AmountType.FIXED:
            amount = policy_value
        elif amount_type == AmountType.PERCENTAGE:
            amount = balance * policy_value / 100
        else:
            amount = original_amount * policy_value / 100
        amount = round(_clamp(amount, low, high), USDC_DECIMALS)
        shares = round(amount / price, SHARE_DECIMALS)
        return SizingResult(
            amount=amount,
            amount_in_base_units=to_base_units(amount, USDC_DECIMALS),
            is_sufficient=balance >= amount,
            balance=balance,
            shares=shares,
            price=price,
        )

    # Sells are sized on share count
    if amount_type == AmountType.FIXED:
        shares = policy_value / price
    elif amount_type == AmountType.PERCENTAGE:
        shares = balance * policy_value / 100
    else:
        source_shares = original_shares if original_shares else original_amount / price
        shares = source_shares * policy_value / 100

    notional = _clamp(shares * price, low, high)
    shares = round(notional / price, SHARE_DECIMALS)
    amount = round(shares * price, USDC_DECIMALS)
    return SizingResult(
        amount=amount,
        amount_in_base_units=to_base_units(shares, SHARE_DECIMALS),
        is_sufficient=balance >= shares,
        balance=balance,
        shares=shares,
        price=price,
        is_buy=False,
    )


def required_sell_shares(
    config: CopyConfig,
    original_amount: float,
    original_price: float,
    original_shares: Optional[float],
) -> float:
    """
    Estimate the shares a sell copy will need before the owner balance is known.

    Percentage-of-balance sells can never exceed the balance, so they need
    none up front.
    """
    if AmountType(config.amount_type) == AmountType.PERCENTAGE:
        return 0.0
    return size_position(
        config,
        is_buy=False,
        original_amount=original_amount,
        original_price=original_price,
        original_shares=original_shares,
        balance=0.0,
    ).shares
