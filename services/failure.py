"""Classification of venue errors into failure categories."""

import re
from dataclasses import dataclass
from typing import Optional

from database.models import FailureCategory


@dataclass
class Failure:
    """Categorised failure stored on a copy record."""
    category: FailureCategory
    reason: str
    message: str


# (reason, category, patterns) checked in order against the lower-cased error text
_RULES = [
    ("insufficient_balance", FailureCategory.BALANCE, ("not enough balance", "insufficient balance")),
    ("insufficient_allowance", FailureCategory.BALANCE, ("allowance",)),
    ("below_minimum_size", FailureCategory.VALIDATION, ("min size", "minimum")),
    ("invalid_price", FailureCategory.VALIDATION, ("invalid price",)),
    ("orderbook_unavailable", FailureCategory.MARKET, ("orderbook",)),
    ("market_closed", FailureCategory.MARKET, ("market is closed", "market closed")),
    ("market_not_accepting_orders", FailureCategory.MARKET, ("market is not open", "not accepting orders")),
    ("invalid_signature", FailureCategory.EXECUTION, ("invalid signature",)),
    ("rate_limited", FailureCategory.EXECUTION, ("rate limit", "too many requests")),
]

# Price range errors read like "price (1.2), min: 0.01 - max: 0.99"
_PRICE_RANGE = re.compile(r"price.*(min:|max:)")


def classify_failure(error: Optional[str]) -> Failure:
    """
    Classify a raw venue error message.

    Args:
        error: Error text returned or raised by the venue

    Returns:
        Failure with category, reason code and the raw message
    """
    message = error or "Unknown error"
    text = message.lower()

    for reason, category, patterns in _RULES:
        if any(pattern in text for pattern in patterns):
            return Failure(category=category, reason=reason, message=message)
        if reason == "invalid_price" and _PRICE_RANGE.search(text):
            return Failure(category=category, reason=reason, message=message)

    return Failure(category=FailureCategory.OTHER, reason="unknown_error", message=message)


def insufficient_balance(required: float, available: float, unit: str = "USDC") -> Failure:
    """Failure for a sizing result the owner cannot afford."""
    return Failure(
        category=FailureCategory.BALANCE,
        reason="insufficient_balance",
        message=f"Insufficient balance. Required: {required} {unit}, Available: {available} {unit}",
    )
