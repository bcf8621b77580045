"""Input validation utilities."""

import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

Number = Union[str, int, float]


def validate_amount(
    value: Number,
    min_val: float = 0.0,
    max_val: Optional[float] = None,
    allow_min: bool = False,
) -> Optional[float]:
    """
    Validate and sanitize amount input.

    Args:
        value: Input value (text or number)
        min_val: Lower bound
        max_val: Upper bound, inclusive
        allow_min: Whether the lower bound itself is accepted

    Returns:
        Validated amount or None if invalid
    """
    try:
        # Use Decimal for precision
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None

    if not amount.is_finite():
        return None
    if amount < Decimal(str(min_val)) or (amount == Decimal(str(min_val)) and not allow_min):
        return None
    if max_val is not None and amount > Decimal(str(max_val)):
        return None

    return float(amount)


def validate_percentage(value: Number) -> Optional[float]:
    """
    Validate a percentage in (0, 100].

    Returns:
        Validated percentage or None if invalid
    """
    return validate_amount(value, min_val=0, max_val=100)


def validate_address(address: str) -> Optional[str]:
    """
    Validate Ethereum/Polygon address.

    Args:
        address: Address string

    Returns:
        Validated address (lowercase) or None if invalid
    """
    address = (address or "").strip()

    # Check format
    if not re.match(r"^0x[a-fA-F0-9]{40}$", address):
        return None

    return address.lower()


def validate_categories(categories: List[str]) -> List[str]:
    """
    Normalize a category list to lowercase, dropping blanks and duplicates.
    """
    result = []
    for category in categories or []:
        text = str(category).strip().lower()
        if not text:
            continue
        if text not in result:
            result.append(text)
    return result
