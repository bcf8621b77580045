from .clock import Clock, from_timestamp, utc_now
from .validators import validate_amount, validate_percentage, validate_address, validate_categories

__all__ = [
    "Clock",
    "from_timestamp",
    "utc_now",
    "validate_amount",
    "validate_percentage",
    "validate_address",
    "validate_categories",
]
