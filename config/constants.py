"""Application constants."""

# Polygon USDC contract addresses
USDC_E_ADDRESS = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"  # Bridged USDC.e (Polymarket collateral)

# Conditional Token Framework (outcome tokens, redeemPositions)
CTF_ADDRESS = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
NEG_RISK_ADAPTER_ADDRESS = "0xd91E80cF2E7be2e162c6513ceD06f1dD0dA35296"

# Parent collection for top-level conditions
HASH_ZERO = "0x" + "00" * 32

# USDC has 6 decimals
USDC_DECIMALS = 6

# Outcome tokens share the collateral's decimals
SHARE_DECIMALS = 6

# Polymarket price bounds
MIN_PRICE = 0.01
MAX_PRICE = 0.99

# Reference price used when a source event carries none
DEFAULT_REFERENCE_PRICE = 0.5

# Binary markets: YES index set 1, NO index set 2
BINARY_INDEX_SETS = [1, 2]

# Data API page size for trader activity
ACTIVITY_PAGE_LIMIT = 100
ACTIVITY_MAX_PAGES = 20

# Venue order states
SETTLED_ORDER_STATUSES = {"MATCHED", "FILLED", "SETTLED", "CONFIRMED", "MINED"}
FAILED_ORDER_STATUSES = {"CANCELED", "CANCELLED", "REJECTED", "EXPIRED", "FAILED", "UNMATCHED"}

# Copy config lifecycle
QUOTA_WINDOW_HOURS = 24
