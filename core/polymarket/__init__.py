from .clob_client import PolymarketCLOB, PublicCLOB, OrderResult
from .gamma_client import GammaMarketClient, Market
from .data_client import DataApiClient, SourceEvent
from .signal_client import SignalFeedClient, parse_signal
from .relayer_client import PolymarketRelayer, RelayerResult
from .client_cache import ClobClientCache, make_clob_factory
from .venue import OrderStatusResult, PolymarketRedemptionVenue, PolymarketVenue, price_limit

__all__ = [
    "PolymarketCLOB",
    "PublicCLOB",
    "OrderResult",
    "GammaMarketClient",
    "Market",
    "DataApiClient",
    "SourceEvent",
    "SignalFeedClient",
    "parse_signal",
    "PolymarketRelayer",
    "RelayerResult",
    "ClobClientCache",
    "make_clob_factory",
    "OrderStatusResult",
    "PolymarketRedemptionVenue",
    "PolymarketVenue",
    "price_limit",
]
