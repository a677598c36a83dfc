"""
Market Prices - Multi-Provider Price Aggregation Layer

Provides a single entry point for market price data with:
- Multi-provider support (Yahoo Finance, Alpha Vantage)
- Automatic failover on rate limits or errors
- Rate-limit aware pacing between provider calls
- Merged, de-duplicated symbol search
- Per-call metrics

Usage:
    from market_prices import get_price_service, AssetClass

    service = get_price_service()

    # Get quote
    quote = service.fetch_current_quote("AAPL", AssetClass.STOCK)

    # Get history (newest first)
    history = service.fetch_historical_prices("BTC", AssetClass.CRYPTO, output_size="compact")

    # Search
    matches = service.search_symbols("apple")

    # Batch
    quotes = service.fetch_multiple_quotes([
        {"symbol": "AAPL", "asset_class": "stock"},
        {"symbol": "EUR/USD", "asset_class": "currency"},
    ])
"""

from .service import WaterfallPriceService, create_default_service, get_price_service
from .interfaces import (
    AssetClass,
    OutputSize,
    PriceQuote,
    HistoricalPricePoint,
    SymbolSearchMatch,
    ProviderFailure,
    QuoteRequest,
    PriceProvider,
)
from .exceptions import (
    PriceProviderError,
    ProviderConfigurationError,
    SymbolFormatError,
    RateLimitError,
    UpstreamError,
    AllProvidersExhaustedError,
    AllProvidersRateLimitedError,
)
from .config import ProviderConfig, Settings, AlphaVantagePlan, PROVIDER_CONFIGS

__all__ = [
    # Main service
    "WaterfallPriceService",
    "create_default_service",
    "get_price_service",
    # Interfaces
    "AssetClass",
    "OutputSize",
    "PriceQuote",
    "HistoricalPricePoint",
    "SymbolSearchMatch",
    "ProviderFailure",
    "QuoteRequest",
    "PriceProvider",
    # Errors
    "PriceProviderError",
    "ProviderConfigurationError",
    "SymbolFormatError",
    "RateLimitError",
    "UpstreamError",
    "AllProvidersExhaustedError",
    "AllProvidersRateLimitedError",
    # Config
    "ProviderConfig",
    "Settings",
    "AlphaVantagePlan",
    "PROVIDER_CONFIGS",
]
