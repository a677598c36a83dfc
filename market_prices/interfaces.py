"""
Market Price Interfaces and Data Classes

Defines the abstract interface for price providers and the standardized data
structures that every provider normalizes its upstream payloads into.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, List, Dict, Any


class AssetClass(Enum):
    """Asset classes a symbol can belong to."""
    STOCK = "stock"          # Equities and ETFs
    CRYPTO = "crypto"        # Cryptocurrencies
    CURRENCY = "currency"    # Currency pairs (EURUSD, EUR/USD)


class OutputSize(Enum):
    """How much history to request."""
    COMPACT = "compact"  # Roughly the last 100 trading days
    FULL = "full"        # Everything the provider is willing to return


class OperationType(Enum):
    """Operations the waterfall service performs (used for metrics)."""
    QUOTE = "quote"
    HISTORY = "history"
    SEARCH = "search"


@dataclass(frozen=True)
class PriceQuote:
    """Point-in-time quote for a symbol."""
    symbol: str
    price: float
    last_updated: str  # YYYY-MM-DD
    provider: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'price': self.price,
            'lastUpdated': self.last_updated,
            'provider': self.provider,
        }


@dataclass(frozen=True)
class HistoricalPricePoint:
    """One daily OHLC bar."""
    symbol: str
    date: str  # YYYY-MM-DD
    close_price: float
    open_price: Optional[float] = None
    high_price: Optional[float] = None
    low_price: Optional[float] = None
    volume: Optional[float] = None
    adjusted_close: Optional[float] = None
    data_source: str = ""
    asset_class: Optional[AssetClass] = None
    base_currency: Optional[str] = None
    provider: str = ""

    def __post_init__(self):
        if self.adjusted_close is None:
            object.__setattr__(self, 'adjusted_close', self.close_price)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['asset_class'] = self.asset_class.value if self.asset_class else None
        return data


@dataclass(frozen=True)
class SymbolSearchMatch:
    """A single symbol search hit.

    ``match_score`` is kept as decimal text (``"0.9000"``) because that is how
    upstreams transmit it; use :attr:`score` whenever ordering matters.
    """
    symbol: str
    name: str
    type: str = ""
    region: str = ""
    market_open: str = ""
    market_close: str = ""
    timezone: str = ""
    currency: str = "USD"
    match_score: str = "0"
    provider: str = ""

    @property
    def score(self) -> float:
        try:
            return float(self.match_score)
        except (TypeError, ValueError):
            return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'name': self.name,
            'type': self.type,
            'region': self.region,
            'marketOpen': self.market_open,
            'marketClose': self.market_close,
            'timezone': self.timezone,
            'currency': self.currency,
            'matchScore': self.match_score,
            'provider': self.provider,
        }


@dataclass(frozen=True)
class ProviderFailure:
    """A provider call that raised, as recorded by the waterfall."""
    provider: str
    error: Exception
    is_rate_limit: bool

    def __str__(self) -> str:
        kind = "rate limit" if self.is_rate_limit else type(self.error).__name__
        return f"{self.provider} ({kind}): {self.error}"


@dataclass(frozen=True)
class QuoteRequest:
    """One entry of a batch quote request."""
    symbol: str
    asset_class: AssetClass = AssetClass.STOCK
    currency: str = "USD"

    @classmethod
    def coerce(cls, value) -> "QuoteRequest":
        """Accept a QuoteRequest or a mapping with symbol/asset_class/currency keys."""
        if isinstance(value, cls):
            return value
        asset_class = value.get('asset_class') or value.get('symbol_type') or AssetClass.STOCK
        return cls(
            symbol=value['symbol'],
            asset_class=AssetClass(asset_class),
            currency=value.get('currency') or value.get('base_currency') or "USD",
        )


class PriceProvider(ABC):
    """
    Abstract base class for all price data providers.

    Each provider wraps one upstream (Alpha Vantage, Yahoo Finance, ...) and
    normalizes its payloads into the dataclasses above.

    Implementations should:
    1. Return None / an empty list when the upstream simply has no data
    2. Raise classified exceptions (see ``exceptions``) on genuine failures
    3. Validate caller input before touching the network
    4. Tag every record they return with their own ``name``
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable provider identifier."""
        pass

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """Static policy flag; disabled providers are never called."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Dynamic check, e.g. whether a required credential is configured."""
        pass

    @abstractmethod
    def get_rate_limit_delay(self) -> float:
        """Seconds to wait between calls to this provider."""
        pass

    @abstractmethod
    def fetch_current_quote(
        self,
        symbol: str,
        asset_class: AssetClass,
        currency: str = "USD"
    ) -> Optional[PriceQuote]:
        """
        Fetch the latest quote for a symbol.

        Returns:
            PriceQuote if the upstream has a price, None otherwise
        """
        pass

    @abstractmethod
    def fetch_historical_prices(
        self,
        symbol: str,
        asset_class: AssetClass,
        currency: str = "USD",
        output_size: OutputSize = OutputSize.FULL
    ) -> List[HistoricalPricePoint]:
        """
        Fetch daily history for a symbol, newest first.

        Returns:
            List of price points, possibly empty
        """
        pass

    @abstractmethod
    def search_symbols(self, keywords: str) -> List[SymbolSearchMatch]:
        """
        Search symbols by keyword, ordered by the provider's own relevance.

        Returns an empty list when nothing matches.
        """
        pass
