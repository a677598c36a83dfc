"""
Shared fixtures for unit tests.
No network: providers are in-memory fakes and HTTP / yfinance are mocked.
"""
import os
import sys
import pytest
from typing import List, Optional

# Ensure the package is importable without installation
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from market_prices.interfaces import (  # noqa: E402
    PriceProvider, AssetClass, OutputSize,
    PriceQuote, HistoricalPricePoint, SymbolSearchMatch
)
from market_prices.metrics import metrics_collector  # noqa: E402


class EventLog:
    """Ordered record of provider calls and sleeps."""

    def __init__(self):
        self.events = []

    def sleep(self, seconds: float) -> None:
        self.events.append(('sleep', seconds))

    @property
    def sleeps(self) -> List[float]:
        return [e[1] for e in self.events if e[0] == 'sleep']

    @property
    def calls(self) -> List[str]:
        return [e[1] for e in self.events if e[0] == 'call']


class FakeProvider(PriceProvider):
    """In-memory provider. Results that are exceptions get raised."""

    def __init__(
        self,
        name: str,
        log: Optional[EventLog] = None,
        quote=None,
        history=None,
        search=None,
        enabled: bool = True,
        available: bool = True,
        delay: float = 1.0,
    ):
        self._name = name
        self._log = log or EventLog()
        self.quote_result = quote
        self.history_result = history if history is not None else []
        self.search_result = search if search is not None else []
        self._enabled = enabled
        self._available = available
        self._delay = delay
        self.calls = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def enabled(self) -> bool:
        return self._enabled

    def is_available(self) -> bool:
        return self._available

    def get_rate_limit_delay(self) -> float:
        return self._delay

    def _answer(self, operation, result, *args):
        self.calls.append((operation,) + args)
        self._log.events.append(('call', self._name))
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(*args)
        return result

    def fetch_current_quote(self, symbol, asset_class, currency="USD"):
        return self._answer('quote', self.quote_result, symbol, asset_class, currency)

    def fetch_historical_prices(self, symbol, asset_class, currency="USD", output_size=OutputSize.FULL):
        return self._answer('history', self.history_result, symbol, asset_class, currency, output_size)

    def search_symbols(self, keywords):
        return self._answer('search', self.search_result, keywords)


def make_quote(symbol='AAPL', price=189.5, provider='fake') -> PriceQuote:
    return PriceQuote(symbol=symbol, price=price, last_updated='2024-01-15', provider=provider)


def make_history(symbol='AAPL', closes=(101.0, 100.0), provider='') -> List[HistoricalPricePoint]:
    return [
        HistoricalPricePoint(
            symbol=symbol,
            date=f"2024-01-{15 - i:02d}",
            close_price=close,
            asset_class=AssetClass.STOCK,
            base_currency='USD',
            provider=provider,
        )
        for i, close in enumerate(closes)
    ]


def make_match(symbol, score, name=None, provider='fake', match_type='Stock') -> SymbolSearchMatch:
    return SymbolSearchMatch(
        symbol=symbol,
        name=name or f"{symbol} Inc",
        type=match_type,
        match_score=score,
        provider=provider,
    )


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Metrics are a process-wide singleton; isolate each test."""
    metrics_collector.reset()
    yield
    metrics_collector.reset()


# ---------------------------------------------------------------------------
# Sample Alpha Vantage payloads
# ---------------------------------------------------------------------------

@pytest.fixture
def global_quote_payload():
    return {
        "Global Quote": {
            "01. symbol": "IBM",
            "02. open": "185.0000",
            "05. price": "187.4200",
            "07. latest trading day": "2024-01-15",
            "10. change percent": "0.5000%",
        }
    }


@pytest.fixture
def daily_series_payload():
    return {
        "Meta Data": {"2. Symbol": "IBM"},
        "Time Series (Daily)": {
            "2024-01-12": {
                "1. open": "184.0000", "2. high": "186.0000", "3. low": "183.5000",
                "4. close": "185.9200", "5. volume": "3500000",
            },
            "2024-01-15": {
                "1. open": "186.0000", "2. high": "188.0000", "3. low": "185.5000",
                "4. close": "187.4200", "5. volume": "4100000",
            },
            "2024-01-11": {
                "1. open": "183.0000", "2. high": "184.0000", "3. low": "182.0000",
                "4. close": "183.5000", "5. volume": "2900000",
            },
        },
    }


@pytest.fixture
def crypto_series_payload():
    return {
        "Meta Data": {"2. Digital Currency Code": "BTC"},
        "Time Series (Digital Currency Daily)": {
            "2024-01-14": {
                "1a. open (USD)": "41700.0", "2a. high (USD)": "42100.0",
                "3a. low (USD)": "41500.0", "4a. close (USD)": "41800.0",
                "5. volume": "1200.5",
            },
            "2024-01-15": {
                "1. open": "41800.0", "2. high": "43000.0",
                "3. low": "41600.0", "4. close": "42650.5",
                "5. volume": "1500.25",
            },
        },
    }


@pytest.fixture
def fx_series_payload():
    return {
        "Meta Data": {"2. From Symbol": "EUR", "3. To Symbol": "USD"},
        "Time Series FX (Daily)": {
            "2024-01-12": {"1. open": "1.0950", "2. high": "1.0990", "3. low": "1.0930", "4. close": "1.0951"},
            "2024-01-15": {"1. open": "1.0951", "2. high": "1.0972", "3. low": "1.0940", "4. close": "1.0953"},
        },
    }
