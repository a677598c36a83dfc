"""
Yahoo Finance Price Provider Adapter

Keyless provider backed by the unofficial Yahoo Finance API (via yfinance).
Supports:
- Quotes for stocks, crypto (BTC-USD) and currency pairs (EURUSD=X)
- Daily history over a bounded window (~100 days compact, ~5 years full)
- Symbol search
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import pandas as pd
import yfinance as yf

from ..interfaces import (
    PriceProvider, AssetClass, OutputSize,
    PriceQuote, HistoricalPricePoint, SymbolSearchMatch
)
from ..config import PROVIDER_CONFIGS, YAHOO_HISTORY_DAYS, YAHOO_SEARCH_MAX_RESULTS
from ..market_detector import to_yahoo_symbol, map_yahoo_quote_type
from .base import BaseAdapter, safe_float, safe_str

logger = logging.getLogger(__name__)


class YFinanceAdapter(BaseAdapter, PriceProvider):
    """
    Yahoo Finance price provider adapter.

    No credentials are needed, so the adapter is always available; the
    endpoint is unofficial, so calls are paced at one per second.
    """

    def __init__(self, enabled: Optional[bool] = None):
        config = PROVIDER_CONFIGS["yahoo_finance"]
        super().__init__(
            enabled=config.enabled if enabled is None else enabled,
            rate_limit_delay=config.rate_limit_delay,
        )

    @property
    def name(self) -> str:
        return "yahoo_finance"

    def is_available(self) -> bool:
        return True

    def fetch_current_quote(
        self,
        symbol: str,
        asset_class: AssetClass,
        currency: str = "USD"
    ) -> Optional[PriceQuote]:
        """Get real-time quote."""
        yahoo_symbol = to_yahoo_symbol(symbol, AssetClass(asset_class))

        try:
            info = yf.Ticker(yahoo_symbol).info
        except Exception as e:
            self._handle_error(e, symbol)
            raise

        if not info:
            return None

        price = info.get('regularMarketPrice')
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            logger.debug(f"[YahooFinance] No market price for {yahoo_symbol}")
            return None

        market_time = info.get('regularMarketTime')
        if isinstance(market_time, (int, float)) and not isinstance(market_time, bool):
            # Unix epoch seconds
            last_updated = datetime.fromtimestamp(market_time, tz=timezone.utc).date().isoformat()
        else:
            last_updated = datetime.now(timezone.utc).date().isoformat()

        self._handle_success()
        return PriceQuote(
            symbol=symbol,
            price=float(price),
            last_updated=last_updated,
            provider=self.name,
        )

    def fetch_historical_prices(
        self,
        symbol: str,
        asset_class: AssetClass,
        currency: str = "USD",
        output_size: OutputSize = OutputSize.FULL
    ) -> List[HistoricalPricePoint]:
        """Get daily OHLCV history, newest first."""
        asset_class = AssetClass(asset_class)
        output_size = OutputSize(output_size)
        yahoo_symbol = to_yahoo_symbol(symbol, asset_class)

        end_date = datetime.now(timezone.utc)
        start_date = end_date - timedelta(days=YAHOO_HISTORY_DAYS[output_size.value])

        try:
            hist = yf.Ticker(yahoo_symbol).history(
                start=start_date.date(),
                end=end_date.date() + timedelta(days=1),
                interval="1d",
                auto_adjust=False,
            )
        except Exception as e:
            self._handle_error(e, symbol)
            raise

        if hist is None or hist.empty:
            return []

        prices = []
        for index, row in hist.iterrows():
            close = safe_float(row.get('Close'))
            if close is None:
                continue
            prices.append(HistoricalPricePoint(
                symbol=symbol,
                date=pd.Timestamp(index).strftime('%Y-%m-%d'),
                open_price=safe_float(row.get('Open')),
                high_price=safe_float(row.get('High')),
                low_price=safe_float(row.get('Low')),
                close_price=close,
                adjusted_close=safe_float(row.get('Adj Close'), close),
                volume=safe_float(row.get('Volume')),
                data_source=self.name,
                asset_class=asset_class,
                base_currency=currency,
                provider=self.name,
            ))

        if prices:
            self._handle_success()
        return sorted(prices, key=lambda p: p.date, reverse=True)

    def search_symbols(self, keywords: str) -> List[SymbolSearchMatch]:
        """Search Yahoo Finance for matching instruments."""
        if not keywords or not keywords.strip():
            return []

        try:
            search = yf.Search(
                keywords.strip(),
                max_results=YAHOO_SEARCH_MAX_RESULTS,
                news_count=0,
            )
            quotes = search.quotes or []
        except Exception as e:
            self._handle_error(e, keywords)
            raise

        matches = []
        for quote in quotes:
            symbol = safe_str(quote.get('symbol'))
            name = safe_str(quote.get('longname')) or safe_str(quote.get('shortname'))
            if not symbol or not name:
                continue

            score = quote.get('score')
            matches.append(SymbolSearchMatch(
                symbol=symbol,
                name=name,
                type=map_yahoo_quote_type(safe_str(quote.get('quoteType'))),
                region=safe_str(quote.get('region')),
                market_open='09:30',
                market_close='16:00',
                timezone=safe_str(quote.get('exchangeTimezoneShortName')) or 'EST',
                currency=safe_str(quote.get('currency')) or 'USD',
                match_score=str(score) if score is not None else '1.0',
                provider=self.name,
            ))

        self._handle_success()
        return matches
