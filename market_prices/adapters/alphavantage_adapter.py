"""
Alpha Vantage Price Provider Adapter

Provides access to the Alpha Vantage API for:
- Stock quotes (GLOBAL_QUOTE) and daily history (TIME_SERIES_DAILY)
- Crypto quotes and daily history (DIGITAL_CURRENCY_DAILY)
- Currency pair rates (CURRENCY_EXCHANGE_RATE) and daily history (FX_DAILY)
- Symbol search (SYMBOL_SEARCH) merged with a cached crypto catalog

Requires ALPHA_VANTAGE_API_KEY. ALPHA_VANTAGE_PLAN=premium shortens the
delay between calls.
Free tier: 5 requests/minute
"""

import logging
import requests
from typing import Optional, List, Dict, Any

from ..interfaces import (
    PriceProvider, AssetClass, OutputSize,
    PriceQuote, HistoricalPricePoint, SymbolSearchMatch
)
from ..config import (
    PROVIDER_CONFIGS, ALPHA_VANTAGE_BASE_URL, ALPHA_VANTAGE_CRYPTO_LIST_URL,
    AlphaVantagePlan, Settings, get_alpha_vantage_delay
)
from ..cache import CryptoCatalogCache
from ..exceptions import ProviderConfigurationError, RateLimitError, UpstreamError
from ..market_detector import split_currency_pair, is_crypto_match_type
from .base import BaseAdapter, safe_float, safe_str

logger = logging.getLogger(__name__)

# Response block keys
GLOBAL_QUOTE_KEY = "Global Quote"
DAILY_SERIES_KEY = "Time Series (Daily)"
CRYPTO_SERIES_KEY = "Time Series (Digital Currency Daily)"
FX_SERIES_KEY = "Time Series FX (Daily)"
FX_RATE_KEY = "Realtime Currency Exchange Rate"


def parse_crypto_csv(csv_text: str) -> Dict[str, SymbolSearchMatch]:
    """
    Parse the digital currency list.

    One ``symbol,name`` pair per line; a first line mentioning "currency"
    is treated as a header. Names may themselves contain commas.
    """
    symbols: Dict[str, SymbolSearchMatch] = {}
    lines = csv_text.strip().splitlines()
    start_index = 1 if lines and 'currency' in lines[0].lower() else 0

    for line in lines[start_index:]:
        line = line.strip()
        if not line or ',' not in line:
            continue

        symbol, name = (part.strip() for part in line.split(',', 1))
        if symbol and name:
            symbols[symbol] = SymbolSearchMatch(
                symbol=symbol,
                name=name,
                type='Cryptocurrency',
                region='Global',
                market_open='00:00',
                market_close='23:59',
                timezone='UTC',
                currency='USD',
                match_score='1.0000',
            )

    return symbols


class AlphaVantageAdapter(BaseAdapter, PriceProvider):
    """
    Alpha Vantage API price provider adapter.

    The API answers HTTP 200 even when it refuses a request, so every payload
    is checked for the Error Message / Note / Information sentinels.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        plan: Optional[AlphaVantagePlan] = None,
        enabled: Optional[bool] = None,
        session: Optional[requests.Session] = None,
        catalog: Optional[CryptoCatalogCache] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            api_key: API key; read from ALPHA_VANTAGE_API_KEY when omitted
            plan: Licensing tier; read from ALPHA_VANTAGE_PLAN when omitted
            enabled: Policy flag; defaults to PROVIDER_CONFIGS
            session: HTTP session (injectable for tests)
            catalog: Crypto catalog cache; one backed by the CSV feed by default
            timeout: HTTP timeout in seconds
        """
        settings = None
        if api_key is None or plan is None or timeout is None:
            # No .env loading here; Settings.from_env is the explicit entry point
            settings = Settings.from_environ()

        self._api_key = api_key if api_key is not None else settings.alpha_vantage_api_key
        self._plan = plan if plan is not None else settings.alpha_vantage_plan
        self._timeout = timeout if timeout is not None else settings.request_timeout

        config = PROVIDER_CONFIGS["alpha_vantage"]
        super().__init__(
            enabled=config.enabled if enabled is None else enabled,
            rate_limit_delay=get_alpha_vantage_delay(self._plan),
        )
        self._session = session or requests.Session()
        self._catalog = catalog or CryptoCatalogCache(loader=self._download_crypto_catalog)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "AlphaVantageAdapter":
        return cls(
            api_key=settings.alpha_vantage_api_key,
            plan=settings.alpha_vantage_plan,
            timeout=settings.request_timeout,
            **kwargs
        )

    @property
    def name(self) -> str:
        return "alpha_vantage"

    @property
    def plan(self) -> AlphaVantagePlan:
        return self._plan

    @property
    def catalog(self) -> CryptoCatalogCache:
        return self._catalog

    def is_available(self) -> bool:
        """Check if API key is configured."""
        return bool(self._api_key)

    def _require_key(self) -> None:
        if not self.is_available():
            raise ProviderConfigurationError("Alpha Vantage API key not configured")

    # ─────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────

    def _make_request(self, params: Dict[str, str]) -> Dict[str, Any]:
        """Make API request, raising classified errors."""
        params = dict(params, apikey=self._api_key)

        try:
            response = self._session.get(ALPHA_VANTAGE_BASE_URL, params=params, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Alpha Vantage request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitError("Alpha Vantage API rate limit: HTTP 429 Too Many Requests")
        if not response.ok:
            raise UpstreamError(
                f"Alpha Vantage API error: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"Alpha Vantage returned a non-JSON payload: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamError("Alpha Vantage returned an unexpected payload")

        self._check_api_errors(data)
        return data

    @staticmethod
    def _check_api_errors(data: Dict[str, Any]) -> None:
        """Translate the in-body sentinels into exceptions."""
        if "Error Message" in data:
            raise UpstreamError(f"Alpha Vantage API error: {data['Error Message']}")

        if "Note" in data:
            raise RateLimitError(f"Alpha Vantage API rate limit: {data['Note']}")

        if "Information" in data:
            raise RateLimitError(f"Alpha Vantage API rate limit: {data['Information']}")

    # ─────────────────────────────────────────────────────────────
    # Quotes
    # ─────────────────────────────────────────────────────────────

    def fetch_current_quote(
        self,
        symbol: str,
        asset_class: AssetClass,
        currency: str = "USD"
    ) -> Optional[PriceQuote]:
        """Get the latest quote, routed by asset class."""
        self._require_key()
        asset_class = AssetClass(asset_class)

        if asset_class == AssetClass.CURRENCY:
            # Validate before any request goes out
            from_currency, to_currency = split_currency_pair(symbol)

        try:
            if asset_class == AssetClass.CRYPTO:
                history = self._fetch_crypto_series(symbol, currency)
                if not history:
                    return None
                latest = history[0]
                quote = PriceQuote(
                    symbol=symbol,
                    price=latest.close_price,
                    last_updated=latest.date,
                    provider=self.name,
                )
            elif asset_class == AssetClass.CURRENCY:
                quote = self._fetch_exchange_rate(from_currency, to_currency)
            else:
                quote = self._fetch_global_quote(symbol)
        except Exception as e:
            self._handle_error(e, symbol)
            raise

        if quote is not None:
            self._handle_success()
        return quote

    def _fetch_global_quote(self, symbol: str) -> Optional[PriceQuote]:
        data = self._make_request({
            "function": "GLOBAL_QUOTE",
            "symbol": symbol
        })

        quote = data.get(GLOBAL_QUOTE_KEY)
        if not quote:
            logger.debug(f"[AlphaVantage] No quote data for {symbol}")
            return None

        price = safe_float(quote.get("05. price"))
        if price is None:
            return None

        return PriceQuote(
            symbol=quote.get("01. symbol") or symbol,
            price=price,
            last_updated=safe_str(quote.get("07. latest trading day")),
            provider=self.name,
        )

    def _fetch_exchange_rate(self, from_currency: str, to_currency: str) -> Optional[PriceQuote]:
        data = self._make_request({
            "function": "CURRENCY_EXCHANGE_RATE",
            "from_currency": from_currency,
            "to_currency": to_currency
        })

        rate = data.get(FX_RATE_KEY)
        if not rate:
            return None

        price = safe_float(rate.get("5. Exchange Rate"))
        if price is None:
            return None

        # "2024-01-15 16:00:01" -> "2024-01-15"
        last_refreshed = safe_str(rate.get("6. Last Refreshed"))[:10]
        return PriceQuote(
            symbol=f"{from_currency}{to_currency}",
            price=price,
            last_updated=last_refreshed,
            provider=self.name,
        )

    # ─────────────────────────────────────────────────────────────
    # History
    # ─────────────────────────────────────────────────────────────

    def fetch_historical_prices(
        self,
        symbol: str,
        asset_class: AssetClass,
        currency: str = "USD",
        output_size: OutputSize = OutputSize.FULL
    ) -> List[HistoricalPricePoint]:
        """Get daily history (newest first), routed by asset class."""
        self._require_key()
        asset_class = AssetClass(asset_class)
        output_size = OutputSize(output_size)

        if asset_class == AssetClass.CURRENCY:
            from_currency, to_currency = split_currency_pair(symbol)

        try:
            if asset_class == AssetClass.CRYPTO:
                prices = self._fetch_crypto_series(symbol, currency)
            elif asset_class == AssetClass.CURRENCY:
                prices = self._fetch_fx_series(from_currency, to_currency, output_size)
            else:
                prices = self._fetch_daily_series(symbol, currency, output_size)
        except Exception as e:
            self._handle_error(e, symbol)
            raise

        if prices:
            self._handle_success()
        return prices

    def _fetch_daily_series(
        self,
        symbol: str,
        currency: str,
        output_size: OutputSize
    ) -> List[HistoricalPricePoint]:
        data = self._make_request({
            "function": "TIME_SERIES_DAILY",
            "symbol": symbol,
            "outputsize": output_size.value
        })

        time_series = data.get(DAILY_SERIES_KEY)
        if not time_series:
            return []

        prices = []
        for date_str, values in time_series.items():
            close = safe_float(values.get("4. close"))
            if close is None:
                continue
            prices.append(HistoricalPricePoint(
                symbol=symbol,
                date=date_str,
                open_price=safe_float(values.get("1. open")),
                high_price=safe_float(values.get("2. high")),
                low_price=safe_float(values.get("3. low")),
                close_price=close,
                # TIME_SERIES_DAILY carries no adjusted close
                adjusted_close=close,
                volume=safe_float(values.get("5. volume")),
                data_source=self.name,
                asset_class=AssetClass.STOCK,
                base_currency=currency,
                provider=self.name,
            ))

        return _newest_first(prices)

    def _fetch_crypto_series(self, symbol: str, market: str) -> List[HistoricalPricePoint]:
        data = self._make_request({
            "function": "DIGITAL_CURRENCY_DAILY",
            "symbol": symbol,
            "market": market
        })

        time_series = data.get(CRYPTO_SERIES_KEY)
        if not time_series:
            return []

        prices = []
        for date_str, values in time_series.items():
            close = _crypto_field(values, "4", "close", market)
            if close is None:
                continue
            prices.append(HistoricalPricePoint(
                symbol=symbol,
                date=date_str,
                open_price=_crypto_field(values, "1", "open", market),
                high_price=_crypto_field(values, "2", "high", market),
                low_price=_crypto_field(values, "3", "low", market),
                close_price=close,
                adjusted_close=close,
                volume=safe_float(values.get("5. volume")),
                data_source=self.name,
                asset_class=AssetClass.CRYPTO,
                base_currency=market,
                provider=self.name,
            ))

        return _newest_first(prices)

    def _fetch_fx_series(
        self,
        from_currency: str,
        to_currency: str,
        output_size: OutputSize
    ) -> List[HistoricalPricePoint]:
        pair = f"{from_currency}{to_currency}"
        data = self._make_request({
            "function": "FX_DAILY",
            "from_symbol": from_currency,
            "to_symbol": to_currency,
            "outputsize": output_size.value
        })

        time_series = data.get(FX_SERIES_KEY)
        if not time_series:
            return []

        prices = []
        for date_str, values in time_series.items():
            close = safe_float(values.get("4. close"))
            if close is None:
                continue
            prices.append(HistoricalPricePoint(
                symbol=pair,
                date=date_str,
                open_price=safe_float(values.get("1. open")),
                high_price=safe_float(values.get("2. high")),
                low_price=safe_float(values.get("3. low")),
                close_price=close,
                adjusted_close=close,
                data_source=self.name,
                asset_class=AssetClass.CURRENCY,
                base_currency=to_currency,
                provider=self.name,
            ))

        return _newest_first(prices)

    # ─────────────────────────────────────────────────────────────
    # Search
    # ─────────────────────────────────────────────────────────────

    def search_symbols(self, keywords: str) -> List[SymbolSearchMatch]:
        """
        Search crypto catalog and Alpha Vantage equities.

        Ranking: exact symbol match first, then crypto before equities,
        then descending match score.
        """
        if not keywords or not keywords.strip():
            return []

        normalized = keywords.strip().upper()
        results: List[SymbolSearchMatch] = []

        results.extend(self._search_crypto_catalog(normalized))

        if self.is_available():
            try:
                results.extend(self._search_equities(keywords.strip()))
            except Exception as e:
                self._handle_error(e, keywords)
                logger.warning(f"[AlphaVantage] Symbol search error, returning crypto matches only: {e}")

        unique = _dedupe_by_symbol(results)
        unique.sort(key=lambda m: (
            m.symbol != normalized,
            not is_crypto_match_type(m.type),
            -m.score,
        ))
        return unique

    def _search_crypto_catalog(self, normalized: str) -> List[SymbolSearchMatch]:
        matches = []
        for crypto in self._catalog.get_symbols().values():
            if crypto.symbol == normalized:
                score = '1.0000'
            elif normalized in crypto.symbol:
                score = '0.9000'
            elif normalized in crypto.name.upper():
                score = '0.8000'
            else:
                continue
            matches.append(SymbolSearchMatch(
                symbol=crypto.symbol,
                name=crypto.name,
                type=crypto.type,
                region=crypto.region,
                market_open=crypto.market_open,
                market_close=crypto.market_close,
                timezone=crypto.timezone,
                currency=crypto.currency,
                match_score=score,
                provider=self.name,
            ))
        return matches

    def _search_equities(self, keywords: str) -> List[SymbolSearchMatch]:
        data = self._make_request({
            "function": "SYMBOL_SEARCH",
            "keywords": keywords
        })

        best_matches = data.get("bestMatches")
        if not isinstance(best_matches, list):
            return []

        matches = []
        for match in best_matches:
            symbol = safe_str(match.get("1. symbol"))
            name = safe_str(match.get("2. name"))
            if not symbol or not name:
                continue
            matches.append(SymbolSearchMatch(
                symbol=symbol,
                name=name,
                type=safe_str(match.get("3. type")),
                region=safe_str(match.get("4. region")),
                market_open=safe_str(match.get("5. marketOpen")),
                market_close=safe_str(match.get("6. marketClose")),
                timezone=safe_str(match.get("7. timezone")),
                currency=safe_str(match.get("8. currency")) or 'USD',
                match_score=safe_str(match.get("9. matchScore")) or '0',
                provider=self.name,
            ))
        return matches

    def _download_crypto_catalog(self) -> Dict[str, SymbolSearchMatch]:
        """Loader for the catalog cache."""
        response = self._session.get(ALPHA_VANTAGE_CRYPTO_LIST_URL, timeout=self._timeout)
        if not response.ok:
            raise UpstreamError(
                f"Failed to fetch crypto list: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )
        return parse_crypto_csv(response.text)


def _crypto_field(values: Dict[str, Any], index: str, label: str, market: str) -> Optional[float]:
    """Read a DIGITAL_CURRENCY_DAILY field across its historical key layouts."""
    for key in (f"{index}a. {label} ({market})", f"{index}b. {label} (USD)", f"{index}. {label}"):
        value = safe_float(values.get(key))
        if value is not None:
            return value
    return None


def _newest_first(prices: List[HistoricalPricePoint]) -> List[HistoricalPricePoint]:
    return sorted(prices, key=lambda p: p.date, reverse=True)


def _dedupe_by_symbol(matches: List[SymbolSearchMatch]) -> List[SymbolSearchMatch]:
    seen = set()
    unique = []
    for match in matches:
        if match.symbol in seen:
            continue
        seen.add(match.symbol)
        unique.append(match)
    return unique
