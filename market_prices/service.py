"""
Waterfall Price Service - Central Entry Point

Provides a single interface over an ordered list of price providers with:
- Automatic failover in priority order
- Rate-limit aware pacing between provider calls
- Failure classification (rate limit vs. generic) and aggregation
- Sequential batch quotes and merged multi-provider search
"""

import logging
import time
from dataclasses import replace
from datetime import datetime
from threading import Lock
from typing import Optional, List, Dict, Any, Callable, Iterable, Tuple

from .interfaces import (
    PriceProvider, AssetClass, OutputSize, OperationType,
    PriceQuote, HistoricalPricePoint, SymbolSearchMatch,
    ProviderFailure, QuoteRequest
)
from .config import DEFAULT_BATCH_DELAY_SECONDS, PROVIDER_CONFIGS, Settings
from .exceptions import SymbolFormatError, AllProvidersRateLimitedError
from .market_detector import is_market_hours
from .metrics import MetricsCollector, metrics_collector
from .adapters.base import is_rate_limit_error

logger = logging.getLogger(__name__)


class WaterfallPriceService:
    """
    Tries providers in sequence until one succeeds.

    Usage:
        from market_prices import get_price_service

        service = get_price_service()

        # First provider with a price wins
        quote = service.fetch_current_quote("AAPL", AssetClass.STOCK)

        # History comes from exactly one provider
        history = service.fetch_historical_prices("EUR/USD", AssetClass.CURRENCY)

        # Search merges every provider's results
        matches = service.search_symbols("bitcoin")
    """

    def __init__(
        self,
        providers: Optional[Iterable[PriceProvider]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Args:
            providers: Providers in priority order (first = highest)
            sleep: Blocking sleep in seconds, injectable for tests
            metrics: Metrics collector (defaults to the shared collector)
        """
        self._providers: List[PriceProvider] = list(providers or [])
        self._sleep = sleep or time.sleep
        self._metrics = metrics or metrics_collector

    # ─────────────────────────────────────────────────────────────
    # Provider registry
    # ─────────────────────────────────────────────────────────────

    def add_provider(self, provider: PriceProvider) -> None:
        """Append a provider at the lowest priority."""
        self._providers.append(provider)
        logger.info(f"[Waterfall] Registered provider: {provider.name}")

    def remove_provider(self, name: str) -> None:
        """Remove every provider registered under ``name``."""
        self._providers = [p for p in self._providers if p.name != name]
        logger.info(f"[Waterfall] Removed provider: {name}")

    def get_available_providers(self) -> List[PriceProvider]:
        """Providers that are enabled and configured, in priority order."""
        return [p for p in self._providers if p.enabled and p.is_available()]

    @property
    def providers(self) -> List[PriceProvider]:
        return list(self._providers)

    # ─────────────────────────────────────────────────────────────
    # Waterfall
    # ─────────────────────────────────────────────────────────────

    def _run_waterfall(
        self,
        operation: OperationType,
        symbol: str,
        fetch: Callable[[PriceProvider], Any],
        has_data: Callable[[Any], bool],
    ) -> Tuple[Any, Optional[PriceProvider]]:
        """
        Walk available providers until one returns data.

        Returns (result, provider) for the first provider with data, or
        (None, None) when every provider answered without data. Raises when
        at least one provider failed and none had data.
        """
        providers = self.get_available_providers()
        failures: List[ProviderFailure] = []
        providers_tried: List[str] = []
        succeeded: List[str] = []
        start_time = time.time()

        for i, provider in enumerate(providers):
            providers_tried.append(provider.name)
            logger.debug(
                f"[Waterfall] Trying provider {i + 1}/{len(providers)}: "
                f"{provider.name} for {operation.value} {symbol}"
            )

            try:
                result = fetch(provider)
            except SymbolFormatError as e:
                # Malformed input, not a provider failure
                self._record(operation, symbol, providers_tried, None, start_time, failures, succeeded, error=e)
                raise
            except Exception as e:
                rate_limited = is_rate_limit_error(e)
                failures.append(ProviderFailure(provider=provider.name, error=e, is_rate_limit=rate_limited))
                if not rate_limited:
                    self._metrics.record_provider_failure(provider.name, e)
                logger.warning(f"[Waterfall] {provider.name} failed for {operation.value} {symbol}: {e}")

                if i < len(providers) - 1:
                    delay = provider.get_rate_limit_delay()
                    logger.debug(f"[Waterfall] Waiting {delay}s before trying next provider")
                    self._sleep(delay)
                continue

            succeeded.append(provider.name)
            if has_data(result):
                self._record(operation, symbol, providers_tried, provider.name, start_time, failures, succeeded)
                return result, provider

            logger.debug(f"[Waterfall] No data from {provider.name} for {symbol}, trying next provider")

        if not failures:
            self._record(operation, symbol, providers_tried, None, start_time, failures, succeeded)
            return None, None

        logger.error(
            f"[Waterfall] All providers failed for {operation.value} {symbol}: "
            + "; ".join(str(f) for f in failures)
        )

        if all(f.is_rate_limit for f in failures):
            error = AllProvidersRateLimitedError(symbol, failures)
        else:
            error = failures[0].error

        self._record(operation, symbol, providers_tried, None, start_time, failures, succeeded, error=error)
        raise error

    def _record(
        self,
        operation: OperationType,
        symbol: str,
        providers_tried: List[str],
        provider_used: Optional[str],
        start_time: float,
        failures: List[ProviderFailure],
        succeeded: List[str],
        error: Optional[Exception] = None,
    ) -> None:
        self._metrics.record_call(
            operation=operation,
            symbol=symbol,
            providers_tried=providers_tried,
            provider_used=provider_used,
            latency_ms=(time.time() - start_time) * 1000,
            success=error is None,
            rate_limited_providers=[f.provider for f in failures if f.is_rate_limit],
            error_type=type(error).__name__ if error else None,
            error_message=str(error)[:500] if error else None,
            failed_providers=[f.provider for f in failures if not f.is_rate_limit],
            providers_succeeded=list(succeeded),
        )

    # ─────────────────────────────────────────────────────────────
    # Public API Methods
    # ─────────────────────────────────────────────────────────────

    def fetch_current_quote(
        self,
        symbol: str,
        asset_class: AssetClass = AssetClass.STOCK,
        currency: str = "USD"
    ) -> Optional[PriceQuote]:
        """
        Get the current quote from the first provider that has one.

        Returns None when no provider failed but none had a price.

        Raises:
            AllProvidersRateLimitedError: every failure was a rate limit
            SymbolFormatError: the symbol is malformed
            Exception: the first provider error otherwise
        """
        asset_class = AssetClass(asset_class)
        quote, provider = self._run_waterfall(
            OperationType.QUOTE,
            symbol,
            lambda p: p.fetch_current_quote(symbol, asset_class, currency),
            lambda result: result is not None,
        )
        if quote is not None:
            logger.info(f"[Waterfall] Success with {provider.name} for {symbol}: {quote.price}")
        return quote

    def fetch_historical_prices(
        self,
        symbol: str,
        asset_class: AssetClass = AssetClass.STOCK,
        currency: str = "USD",
        output_size: OutputSize = OutputSize.FULL
    ) -> List[HistoricalPricePoint]:
        """
        Get daily history from the first provider with a non-empty series.

        Every returned record is tagged with the winning provider.
        """
        asset_class = AssetClass(asset_class)
        output_size = OutputSize(output_size)
        history, provider = self._run_waterfall(
            OperationType.HISTORY,
            symbol,
            lambda p: p.fetch_historical_prices(symbol, asset_class, currency, output_size),
            lambda result: bool(result),
        )
        if not history:
            return []

        logger.info(f"[Waterfall] Success with {provider.name} for {symbol}: {len(history)} historical records")
        return [replace(point, provider=provider.name) for point in history]

    def search_symbols(self, keywords: str) -> List[SymbolSearchMatch]:
        """
        Search every available provider and merge the results.

        Failures are logged and skipped. Duplicates keep the first (highest
        priority) occurrence; the result is ordered by descending score.
        """
        if not keywords or not keywords.strip():
            return []

        providers = self.get_available_providers()
        all_results: List[SymbolSearchMatch] = []
        failures: List[ProviderFailure] = []
        providers_tried: List[str] = []
        succeeded: List[str] = []
        provider_used = None
        start_time = time.time()

        for provider in providers:
            providers_tried.append(provider.name)
            try:
                logger.debug(f"[Waterfall] Searching with {provider.name} for: {keywords}")
                results = provider.search_symbols(keywords)
                succeeded.append(provider.name)
                if results:
                    logger.debug(f"[Waterfall] Found {len(results)} results from {provider.name}")
                    all_results.extend(results)
                    provider_used = provider_used or provider.name
            except Exception as e:
                rate_limited = is_rate_limit_error(e)
                failures.append(ProviderFailure(provider=provider.name, error=e, is_rate_limit=rate_limited))
                if not rate_limited:
                    self._metrics.record_provider_failure(provider.name, e)
                logger.warning(f"[Waterfall] Search failed with {provider.name}: {e}")

            self._sleep(provider.get_rate_limit_delay())

        seen = set()
        unique_results = []
        for match in all_results:
            if match.symbol in seen:
                continue
            seen.add(match.symbol)
            unique_results.append(match)

        # Stable sort keeps provider order among equal scores
        unique_results.sort(key=lambda m: m.score, reverse=True)

        self._record(OperationType.SEARCH, keywords, providers_tried, provider_used, start_time, failures, succeeded)
        logger.info(f"[Waterfall] Combined search results: {len(unique_results)} unique symbols")
        return unique_results

    def fetch_multiple_quotes(self, requests) -> Dict[str, PriceQuote]:
        """
        Fetch quotes for many symbols one at a time.

        Args:
            requests: QuoteRequest objects or mappings with ``symbol``,
                ``asset_class`` and optional ``currency`` keys

        Returns:
            symbol -> quote for every symbol that resolved; failed or
            price-less symbols are simply absent
        """
        requests = [QuoteRequest.coerce(r) for r in requests]
        results: Dict[str, PriceQuote] = {}

        logger.info(f"[Waterfall] Fetching quotes for {len(requests)} symbols...")

        for i, request in enumerate(requests):
            try:
                logger.debug(f"[Waterfall] Fetching quote {i + 1}/{len(requests)}: {request.symbol}")
                quote = self.fetch_current_quote(request.symbol, request.asset_class, request.currency)
                if quote is not None:
                    results[request.symbol] = quote
            except Exception as e:
                logger.error(f"[Waterfall] Failed to fetch quote for {request.symbol}: {e}")

            if i < len(requests) - 1:
                delay = self._batch_delay()
                logger.debug(f"[Waterfall] Waiting {delay}s before next request...")
                self._sleep(delay)

        logger.info(f"[Waterfall] Successfully fetched {len(results)}/{len(requests)} quotes")
        return results

    def _batch_delay(self) -> float:
        available = self.get_available_providers()
        if available:
            return available[0].get_rate_limit_delay()
        return DEFAULT_BATCH_DELAY_SECONDS

    # ─────────────────────────────────────────────────────────────
    # Observability
    # ─────────────────────────────────────────────────────────────

    def is_market_hours(self, now: Optional[datetime] = None) -> bool:
        """Rough US session check (weekday, 14:00-21:00 UTC)."""
        return is_market_hours(now)

    def get_provider_stats(self) -> List[Dict[str, Any]]:
        """One entry per registered provider, available or not."""
        return [
            {
                'name': provider.name,
                'enabled': provider.enabled,
                'available': provider.is_available(),
                'rate_limit_delay': provider.get_rate_limit_delay(),
            }
            for provider in self._providers
        ]

    def get_metrics(self) -> Dict[str, Any]:
        """Get detailed metrics from the MetricsCollector."""
        return self._metrics.get_stats()

    def get_provider_health(self, provider_name: str) -> Dict[str, Any]:
        """Get health status for a specific provider."""
        return self._metrics.get_provider_health(provider_name)


def create_default_service(
    settings: Optional[Settings] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> WaterfallPriceService:
    """Build a service with Alpha Vantage first, then Yahoo Finance as the keyless fallback."""
    from .adapters import YFinanceAdapter, AlphaVantageAdapter

    settings = settings or Settings.from_env()
    adapters = [AlphaVantageAdapter.from_settings(settings), YFinanceAdapter()]

    service = WaterfallPriceService(sleep=sleep)
    # Lower priority value = tried first
    for adapter in sorted(adapters, key=lambda a: PROVIDER_CONFIGS[a.name].priority):
        service.add_provider(adapter)
    return service


_service: Optional[WaterfallPriceService] = None
_service_lock = Lock()


def get_price_service() -> WaterfallPriceService:
    """Return the module-wide service, creating it on first use."""
    global _service
    with _service_lock:
        if _service is None:
            _service = create_default_service()
            logger.info("[Waterfall] Service initialized")
        return _service
