"""
Unit tests for WaterfallPriceService.

Covers failover order, rate-limit pacing, failure aggregation, history
tagging, search merging and batch degradation. Providers are in-memory
fakes; sleeps are recorded instead of performed.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import patch

from conftest import FakeProvider, make_quote, make_history, make_match

from market_prices.service import WaterfallPriceService, create_default_service
from market_prices.interfaces import AssetClass, OutputSize, QuoteRequest
from market_prices.exceptions import (
    UpstreamError, RateLimitError, SymbolFormatError,
    AllProvidersRateLimitedError, AllProvidersExhaustedError
)
from market_prices.config import Settings, DEFAULT_BATCH_DELAY_SECONDS


def build_service(event_log, *providers):
    return WaterfallPriceService(providers=providers, sleep=event_log.sleep)


# ---------------------------------------------------------------------------
# Tests: fetch_current_quote
# ---------------------------------------------------------------------------

class TestFetchCurrentQuote:

    def test_first_success_wins(self, event_log):
        """A present quote from the first provider short-circuits the loop."""
        p1 = FakeProvider('p1', event_log, quote=make_quote(provider='p1'))
        p2 = FakeProvider('p2', event_log, quote=make_quote(provider='p2'))
        service = build_service(event_log, p1, p2)

        quote = service.fetch_current_quote('AAPL', AssetClass.STOCK)

        assert quote.provider == 'p1'
        assert p2.calls == []
        assert event_log.sleeps == []

    def test_failover_waits_failed_provider_delay_once(self, event_log):
        """Generic failure on p1: p1's delay is awaited exactly once before p2."""
        p1 = FakeProvider('p1', event_log, quote=UpstreamError("boom"), delay=12.0)
        p2 = FakeProvider('p2', event_log, quote=make_quote(provider='p2'), delay=1.0)
        service = build_service(event_log, p1, p2)

        quote = service.fetch_current_quote('AAPL', AssetClass.STOCK)

        assert quote.provider == 'p2'
        assert event_log.events == [('call', 'p1'), ('sleep', 12.0), ('call', 'p2')]

    def test_all_rate_limited_raises_distinct_error(self, event_log):
        """Every failure rate-limit classified -> AllProvidersRateLimitedError."""
        p1 = FakeProvider('p1', event_log, quote=RateLimitError("Alpha Vantage API rate limit: Note"))
        p2 = FakeProvider('p2', event_log, quote=Exception("HTTP Error 429: Too Many Requests"))
        service = build_service(event_log, p1, p2)

        with pytest.raises(AllProvidersRateLimitedError) as exc_info:
            service.fetch_current_quote('AAPL', AssetClass.STOCK)

        error = exc_info.value
        assert str(error) == "All price providers are rate limited for symbol: AAPL"
        assert error.symbol == 'AAPL'
        assert [f.provider for f in error.failures] == ['p1', 'p2']
        assert all(f.is_rate_limit for f in error.failures)
        assert isinstance(error, AllProvidersExhaustedError)

    def test_mixed_failures_raise_first_error(self, event_log):
        first = UpstreamError("Alpha Vantage API error: 500 Server Error", status_code=500)
        p1 = FakeProvider('p1', event_log, quote=first)
        p2 = FakeProvider('p2', event_log, quote=RateLimitError("quota exceeded"))
        service = build_service(event_log, p1, p2)

        with pytest.raises(UpstreamError) as exc_info:
            service.fetch_current_quote('AAPL', AssetClass.STOCK)

        assert exc_info.value is first

    def test_all_absent_returns_none(self, event_log):
        """No provider throws but none has a price -> None, not an error."""
        p1 = FakeProvider('p1', event_log, quote=None)
        p2 = FakeProvider('p2', event_log, quote=None)
        service = build_service(event_log, p1, p2)

        assert service.fetch_current_quote('ZZZZ', AssetClass.STOCK) is None
        assert event_log.calls == ['p1', 'p2']
        assert event_log.sleeps == []

    def test_no_providers_returns_none(self, event_log):
        service = build_service(event_log)
        assert service.fetch_current_quote('AAPL', AssetClass.STOCK) is None

    def test_no_delay_after_last_provider(self, event_log):
        p1 = FakeProvider('p1', event_log, quote=UpstreamError("boom"), delay=5.0)
        service = build_service(event_log, p1)

        with pytest.raises(UpstreamError):
            service.fetch_current_quote('AAPL', AssetClass.STOCK)

        assert event_log.sleeps == []

    def test_skips_disabled_and_unavailable_providers(self, event_log):
        disabled = FakeProvider('disabled', event_log, quote=make_quote(), enabled=False)
        unavailable = FakeProvider('unavailable', event_log, quote=make_quote(), available=False)
        ok = FakeProvider('ok', event_log, quote=make_quote(provider='ok'))
        service = build_service(event_log, disabled, unavailable, ok)

        quote = service.fetch_current_quote('AAPL', AssetClass.STOCK)

        assert quote.provider == 'ok'
        assert event_log.calls == ['ok']

    def test_format_error_propagates_immediately(self, event_log):
        """A malformed symbol is not absorbed by the waterfall."""
        p1 = FakeProvider('p1', event_log, quote=SymbolFormatError("Invalid currency pair format: EURO"))
        p2 = FakeProvider('p2', event_log, quote=make_quote(provider='p2'))
        service = build_service(event_log, p1, p2)

        with pytest.raises(SymbolFormatError):
            service.fetch_current_quote('EURO', AssetClass.CURRENCY)

        assert p2.calls == []
        assert event_log.sleeps == []

    def test_passes_asset_class_and_currency(self, event_log):
        p1 = FakeProvider('p1', event_log, quote=make_quote('BTC', provider='p1'))
        service = build_service(event_log, p1)

        service.fetch_current_quote('BTC', 'crypto', 'EUR')

        assert p1.calls == [('quote', 'BTC', AssetClass.CRYPTO, 'EUR')]


# ---------------------------------------------------------------------------
# Tests: fetch_historical_prices
# ---------------------------------------------------------------------------

class TestFetchHistoricalPrices:

    def test_empty_history_falls_through_and_records_are_tagged(self, event_log):
        p1 = FakeProvider('p1', event_log, history=[])
        p2 = FakeProvider('p2', event_log, history=make_history(provider='upstream-label'))
        service = build_service(event_log, p1, p2)

        history = service.fetch_historical_prices('AAPL', AssetClass.STOCK)

        assert len(history) == 2
        assert {p.provider for p in history} == {'p2'}
        # Empty answers are not failures, so no pacing delay
        assert event_log.sleeps == []

    def test_history_comes_from_exactly_one_provider(self, event_log):
        p1 = FakeProvider('p1', event_log, history=make_history(closes=(1.0,)))
        p2 = FakeProvider('p2', event_log, history=make_history(closes=(2.0, 3.0)))
        service = build_service(event_log, p1, p2)

        history = service.fetch_historical_prices('AAPL', AssetClass.STOCK)

        assert [p.close_price for p in history] == [1.0]
        assert p2.calls == []

    def test_failover_on_error(self, event_log):
        p1 = FakeProvider('p1', event_log, history=RateLimitError("rate limit"), delay=0.8)
        p2 = FakeProvider('p2', event_log, history=make_history())
        service = build_service(event_log, p1, p2)

        history = service.fetch_historical_prices('AAPL', AssetClass.STOCK, output_size='compact')

        assert history[0].provider == 'p2'
        assert event_log.sleeps == [0.8]
        assert p2.calls == [('history', 'AAPL', AssetClass.STOCK, 'USD', OutputSize.COMPACT)]

    def test_all_empty_returns_empty_list(self, event_log):
        service = build_service(event_log, FakeProvider('p1', event_log), FakeProvider('p2', event_log))
        assert service.fetch_historical_prices('AAPL', AssetClass.STOCK) == []

    def test_all_rate_limited(self, event_log):
        p1 = FakeProvider('p1', event_log, history=RateLimitError("API limit reached"))
        service = build_service(event_log, p1)

        with pytest.raises(AllProvidersRateLimitedError):
            service.fetch_historical_prices('AAPL', AssetClass.STOCK)


# ---------------------------------------------------------------------------
# Tests: search_symbols
# ---------------------------------------------------------------------------

class TestSearchSymbols:

    def test_dedup_first_wins_and_numeric_sort(self, event_log):
        p1 = FakeProvider('p1', event_log, search=[
            make_match('AAPL', '9.5', name='Apple from p1', provider='p1'),
            make_match('APLE', '0.5', provider='p1'),
        ])
        p2 = FakeProvider('p2', event_log, search=[
            make_match('AAPL', '0.99', name='Apple from p2', provider='p2'),
            make_match('AAPL.MX', '10', provider='p2'),
        ])
        service = build_service(event_log, p1, p2)

        results = service.search_symbols('apple')

        # Numeric order; as text "10" would sort below "9.5"
        assert [m.symbol for m in results] == ['AAPL.MX', 'AAPL', 'APLE']
        assert results[1].name == 'Apple from p1'

    def test_queries_every_provider_and_sleeps_after_each(self, event_log):
        p1 = FakeProvider('p1', event_log, search=[make_match('BTC', '1.0')], delay=12.0)
        p2 = FakeProvider('p2', event_log, search=UpstreamError("search down"), delay=1.0)
        p3 = FakeProvider('p3', event_log, search=[make_match('BTC-USD', '0.5')], delay=2.0)
        service = build_service(event_log, p1, p2, p3)

        results = service.search_symbols('btc')

        assert [m.symbol for m in results] == ['BTC', 'BTC-USD']
        assert event_log.events == [
            ('call', 'p1'), ('sleep', 12.0),
            ('call', 'p2'), ('sleep', 1.0),
            ('call', 'p3'), ('sleep', 2.0),
        ]

    def test_all_failures_return_empty_list(self, event_log):
        p1 = FakeProvider('p1', event_log, search=RateLimitError("rate limit"))
        p2 = FakeProvider('p2', event_log, search=UpstreamError("boom"))
        service = build_service(event_log, p1, p2)

        assert service.search_symbols('apple') == []

    @pytest.mark.parametrize('keywords', ['', '   ', None])
    def test_blank_keywords(self, event_log, keywords):
        p1 = FakeProvider('p1', event_log, search=[make_match('AAPL', '1.0')])
        service = build_service(event_log, p1)

        assert service.search_symbols(keywords) == []
        assert p1.calls == []


# ---------------------------------------------------------------------------
# Tests: fetch_multiple_quotes
# ---------------------------------------------------------------------------

class TestFetchMultipleQuotes:

    def test_failed_symbol_is_absent_and_batch_continues(self, event_log):
        def quote_for(symbol, asset_class, currency):
            if symbol == 'BAD':
                raise RateLimitError("rate limit")
            return make_quote(symbol, provider='p1')

        p1 = FakeProvider('p1', event_log, quote=quote_for, delay=12.0)
        p2 = FakeProvider('p2', event_log, quote=None, delay=1.0)
        service = build_service(event_log, p1, p2)

        results = service.fetch_multiple_quotes([
            QuoteRequest('AAPL'),
            QuoteRequest('BAD'),
            QuoteRequest('MSFT'),
        ])

        assert set(results) == {'AAPL', 'MSFT'}
        assert results['MSFT'].provider == 'p1'

    def test_paces_with_first_available_provider_delay(self, event_log):
        unavailable = FakeProvider('off', event_log, quote=None, available=False, delay=99.0)
        p1 = FakeProvider('p1', event_log, quote=make_quote(provider='p1'), delay=12.0)
        service = build_service(event_log, unavailable, p1)

        service.fetch_multiple_quotes([QuoteRequest('AAPL'), QuoteRequest('MSFT'), QuoteRequest('IBM')])

        # Between every pair of symbols, none after the last
        assert event_log.sleeps == [12.0, 12.0]

    def test_default_pacing_without_available_providers(self, event_log):
        service = build_service(event_log, FakeProvider('off', event_log, available=False))

        results = service.fetch_multiple_quotes([QuoteRequest('AAPL'), QuoteRequest('MSFT')])

        assert results == {}
        assert event_log.sleeps == [DEFAULT_BATCH_DELAY_SECONDS]

    def test_accepts_mappings(self, event_log):
        p1 = FakeProvider('p1', event_log, quote=lambda s, a, c: make_quote(s, provider='p1'))
        service = build_service(event_log, p1)

        results = service.fetch_multiple_quotes([
            {'symbol': 'BTC', 'asset_class': 'crypto'},
            {'symbol': 'EURUSD', 'symbol_type': 'currency', 'base_currency': 'USD'},
        ])

        assert set(results) == {'BTC', 'EURUSD'}
        assert p1.calls[0] == ('quote', 'BTC', AssetClass.CRYPTO, 'USD')
        assert p1.calls[1] == ('quote', 'EURUSD', AssetClass.CURRENCY, 'USD')

    def test_single_symbol_has_no_sleep(self, event_log):
        p1 = FakeProvider('p1', event_log, quote=make_quote(provider='p1'))
        service = build_service(event_log, p1)

        service.fetch_multiple_quotes([QuoteRequest('AAPL')])

        assert event_log.sleeps == []


# ---------------------------------------------------------------------------
# Tests: registry and observability
# ---------------------------------------------------------------------------

class TestProviderRegistry:

    def test_add_and_remove_provider(self, event_log):
        service = build_service(event_log)
        service.add_provider(FakeProvider('p1', event_log))
        service.add_provider(FakeProvider('p2', event_log))

        assert [p.name for p in service.get_available_providers()] == ['p1', 'p2']

        service.remove_provider('p1')
        assert [p.name for p in service.providers] == ['p2']

    def test_provider_stats_include_every_registered_provider(self, event_log):
        service = build_service(
            event_log,
            FakeProvider('p1', event_log, delay=1.0),
            FakeProvider('p2', event_log, available=False, delay=12.0),
            FakeProvider('p3', event_log, enabled=False, delay=0.8),
        )

        stats = service.get_provider_stats()

        assert stats == [
            {'name': 'p1', 'enabled': True, 'available': True, 'rate_limit_delay': 1.0},
            {'name': 'p2', 'enabled': True, 'available': False, 'rate_limit_delay': 12.0},
            {'name': 'p3', 'enabled': False, 'available': True, 'rate_limit_delay': 0.8},
        ]

    def test_is_market_hours(self, event_log):
        service = build_service(event_log)
        # Wednesday 15:00 UTC / Saturday 15:00 UTC
        assert service.is_market_hours(datetime(2024, 1, 17, 15, 0, tzinfo=timezone.utc)) is True
        assert service.is_market_hours(datetime(2024, 1, 20, 15, 0, tzinfo=timezone.utc)) is False

    def test_metrics_record_fallback(self, event_log):
        p1 = FakeProvider('p1', event_log, quote=UpstreamError("boom"))
        p2 = FakeProvider('p2', event_log, quote=make_quote(provider='p2'))
        service = build_service(event_log, p1, p2)

        service.fetch_current_quote('AAPL', AssetClass.STOCK)
        metrics = service.get_metrics()

        assert metrics['totals']['total_calls'] == 1
        assert metrics['totals']['fallback_used'] == 1
        assert metrics['by_provider']['p1']['failed_calls'] == 1
        assert metrics['by_provider']['p2']['successful_calls'] == 1

    def test_metrics_record_rate_limited_exhaustion(self, event_log):
        p1 = FakeProvider('p1', event_log, quote=RateLimitError("rate limit"))
        service = build_service(event_log, p1)

        with pytest.raises(AllProvidersRateLimitedError):
            service.fetch_current_quote('AAPL', AssetClass.STOCK)

        metrics = service.get_metrics()
        assert metrics['totals']['failures'] == 1
        assert metrics['recent_errors'][0]['result'] == 'rate_limited'
        assert metrics['recent_errors'][0]['error_type'] == 'AllProvidersRateLimitedError'

    def test_search_credits_every_answering_provider(self, event_log):
        p1 = FakeProvider('p1', event_log, search=[make_match('AAPL', '0.9', provider='p1')])
        p2 = FakeProvider('p2', event_log, search=[make_match('APLE', '0.5', provider='p2')])
        service = build_service(event_log, p1, p2)

        for _ in range(3):
            service.search_symbols('apple')

        health = service.get_provider_health('p2')
        assert health['status'] == 'healthy'
        assert health['metrics']['total_calls'] == 3
        assert health['metrics']['successful_calls'] == 3

    def test_absent_answer_counts_as_success_and_error_as_failure(self, event_log):
        p1 = FakeProvider('p1', event_log, quote=None)
        p2 = FakeProvider('p2', event_log, quote=UpstreamError("boom"))
        p3 = FakeProvider('p3', event_log, quote=make_quote(provider='p3'))
        service = build_service(event_log, p1, p2, p3)

        service.fetch_current_quote('AAPL', AssetClass.STOCK)
        by_provider = service.get_metrics()['by_provider']

        assert by_provider['p1']['successful_calls'] == 1
        assert by_provider['p2']['failed_calls'] == 1
        assert by_provider['p2']['last_error'] == 'UpstreamError: boom'
        assert by_provider['p3']['successful_calls'] == 1
        assert service.get_provider_health('p1')['status'] == 'healthy'

    def test_format_error_is_not_counted_against_provider(self, event_log):
        p1 = FakeProvider('p1', event_log, quote=SymbolFormatError("bad pair"))
        service = build_service(event_log, p1)

        with pytest.raises(SymbolFormatError):
            service.fetch_current_quote('EURUS', AssetClass.CURRENCY)

        assert service.get_provider_health('p1')['status'] == 'unknown'


class TestDefaultService:

    def test_alpha_vantage_first_then_yahoo(self):
        service = create_default_service(Settings(alpha_vantage_api_key='demo'))

        assert [p.name for p in service.providers] == ['alpha_vantage', 'yahoo_finance']
        assert [p.name for p in service.get_available_providers()] == ['alpha_vantage', 'yahoo_finance']

    def test_yahoo_only_without_key(self):
        service = create_default_service(Settings(alpha_vantage_api_key=''))

        assert [p.name for p in service.providers] == ['alpha_vantage', 'yahoo_finance']
        assert [p.name for p in service.get_available_providers()] == ['yahoo_finance']

    @pytest.mark.parametrize('api_key', ['demo', ''])
    @pytest.mark.parametrize('operation', ['quote', 'history'])
    def test_malformed_pair_makes_no_network_calls(self, api_key, operation):
        sleeps = []
        with patch('market_prices.adapters.alphavantage_adapter.requests.Session') as session_cls, \
                patch('market_prices.adapters.yfinance_adapter.yf') as mock_yf:
            service = create_default_service(Settings(alpha_vantage_api_key=api_key), sleep=sleeps.append)

            with pytest.raises(SymbolFormatError):
                if operation == 'quote':
                    service.fetch_current_quote('EURUS', AssetClass.CURRENCY)
                else:
                    service.fetch_historical_prices('EURUS', AssetClass.CURRENCY)

        session_cls.return_value.get.assert_not_called()
        mock_yf.Ticker.assert_not_called()
        assert sleeps == []

    def test_get_price_service_is_lazy_and_shared(self, monkeypatch):
        import market_prices.service as service_module

        created = []

        def factory():
            created.append(WaterfallPriceService())
            return created[-1]

        monkeypatch.setattr(service_module, '_service', None)
        monkeypatch.setattr(service_module, 'create_default_service', factory)

        first = service_module.get_price_service()
        second = service_module.get_price_service()

        assert first is second
        assert len(created) == 1
