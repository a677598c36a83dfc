"""
Error taxonomy for price providers and the waterfall service.
"""

from typing import List, Optional

from .interfaces import ProviderFailure


class PriceProviderError(Exception):
    """Base class for all market price errors."""


class ProviderConfigurationError(PriceProviderError):
    """Provider is not configured (e.g. missing API key)."""


class SymbolFormatError(PriceProviderError, ValueError):
    """Caller supplied a malformed symbol. Raised before any network call."""


class RateLimitError(PriceProviderError):
    """Upstream is throttling us."""


class UpstreamError(PriceProviderError):
    """Upstream returned an error, a non-2xx status, or an unusable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AllProvidersExhaustedError(PriceProviderError):
    """Every available provider failed for a symbol."""

    def __init__(self, symbol: str, failures: List[ProviderFailure], message: Optional[str] = None):
        self.symbol = symbol
        self.failures = list(failures)
        if message is None:
            details = "; ".join(str(f) for f in self.failures) or "no providers available"
            message = f"All price providers failed for symbol: {symbol} ({details})"
        super().__init__(message)


class AllProvidersRateLimitedError(AllProvidersExhaustedError):
    """Every available provider failed with a rate limit."""

    def __init__(self, symbol: str, failures: List[ProviderFailure]):
        super().__init__(
            symbol,
            failures,
            message=f"All price providers are rate limited for symbol: {symbol}",
        )
