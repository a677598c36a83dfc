"""
Symbol and Market Detection

Single place for the symbol-format rules shared by the adapters:
- Currency pair parsing (EURUSD / EUR/USD)
- Yahoo Finance symbol translation per asset class
- Yahoo quote-type to display-type mapping
- A coarse US market-hours heuristic
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from .config import MARKET_OPEN_UTC_HOUR, MARKET_CLOSE_UTC_HOUR
from .exceptions import SymbolFormatError
from .interfaces import AssetClass


# Yahoo quoteType (lowercased) -> display type
YAHOO_TYPE_MAP = {
    'equity': 'Stock',
    'cryptocurrency': 'Cryptocurrency',
    'currency': 'Currency',
    'mutualfund': 'Mutual Fund',
    'index': 'Index',
}

CRYPTO_TYPE = 'Cryptocurrency'


def split_currency_pair(symbol: str) -> Tuple[str, str]:
    """
    Split a currency pair into its two ISO codes.

    Args:
        symbol: Pair written as 'EURUSD' or 'EUR/USD'

    Returns:
        (from_currency, to_currency)

    Raises:
        SymbolFormatError: if the pair is not 6 characters once '/' is removed

    Examples:
        >>> split_currency_pair("EUR/USD")
        ('EUR', 'USD')
        >>> split_currency_pair("gbpjpy")
        ('GBP', 'JPY')
    """
    clean = symbol.replace('/', '').strip().upper()
    if len(clean) != 6:
        raise SymbolFormatError(
            f"Invalid currency pair format: {symbol}. Expected format: EURUSD or EUR/USD"
        )
    return clean[:3], clean[3:]


def to_yahoo_symbol(symbol: str, asset_class: AssetClass) -> str:
    """
    Convert a generic symbol to Yahoo Finance format.

    Raises:
        SymbolFormatError: for a currency pair that is not 6 letters

    Examples:
        >>> to_yahoo_symbol("BTC", AssetClass.CRYPTO)
        'BTC-USD'
        >>> to_yahoo_symbol("EURUSD", AssetClass.CURRENCY)
        'EURUSD=X'
        >>> to_yahoo_symbol("AAPL", AssetClass.STOCK)
        'AAPL'
    """
    if asset_class == AssetClass.CRYPTO:
        return symbol if '-' in symbol else f"{symbol}-USD"

    if asset_class == AssetClass.CURRENCY:
        from_currency, to_currency = split_currency_pair(symbol)
        return f"{from_currency}{to_currency}=X"

    return symbol


def map_yahoo_quote_type(quote_type: str) -> str:
    """Map a Yahoo quoteType to the display vocabulary, passing unknown types through."""
    return YAHOO_TYPE_MAP.get((quote_type or '').lower(), quote_type or '')


def is_crypto_match_type(match_type: str) -> bool:
    return match_type == CRYPTO_TYPE


def is_market_hours(now: Optional[datetime] = None) -> bool:
    """
    Coarse check for US regular trading hours.

    Monday-Friday, 14:00-21:00 UTC. Ignores holidays and DST; advisory only.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)

    is_weekday = now.weekday() < 5
    in_session = MARKET_OPEN_UTC_HOUR <= now.hour < MARKET_CLOSE_UTC_HOUR
    return is_weekday and in_session
