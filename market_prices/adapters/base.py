"""
Base Adapter with Common Utilities

Provides shared functionality for all price provider adapters:
- Rate limit error classification
- Static enabled flag and rate-limit delay
- Last success / last error tracking
- Safe value conversions for upstream payloads
"""

import logging
from datetime import datetime
from typing import Optional
from abc import ABC

import numpy as np
import pandas as pd

from ..exceptions import RateLimitError

logger = logging.getLogger(__name__)

# Substrings that mark an error message as upstream throttling
RATE_LIMIT_INDICATORS = (
    "rate limit",
    "too many requests",
    "429",
    "quota exceeded",
    "api limit",
)


def is_rate_limit_error(e: Exception) -> bool:
    """
    Check if an exception indicates a rate limit error.

    Adapters raise RateLimitError when they can tell, but upstream libraries
    only signal throttling through the message, so the message is checked too.
    """
    if isinstance(e, RateLimitError):
        return True

    error_msg = str(e).lower()
    return any(indicator in error_msg for indicator in RATE_LIMIT_INDICATORS)


def safe_float(value, default: Optional[float] = None) -> Optional[float]:
    """Safely convert a value to float."""
    if value is None or value == '':
        return default
    try:
        if pd.isna(value) or (isinstance(value, float) and np.isnan(value)):
            return default
        return float(value)
    except (ValueError, TypeError):
        return default


def safe_str(value, default: str = '') -> str:
    """Safely convert a value to string, treating None as missing."""
    if value is None:
        return default
    try:
        return str(value)
    except (ValueError, TypeError):
        return default


class BaseAdapter(ABC):
    """
    Base class for price provider adapters.

    Concrete adapters combine this with ``PriceProvider`` and supply ``name``.
    """

    def __init__(self, enabled: bool = True, rate_limit_delay: float = 1.0):
        """
        Args:
            enabled: Static policy flag, fixed for the adapter's lifetime
            rate_limit_delay: Seconds to wait between calls to this provider
        """
        self._enabled = enabled
        self._rate_limit_delay = rate_limit_delay
        self._last_error: Optional[str] = None
        self._last_error_was_rate_limit = False
        self._last_success: Optional[datetime] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def get_rate_limit_delay(self) -> float:
        return self._rate_limit_delay

    def _handle_error(self, e: Exception, symbol: str) -> None:
        """Record and log an error before it is re-raised."""
        self._last_error = str(e)
        self._last_error_was_rate_limit = is_rate_limit_error(e)

        if self._last_error_was_rate_limit:
            logger.warning(f"[{self.name}] Rate limited: {symbol}")
        else:
            logger.warning(f"[{self.name}] Error for {symbol}: {e}")

    def _handle_success(self) -> None:
        self._last_success = datetime.now()

    def get_status_info(self) -> dict:
        """Get detailed status information for monitoring."""
        return {
            "name": self.name,
            "enabled": self.enabled,
            "available": self.is_available(),
            "rate_limit_delay": self.get_rate_limit_delay(),
            "last_success": self._last_success.isoformat() if self._last_success else None,
            "last_error": self._last_error,
            "last_error_was_rate_limit": self._last_error_was_rate_limit,
        }
