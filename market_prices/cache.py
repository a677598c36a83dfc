"""
Crypto Symbol Catalog Cache

Holds the crypto symbol catalog used by Alpha Vantage symbol search.

Policy (availability over freshness):
- Fresh entry: served from memory
- Missing or expired entry: refresh through the loader
- Refresh fails but an old entry exists: serve the stale entry
- Refresh fails and nothing is cached: serve a small hardcoded catalog

``get_symbols`` never raises.
"""

import threading
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from .config import CatalogConfig
from .interfaces import SymbolSearchMatch

logger = logging.getLogger(__name__)


def _crypto_match(symbol: str, name: str) -> SymbolSearchMatch:
    return SymbolSearchMatch(
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


FALLBACK_CRYPTO_SYMBOLS: Dict[str, SymbolSearchMatch] = {
    'BTC': _crypto_match('BTC', 'Bitcoin'),
    'ETH': _crypto_match('ETH', 'Ethereum'),
    'ADA': _crypto_match('ADA', 'Cardano'),
}


@dataclass
class CatalogEntry:
    """A cached catalog with its refresh timestamp."""
    symbols: Dict[str, SymbolSearchMatch]
    created_at: datetime
    ttl_seconds: int

    def is_expired(self, now: datetime) -> bool:
        return (now - self.created_at).total_seconds() >= self.ttl_seconds

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()


class CryptoCatalogCache:
    """
    TTL cache for the crypto symbol catalog.

    The lock makes refresh single-flight: concurrent callers that find the
    entry stale wait for one refresh instead of each hitting the network.
    """

    def __init__(
        self,
        loader: Callable[[], Dict[str, SymbolSearchMatch]],
        config: Optional[CatalogConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            loader: Fetches and parses a fresh catalog; may raise
            config: TTL settings
            clock: Time source (injectable for tests)
        """
        self._loader = loader
        self._config = config or CatalogConfig()
        self._clock = clock
        self._entry: Optional[CatalogEntry] = None
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "refreshes": 0,
            "refresh_failures": 0,
            "stale_served": 0,
            "fallback_served": 0,
        }

    @property
    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    @property
    def last_updated(self) -> Optional[datetime]:
        return self._entry.created_at if self._entry else None

    @property
    def ttl_seconds(self) -> int:
        return self._config.ttl_seconds

    def get_symbols(self, force_refresh: bool = False) -> Dict[str, SymbolSearchMatch]:
        """Return the catalog, refreshing it when missing or stale."""
        with self._lock:
            now = self._clock()
            entry = self._entry

            if not force_refresh and entry is not None and not entry.is_expired(now):
                self._stats["hits"] += 1
                return entry.symbols

            try:
                symbols = self._loader()
            except Exception as e:
                self._stats["refresh_failures"] += 1
                logger.error(f"[CryptoCatalog] Refresh failed: {e}")

                if entry is not None:
                    self._stats["stale_served"] += 1
                    logger.warning(
                        f"[CryptoCatalog] Serving stale catalog ({len(entry.symbols)} symbols, "
                        f"age {entry.age_seconds(now):.0f}s)"
                    )
                    return entry.symbols

                self._stats["fallback_served"] += 1
                logger.warning("[CryptoCatalog] No cached catalog, serving fallback symbols")
                return dict(FALLBACK_CRYPTO_SYMBOLS)

            self._entry = CatalogEntry(
                symbols=symbols,
                created_at=now,
                ttl_seconds=self._config.ttl_seconds,
            )
            self._stats["refreshes"] += 1
            logger.info(f"[CryptoCatalog] Refreshed catalog: {len(symbols)} symbols")
            return symbols

    def clear(self) -> None:
        with self._lock:
            self._entry = None
