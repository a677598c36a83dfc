"""
Market Price Configuration

Defines provider configurations, rate-limit delays, cache settings and the
environment-backed settings consumed by the adapters.
"""

import os
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class AlphaVantagePlan(Enum):
    """Alpha Vantage licensing tiers."""
    FREE = "free"        # 5 requests/minute
    PREMIUM = "premium"  # 75 requests/minute


@dataclass
class ProviderConfig:
    """Configuration for a single price provider."""
    name: str
    enabled: bool = True
    priority: int = 100  # Lower = higher priority

    # Seconds to wait between calls
    rate_limit_delay: float = 1.0


# Alpha Vantage: 12s keeps the free tier under 5 req/min, 0.8s suits premium
ALPHA_VANTAGE_DELAYS: Dict[AlphaVantagePlan, float] = {
    AlphaVantagePlan.FREE: 12.0,
    AlphaVantagePlan.PREMIUM: 0.8,
}

# Default provider configurations
PROVIDER_CONFIGS: Dict[str, ProviderConfig] = {
    "alpha_vantage": ProviderConfig(
        name="alpha_vantage",
        enabled=True,  # Still skipped when no API key is configured
        priority=10,  # Primary
        rate_limit_delay=ALPHA_VANTAGE_DELAYS[AlphaVantagePlan.FREE],
    ),
    "yahoo_finance": ProviderConfig(
        name="yahoo_finance",
        priority=20,  # Keyless fallback
        rate_limit_delay=1.0,  # Unofficial endpoint, be conservative
    ),
}

# Used by batch pacing when no provider is available
DEFAULT_BATCH_DELAY_SECONDS = 1.0

# Upstream endpoints
ALPHA_VANTAGE_BASE_URL = "https://www.alphavantage.co/query"
ALPHA_VANTAGE_CRYPTO_LIST_URL = "https://www.alphavantage.co/digital_currency_list/"


@dataclass
class CatalogConfig:
    """Crypto symbol catalog cache configuration."""
    ttl_seconds: int = 24 * 60 * 60  # 24 hours


# Yahoo Finance history windows by output size
YAHOO_HISTORY_DAYS = {
    "compact": 100,
    "full": 5 * 365,
}
YAHOO_SEARCH_MAX_RESULTS = 10

# Advisory US session in UTC (09:30-16:00 ET, rounded to whole hours)
MARKET_OPEN_UTC_HOUR = 14
MARKET_CLOSE_UTC_HOUR = 21


@dataclass
class Settings:
    """Environment-backed settings."""
    alpha_vantage_api_key: str = ""
    alpha_vantage_plan: AlphaVantagePlan = AlphaVantagePlan.FREE
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from the process environment, loading a .env file first."""
        load_dotenv(dotenv_path)
        return cls.from_environ()

    @classmethod
    def from_environ(cls) -> "Settings":
        """Build settings from the current process environment only."""
        return cls(
            alpha_vantage_api_key=os.getenv('ALPHA_VANTAGE_API_KEY', ''),
            alpha_vantage_plan=parse_plan(os.getenv('ALPHA_VANTAGE_PLAN')),
            request_timeout=float(os.getenv('MARKET_PRICES_REQUEST_TIMEOUT', '30')),
        )


def parse_plan(value: Optional[str]) -> AlphaVantagePlan:
    """Anything other than 'premium' is treated as the free tier."""
    if value and value.strip().lower() == AlphaVantagePlan.PREMIUM.value:
        return AlphaVantagePlan.PREMIUM
    return AlphaVantagePlan.FREE


def get_alpha_vantage_delay(plan: AlphaVantagePlan) -> float:
    """Seconds between Alpha Vantage calls for a plan."""
    return ALPHA_VANTAGE_DELAYS[plan]
