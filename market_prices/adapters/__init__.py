"""
Price Provider Adapters

Each adapter implements the PriceProvider interface for a specific
upstream (Alpha Vantage, Yahoo Finance).
"""

from .yfinance_adapter import YFinanceAdapter
from .alphavantage_adapter import AlphaVantageAdapter

__all__ = [
    "YFinanceAdapter",
    "AlphaVantageAdapter",
]
