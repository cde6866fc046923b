"""
Market data package.

This package contains the valuation feed and its cache.
"""

from burnkeeper.market.valuation import StaticValuationFeed, ValuationCache, ValuationFeed

__all__ = [
    "StaticValuationFeed",
    "ValuationCache",
    "ValuationFeed",
]
