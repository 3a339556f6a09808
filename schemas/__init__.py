"""
Candle Engine - Typed Message Catalog

Strongly-typed message schemas for ticks and candlesticks.
"""

from schemas.market_data import Tick, Candlestick, Quote, InvalidTickError

__all__ = [
    "Tick",
    "Candlestick",
    "Quote",
    "InvalidTickError",
]
