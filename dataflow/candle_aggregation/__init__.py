"""
Candle Aggregation

Aggregates ticks into live and finalized candles.
Supports multiple timeframes: 1m, 5m, 15m, 30m, 1h, 4h, 1d.
"""

from .aggregator import CandleAggregator
from .buffers import CandleBuffer, CandleBufferStore, CandleKey
from .config import AggregationConfig
from .registry import Subscription, SubscriptionRegistry
from .scheduler import CompletionScheduler
from .timeframes import TIMEFRAMES, DEFAULT_TIMEFRAME, UnknownTimeframeError

__all__ = [
    "CandleAggregator",
    "CandleBuffer",
    "CandleBufferStore",
    "CandleKey",
    "AggregationConfig",
    "Subscription",
    "SubscriptionRegistry",
    "CompletionScheduler",
    "TIMEFRAMES",
    "DEFAULT_TIMEFRAME",
    "UnknownTimeframeError",
]
