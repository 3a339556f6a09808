"""
Timeframe Catalog

Fixed mapping of candle timeframe identifiers to their duration.
Window bucketing is floor division on epoch milliseconds.
"""

from typing import Tuple

# Supported timeframes (in seconds)
TIMEFRAMES = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "4h": 14400,
    "1d": 86400,
}

DEFAULT_TIMEFRAME = "1m"


class UnknownTimeframeError(ValueError):
    """Raised for a timeframe identifier not in TIMEFRAMES"""

    def __init__(self, timeframe):
        self.timeframe = timeframe
        super().__init__(
            f"Invalid timeframe '{timeframe}'. Must be one of: {list(TIMEFRAMES.keys())}"
        )


def is_valid_timeframe(timeframe: str) -> bool:
    return timeframe in TIMEFRAMES


def duration_ms(timeframe: str) -> int:
    """Duration of a timeframe in milliseconds"""
    try:
        return TIMEFRAMES[timeframe] * 1000
    except (KeyError, TypeError):
        raise UnknownTimeframeError(timeframe) from None


def window_bounds(timestamp: int, timeframe: str) -> Tuple[int, int]:
    """
    Get the [start, end) window containing a timestamp.

    Args:
        timestamp: Epoch milliseconds
        timeframe: Timeframe identifier (e.g. "1m")

    Returns:
        (start, end) in epoch milliseconds
    """
    duration = duration_ms(timeframe)
    start = (int(timestamp) // duration) * duration
    return start, start + duration
