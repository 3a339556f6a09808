"""
Candle Buffer Store

Mutable per-(symbol, timeframe) accumulators for the window currently
being built. A buffer is replaced, never reused, when a tick arrives at
or past its window end.
"""

import logging
from collections import deque
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from schemas.market_data import Tick, Candlestick

from .timeframes import window_bounds

logger = logging.getLogger(__name__)

DEFAULT_MAX_TICKS = 10_000


class CandleKey(NamedTuple):
    """Composite key for buffers, timers and subscriptions"""
    symbol: str
    timeframe: str


class CandleBuffer:
    """Builds a candle from incoming ticks"""

    def __init__(
        self,
        symbol: str,
        timeframe: str,
        start_time: int,
        end_time: int,
        max_ticks: int = DEFAULT_MAX_TICKS,
    ):
        self.symbol = symbol
        self.timeframe = timeframe
        self.start_time = start_time
        self.end_time = end_time
        self.open: Optional[float] = None
        self.high: Optional[float] = None
        self.low: Optional[float] = None
        self.close: Optional[float] = None
        self.volume: float = 0.0
        self.trades: int = 0
        self.complete: bool = False
        # Raw ticks kept for reprocessing only; never used for output
        self.ticks: deque = deque(maxlen=max_ticks)

    @property
    def key(self) -> CandleKey:
        return CandleKey(self.symbol, self.timeframe)

    def add_tick(self, tick: Tick) -> None:
        """Add a tick to this candle"""
        price = tick.price

        if self.open is None:
            self.open = price
            self.high = price
            self.low = price

        self.high = max(self.high, price)
        self.low = min(self.low, price)
        self.close = price
        self.volume += tick.volume
        self.trades += 1
        self.ticks.append(tick)

    def is_empty(self) -> bool:
        """Check if candle has any data"""
        return self.open is None

    def contains(self, timestamp: int) -> bool:
        return self.start_time <= timestamp < self.end_time

    def finalize(self) -> bool:
        """
        Mark the window complete.

        Returns:
            True if this call finalized the buffer, False if it was already
            complete or never absorbed a tick
        """
        if self.complete or self.is_empty():
            return False
        self.complete = True
        return True

    def snapshot(self, complete: Optional[bool] = None) -> Candlestick:
        """Build an immutable Candlestick from the current state"""
        if self.is_empty():
            raise ValueError("Cannot build empty candle")

        return Candlestick(
            symbol=self.symbol,
            timeframe=self.timeframe,
            timestamp=self.start_time,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
            trades=self.trades,
            complete=self.complete if complete is None else complete,
        )

    def __repr__(self) -> str:
        return (
            f"CandleBuffer({self.symbol} {self.timeframe} "
            f"[{self.start_time}, {self.end_time}) trades={self.trades} "
            f"complete={self.complete})"
        )


class CandleBufferStore:
    """
    Owns every CandleBuffer, keyed by CandleKey.

    Example usage:
        store = CandleBufferStore()
        key = CandleKey("ES", "1m")

        buffer, completed = store.upsert(key, tick)
        if completed is not None:
            publish(completed.snapshot())
    """

    def __init__(self, max_ticks_per_buffer: int = DEFAULT_MAX_TICKS):
        self.max_ticks_per_buffer = max_ticks_per_buffer
        self._buffers: Dict[CandleKey, CandleBuffer] = {}

    def resolve_window(self, symbol: str, timeframe: str, timestamp: int) -> Tuple[int, int]:
        """Get the [start, end) window for a tick timestamp"""
        return window_bounds(timestamp, timeframe)

    def get(self, key: CandleKey) -> Optional[CandleBuffer]:
        return self._buffers.get(key)

    def upsert(
        self, key: CandleKey, tick: Tick
    ) -> Tuple[Optional[CandleBuffer], Optional[CandleBuffer]]:
        """
        Fold a tick into the buffer for key, rolling over when needed.

        Returns (current_buffer, completed_buffer_to_publish).
        current_buffer is None when the tick was dropped because its
        window has already been finalized.
        """
        existing = self._buffers.get(key)
        timestamp = tick.timestamp

        if existing is None or timestamp >= existing.end_time:
            completed = None
            if existing is not None and existing.finalize():
                completed = existing

            start, end = self.resolve_window(key.symbol, key.timeframe, timestamp)
            buffer = CandleBuffer(
                key.symbol, key.timeframe, start, end,
                max_ticks=self.max_ticks_per_buffer,
            )
            self._buffers[key] = buffer
            buffer.add_tick(tick)
            return buffer, completed

        if existing.complete:
            logger.warning(
                f"Dropping late tick for {key.symbol} {key.timeframe} at {timestamp}: "
                f"window {existing.start_time} already finalized"
            )
            return None, None

        if timestamp < existing.start_time:
            logger.debug(
                f"Late tick for {key.symbol} {key.timeframe} at {timestamp} "
                f"folded into window {existing.start_time}"
            )

        existing.add_tick(tick)
        return existing, None

    def remove(self, key: CandleKey) -> Optional[CandleBuffer]:
        return self._buffers.pop(key, None)

    def remove_symbol(self, symbol: str) -> List[CandleKey]:
        """Remove every buffer for a symbol, returning the removed keys"""
        keys = [key for key in self._buffers if key.symbol == symbol]
        for key in keys:
            del self._buffers[key]
        return keys

    def clear(self) -> None:
        self._buffers.clear()

    def keys(self) -> List[CandleKey]:
        return list(self._buffers.keys())

    def symbols(self) -> List[str]:
        return sorted({key.symbol for key in self._buffers})

    def __iter__(self) -> Iterator[CandleBuffer]:
        return iter(list(self._buffers.values()))

    def __len__(self) -> int:
        return len(self._buffers)

    def __contains__(self, key) -> bool:
        return key in self._buffers
