"""
Candle Aggregator

Aggregates ticks into candles for multiple symbols and timeframes.
Every tick emits a live candle; every window emits exactly one
finalized candle, either on rollover or when its completion timer fires.
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Any

from schemas.market_data import Tick, Candlestick

from .buffers import CandleBuffer, CandleBufferStore, CandleKey, DEFAULT_MAX_TICKS
from .registry import CandleCallback, Subscription, SubscriptionRegistry
from .scheduler import CompletionScheduler
from .timeframes import (
    DEFAULT_TIMEFRAME,
    UnknownTimeframeError,
    duration_ms,
    is_valid_timeframe,
)

logger = logging.getLogger(__name__)


class CandleAggregator:
    """
    Tick-to-candle aggregation engine.

    All methods are synchronous and meant to run on a single event loop
    thread: a tick's whole fan-out, including finalization and
    notification, completes before the next tick or timer runs.

    Example usage:
        aggregator = CandleAggregator()
        sub = aggregator.subscribe("ES", "1m", lambda candle: print(candle))

        aggregator.process_tick(tick, ["1m", "5m"])
        aggregator.get_current_candle("ES", "1m")

        sub.unsubscribe()
    """

    def __init__(
        self,
        default_timeframe: str = DEFAULT_TIMEFRAME,
        max_ticks_per_buffer: int = DEFAULT_MAX_TICKS,
        clock: Optional[Callable[[], int]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        if not is_valid_timeframe(default_timeframe):
            raise UnknownTimeframeError(default_timeframe)

        self.default_timeframe = default_timeframe
        self.buffers = CandleBufferStore(max_ticks_per_buffer=max_ticks_per_buffer)
        self.scheduler = CompletionScheduler(clock=clock, loop=loop)
        self.registry = SubscriptionRegistry()
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._ticks_processed = 0
        self._ticks_rejected = 0
        self._late_ticks = 0
        self._candles_completed = 0

    def process_tick(self, tick: Tick, timeframes: Optional[Iterable[str]] = None) -> int:
        """
        Fold a tick into every requested timeframe.

        Args:
            tick: Incoming tick
            timeframes: Timeframes to aggregate into (default: the
                aggregator's default timeframe)

        Returns:
            Number of timeframes the tick was applied to

        Raises:
            InvalidTickError: The tick is malformed; nothing was mutated
        """
        try:
            tick.validate()
        except ValueError:
            self._ticks_rejected += 1
            raise

        if timeframes is None:
            timeframes = [self.default_timeframe]
        elif isinstance(timeframes, str):
            timeframes = [timeframes]

        applied = 0
        seen = set()
        for timeframe in timeframes:
            if timeframe in seen:
                continue
            seen.add(timeframe)

            if not is_valid_timeframe(timeframe):
                logger.warning(f"Skipping unknown timeframe '{timeframe}' for {tick.symbol}")
                continue

            if self._aggregate_tick(tick, timeframe):
                applied += 1

        if applied:
            self._ticks_processed += 1
        return applied

    def _aggregate_tick(self, tick: Tick, timeframe: str) -> bool:
        key = CandleKey(tick.symbol, timeframe)
        previous = self.buffers.get(key)
        buffer, completed = self.buffers.upsert(key, tick)

        if buffer is None:
            self._late_ticks += 1
            return False

        if completed is not None:
            self.scheduler.cancel(key)
            self._emit_completed(completed)

        if buffer is not previous:
            self.scheduler.schedule(key, buffer.start_time, buffer.end_time, self._on_window_expired)

        self.registry.notify(key, buffer.snapshot(complete=False))
        return True

    def _on_window_expired(self, key: CandleKey, window_start: int) -> None:
        buffer = self.buffers.get(key)
        if buffer is None or buffer.start_time != window_start:
            logger.debug(
                f"Completion timer for {key.symbol} {key.timeframe} window {window_start} "
                f"is stale; skipping"
            )
            return

        if buffer.finalize():
            self._emit_completed(buffer)

    def _emit_completed(self, buffer: CandleBuffer) -> None:
        candle = buffer.snapshot(complete=True)
        self._candles_completed += 1
        logger.debug(
            f"Completed candle: {candle.symbol} {candle.timeframe} @ {candle.timestamp} "
            f"O={candle.open} H={candle.high} L={candle.low} C={candle.close} "
            f"V={candle.volume} trades={candle.trades}"
        )
        self.registry.notify(buffer.key, candle)

    def subscribe(self, symbol: str, timeframe: str, callback: CandleCallback) -> Subscription:
        """
        Subscribe to candle updates for a symbol and timeframe.

        Returns:
            Subscription handle; call unsubscribe() to stop delivery
        """
        if not is_valid_timeframe(timeframe):
            raise UnknownTimeframeError(timeframe)
        return self.registry.subscribe(CandleKey(symbol, timeframe), callback)

    def get_current_candle(self, symbol: str, timeframe: str) -> Optional[Candlestick]:
        """Get the live candle for a symbol and timeframe, or None"""
        buffer = self.buffers.get(CandleKey(symbol, timeframe))
        if buffer is None or buffer.is_empty() or buffer.complete:
            return None
        return buffer.snapshot(complete=False)

    def get_historical_candles(
        self, symbol: str, timeframe: str, limit: int = 100
    ) -> List[Candlestick]:
        """
        Get finished candles from memory.

        History is not retained, so this is always empty; arguments are
        still validated.
        """
        duration_ms(timeframe)
        if limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        return []

    def finalize_all(self) -> int:
        """
        Finalize every open window now and emit its completed candle.

        Used on shutdown so in-progress candles are not lost. Pending
        timers are cancelled; buffers stay in place until cleared.

        Returns:
            Number of candles finalized
        """
        self.scheduler.cancel_all()
        finalized = 0
        for buffer in list(self.buffers):
            if buffer.finalize():
                self._emit_completed(buffer)
                finalized += 1
        if finalized:
            logger.info(f"Finalized {finalized} open candles")
        return finalized

    def clear_symbol(self, symbol: str) -> None:
        """Drop all buffers, timers and subscriptions for a symbol"""
        timers = self.scheduler.cancel_symbol(symbol)
        buffers = self.buffers.remove_symbol(symbol)
        callbacks = self.registry.remove_symbol(symbol)
        logger.info(
            f"Cleared {symbol}: {len(buffers)} buffers, {timers} timers, {callbacks} callbacks"
        )

    def clear_all(self) -> None:
        """Reset to the initial empty state"""
        self.scheduler.cancel_all()
        self.buffers.clear()
        self.registry.clear()
        self._reset_counters()
        logger.info("Cleared all candle state")

    def get_stats(self) -> Dict[str, Any]:
        """
        Get aggregator statistics.

        Returns:
            Dictionary with buffer, timer and callback counts
        """
        instruments = self.buffers.symbols()
        return {
            "instrument_count": len(instruments),
            "instruments": instruments,
            "buffer_count": len(self.buffers),
            "timer_count": len(self.scheduler),
            "callback_count": self.registry.callback_count(),
            "ticks_processed": self._ticks_processed,
            "ticks_rejected": self._ticks_rejected,
            "late_ticks": self._late_ticks,
            "candles_completed": self._candles_completed,
        }
