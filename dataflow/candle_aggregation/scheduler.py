"""
Completion Scheduler

One pending asyncio timer per CandleKey. A timer fires at its window's
end so quiet windows still get finalized without a rollover tick.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from .buffers import CandleKey

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[CandleKey, int], None]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class CompletionScheduler:
    """
    Schedules window completion callbacks on the event loop.

    Scheduling a key that already has a pending timer cancels the old one
    first, so there is never more than one timer per key.

    Example usage:
        scheduler = CompletionScheduler()
        scheduler.schedule(key, buffer.start_time, buffer.end_time, on_expire)

        # on_expire(key, window_start) runs once the window end is reached
    """

    def __init__(
        self,
        clock: Optional[Callable[[], int]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Args:
            clock: Returns the current time in epoch milliseconds
            loop: Event loop for timers (default: the running loop)
        """
        self.clock = clock or wall_clock_ms
        self._loop = loop
        self._timers: Dict[CandleKey, asyncio.TimerHandle] = {}

    def _resolve_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        if self._loop is not None:
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def schedule(
        self,
        key: CandleKey,
        window_start: int,
        window_end: int,
        on_expire: ExpiryCallback,
    ) -> bool:
        """
        Schedule on_expire(key, window_start) for window_end.

        Windows whose end is already behind the clock (replayed or
        delayed ticks) get no timer and are finalized by the next
        rollover tick instead.

        Returns:
            True if a timer was scheduled
        """
        self.cancel(key)

        loop = self._resolve_loop()
        if loop is None:
            logger.warning(
                f"No event loop for completion timer {key.symbol} {key.timeframe}; "
                f"window {window_start} will finalize on rollover"
            )
            return False

        remaining = window_end - self.clock()
        if remaining <= 0:
            logger.debug(
                f"Window {window_start} for {key.symbol} {key.timeframe} already ended; "
                f"it will finalize on rollover"
            )
            return False

        delay = remaining / 1000
        handle = loop.call_later(delay, self._fire, key, window_start, on_expire)
        self._timers[key] = handle
        logger.debug(f"Scheduled completion for {key.symbol} {key.timeframe} in {delay:.3f}s")
        return True

    def _fire(self, key: CandleKey, window_start: int, on_expire: ExpiryCallback) -> None:
        self._timers.pop(key, None)
        on_expire(key, window_start)

    def cancel(self, key: CandleKey) -> bool:
        """Cancel the pending timer for key, if any"""
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_symbol(self, symbol: str) -> int:
        """Cancel every timer for a symbol"""
        keys = [key for key in self._timers if key.symbol == symbol]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def cancel_all(self) -> int:
        count = len(self._timers)
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        return count

    def is_pending(self, key: CandleKey) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)
