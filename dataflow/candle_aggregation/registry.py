"""
Subscription Registry

Maps CandleKey to the callbacks interested in its candles.
Delivery to each callback is isolated: one failing callback never
blocks the others.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from schemas.market_data import Candlestick

from .buffers import CandleKey

logger = logging.getLogger(__name__)

CandleCallback = Callable[[Candlestick], Any]


class Subscription:
    """
    Handle returned by SubscriptionRegistry.subscribe.

    Call unsubscribe() (or leave a `with` block) to stop delivery.
    Unsubscribing twice is a no-op.
    """

    def __init__(self, registry: "SubscriptionRegistry", key: CandleKey, callback: CandleCallback):
        self._registry = registry
        self.key = key
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> bool:
        if not self.active:
            return False
        return self._registry.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        state = "active" if self.active else "inactive"
        return f"Subscription({self.key.symbol} {self.key.timeframe}, {state})"


class SubscriptionRegistry:
    """
    Multi-map from CandleKey to callbacks.

    Keys are created on first subscribe and removed as soon as their last
    callback goes away. Subscribing the same callback twice to a key
    returns the existing handle.

    Callbacks may be plain functions or coroutine functions; coroutines
    are scheduled as tasks on the running loop.
    """

    def __init__(self):
        self._callbacks: Dict[CandleKey, Dict[CandleCallback, Subscription]] = {}
        self._pending: set = set()

    def subscribe(self, key: CandleKey, callback: CandleCallback) -> Subscription:
        if not callable(callback):
            raise TypeError(f"Candle callback must be callable, got {type(callback)!r}")

        callbacks = self._callbacks.setdefault(key, {})
        existing = callbacks.get(callback)
        if existing is not None:
            return existing

        subscription = Subscription(self, key, callback)
        callbacks[callback] = subscription
        logger.debug(f"Subscribed callback to {key.symbol} {key.timeframe} ({len(callbacks)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription's callback.

        Returns:
            True if the callback was registered and has been removed
        """
        subscription.active = False
        callbacks = self._callbacks.get(subscription.key)
        if not callbacks or callbacks.get(subscription.callback) is not subscription:
            return False

        del callbacks[subscription.callback]
        if not callbacks:
            del self._callbacks[subscription.key]
        return True

    def notify(self, key: CandleKey, candle: Candlestick) -> int:
        """
        Deliver a candle to every callback registered for key.

        Returns:
            Number of callbacks that ran without raising
        """
        callbacks = self._callbacks.get(key)
        if not callbacks:
            return 0

        delivered = 0
        # Copy: callbacks may unsubscribe while we iterate
        for subscription in list(callbacks.values()):
            if not subscription.active:
                continue
            try:
                result = subscription.callback(candle)
                if inspect.isawaitable(result):
                    self._track(key, result)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Error in candle callback for {key.symbol} {key.timeframe}: {e}",
                    exc_info=True,
                )
        return delivered

    def _track(self, key: CandleKey, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RuntimeError("Async candle callback requires a running event loop") from None

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            error = t.exception()
            if error is not None:
                logger.error(
                    f"Error in async candle callback for {key.symbol} {key.timeframe}: {error}",
                    exc_info=error,
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for async callbacks still in flight"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def remove_symbol(self, symbol: str) -> int:
        """Drop every subscription for a symbol, returning how many were removed"""
        removed = 0
        for key in [k for k in self._callbacks if k.symbol == symbol]:
            for subscription in self._callbacks.pop(key).values():
                subscription.active = False
                removed += 1
        return removed

    def clear(self) -> None:
        for callbacks in self._callbacks.values():
            for subscription in callbacks.values():
                subscription.active = False
        self._callbacks.clear()

    def has_subscribers(self, key: CandleKey) -> bool:
        return key in self._callbacks

    def callback_count(self, key: Optional[CandleKey] = None) -> int:
        if key is not None:
            return len(self._callbacks.get(key, {}))
        return sum(len(callbacks) for callbacks in self._callbacks.values())

    def keys(self) -> List[CandleKey]:
        return list(self._callbacks.keys())
