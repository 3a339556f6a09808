import asyncio

import pytest

from dataflow.candle_aggregation.buffers import CandleKey
from dataflow.candle_aggregation.registry import SubscriptionRegistry
from schemas.market_data import Candlestick
from tests.helpers.fakes import T0, Recorder

KEY = CandleKey("X", "1m")
CANDLE = Candlestick("X", "1m", T0, 10, 12, 9, 11, volume=7, trades=4)


@pytest.fixture
def registry():
    return SubscriptionRegistry()


def test_notify_reaches_every_callback(registry):
    first, second = Recorder(), Recorder()
    registry.subscribe(KEY, first)
    registry.subscribe(KEY, second)

    assert registry.notify(KEY, CANDLE) == 2
    assert first.candles == [CANDLE]
    assert second.candles == [CANDLE]


def test_notify_other_key_is_isolated(registry):
    recorder = Recorder()
    registry.subscribe(KEY, recorder)
    assert registry.notify(CandleKey("X", "5m"), CANDLE) == 0
    assert registry.notify(CandleKey("Y", "1m"), CANDLE) == 0
    assert recorder.candles == []


def test_failing_callback_does_not_block_others(registry, caplog):
    recorder = Recorder()

    def broken(candle):
        raise RuntimeError("subscriber exploded")

    registry.subscribe(KEY, broken)
    registry.subscribe(KEY, recorder)

    assert registry.notify(KEY, CANDLE) == 1
    assert recorder.candles == [CANDLE]
    assert "subscriber exploded" in caplog.text


def test_duplicate_subscribe_is_deduplicated(registry):
    recorder = Recorder()
    first = registry.subscribe(KEY, recorder)
    second = registry.subscribe(KEY, recorder)

    assert first is second
    assert registry.callback_count() == 1
    registry.notify(KEY, CANDLE)
    assert len(recorder.candles) == 1


def test_unsubscribe_stops_delivery_and_removes_empty_key(registry):
    keep, drop = Recorder(), Recorder()
    registry.subscribe(KEY, keep)
    subscription = registry.subscribe(KEY, drop)

    assert subscription.unsubscribe()
    assert not subscription.active
    registry.notify(KEY, CANDLE)
    assert drop.candles == []
    assert keep.candles == [CANDLE]
    assert registry.has_subscribers(KEY)

    registry.subscribe(KEY, keep).unsubscribe()
    assert not registry.has_subscribers(KEY)
    assert registry.keys() == []


def test_unsubscribe_is_idempotent(registry):
    subscription = registry.subscribe(KEY, Recorder())
    assert subscription.unsubscribe()
    assert not subscription.unsubscribe()
    assert registry.callback_count() == 0


def test_stale_handle_does_not_remove_newer_registration(registry):
    recorder = Recorder()
    old = registry.subscribe(KEY, recorder)
    old.unsubscribe()
    new = registry.subscribe(KEY, recorder)

    assert not registry.unsubscribe(old)
    assert new.active
    assert registry.callback_count(KEY) == 1


def test_subscription_context_manager(registry):
    recorder = Recorder()
    with registry.subscribe(KEY, recorder):
        registry.notify(KEY, CANDLE)
    registry.notify(KEY, CANDLE)
    assert len(recorder.candles) == 1
    assert registry.callback_count() == 0


def test_callback_may_unsubscribe_during_delivery(registry):
    recorder = Recorder()
    holder = {}

    def once(candle):
        holder["sub"].unsubscribe()

    holder["sub"] = registry.subscribe(KEY, once)
    registry.subscribe(KEY, recorder)

    assert registry.notify(KEY, CANDLE) == 2
    assert registry.notify(KEY, CANDLE) == 1
    assert len(recorder.candles) == 2


def test_non_callable_rejected(registry):
    with pytest.raises(TypeError):
        registry.subscribe(KEY, "not a function")


def test_remove_symbol_and_clear(registry):
    x1 = registry.subscribe(CandleKey("X", "1m"), Recorder())
    registry.subscribe(CandleKey("X", "5m"), Recorder())
    y1 = registry.subscribe(CandleKey("Y", "1m"), Recorder())

    assert registry.remove_symbol("X") == 2
    assert not x1.active
    assert registry.keys() == [CandleKey("Y", "1m")]

    registry.clear()
    assert not y1.active
    assert registry.callback_count() == 0


@pytest.mark.asyncio
async def test_async_callbacks_are_scheduled(registry, caplog):
    received = []

    async def good(candle):
        received.append(candle)

    async def bad(candle):
        raise RuntimeError("async subscriber exploded")

    registry.subscribe(KEY, bad)
    registry.subscribe(KEY, good)

    assert registry.notify(KEY, CANDLE) == 2
    await registry.drain()
    await asyncio.sleep(0)

    assert received == [CANDLE]
    assert "async subscriber exploded" in caplog.text
