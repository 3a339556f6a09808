import pytest

from dataflow.candle_aggregation.timeframes import (
    DEFAULT_TIMEFRAME,
    TIMEFRAMES,
    UnknownTimeframeError,
    duration_ms,
    is_valid_timeframe,
    window_bounds,
)
from tests.helpers.fakes import MINUTE, T0


def test_catalog_durations():
    assert duration_ms("1m") == 60_000
    assert duration_ms("5m") == 300_000
    assert duration_ms("1h") == 3_600_000
    assert duration_ms("4h") == 14_400_000
    assert duration_ms("1d") == 86_400_000
    assert DEFAULT_TIMEFRAME == "1m"
    assert set(TIMEFRAMES) == {"1m", "5m", "15m", "30m", "1h", "4h", "1d"}


@pytest.mark.parametrize("timeframe", ["2m", "", "1M", None])
def test_unknown_timeframe_rejected(timeframe):
    assert not is_valid_timeframe(timeframe)
    with pytest.raises(UnknownTimeframeError):
        duration_ms(timeframe)


def test_unknown_timeframe_is_value_error():
    with pytest.raises(ValueError, match="Invalid timeframe '7m'"):
        window_bounds(T0, "7m")


def test_window_is_floor_of_timestamp():
    assert window_bounds(T0, "1m") == (T0, T0 + MINUTE)
    assert window_bounds(T0 + 59_999, "1m") == (T0, T0 + MINUTE)
    assert window_bounds(T0 + MINUTE, "1m") == (T0 + MINUTE, T0 + 2 * MINUTE)


def test_window_same_for_any_timestamp_inside_it():
    for timeframe in TIMEFRAMES:
        start, end = window_bounds(T0 + 12_345, timeframe)
        assert start % duration_ms(timeframe) == 0
        assert start <= T0 + 12_345 < end
        # idempotent: the window of a window start is itself
        assert window_bounds(start, timeframe) == (start, end)
        assert window_bounds(end - 1, timeframe) == (start, end)


def test_window_deterministic():
    first = window_bounds(T0 + 30_000, "15m")
    second = window_bounds(T0 + 30_000, "15m")
    assert first == second
