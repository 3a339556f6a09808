import math
from datetime import datetime, timezone

import pytest

from schemas.market_data import Candlestick, InvalidTickError, Quote, Tick
from tests.helpers.fakes import T0, make_tick


class TestTickValidation:

    def test_valid_tick(self):
        make_tick().validate()
        make_tick(volume=0.0).validate()
        make_tick(side="buy", bid=99.5, ask=100.5).validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"symbol": ""},
            {"symbol": "   "},
            {"symbol": None},
            {"price": 0},
            {"price": -1.0},
            {"price": math.nan},
            {"price": math.inf},
            {"price": "100"},
            {"volume": -0.5},
            {"volume": math.nan},
            {"timestamp": -1},
            {"timestamp": math.inf},
            {"side": "long"},
        ],
    )
    def test_malformed_tick_rejected(self, overrides):
        fields = {"symbol": "X", "price": 100.0, "timestamp": T0, "volume": 1.0}
        fields.update(overrides)
        with pytest.raises(InvalidTickError):
            Tick(**fields).validate()

    def test_tick_is_immutable(self):
        tick = make_tick()
        with pytest.raises(AttributeError):
            tick.price = 1.0


class TestTickSerialization:

    def test_from_dict_epoch_ms(self):
        tick = Tick.from_dict({"symbol": "ES", "price": 4500.25, "timestamp": T0, "volume": 3})
        assert tick.timestamp == T0
        assert tick.volume == 3
        assert tick.side is None

    def test_from_dict_iso_timestamp(self):
        tick = Tick.from_dict({"symbol": "ES", "price": 1.0, "timestamp": "2023-11-14T22:14:00Z"})
        assert tick.timestamp == T0

    def test_from_dict_datetime_timestamp(self):
        ts = datetime(2023, 11, 14, 22, 14, tzinfo=timezone.utc)
        assert Tick.from_dict({"symbol": "ES", "price": 1.0, "timestamp": ts}).timestamp == T0

    def test_missing_volume_defaults_to_zero(self):
        tick = Tick.from_dict({"symbol": "ES", "price": 1.0, "timestamp": T0, "volume": None})
        assert tick.volume == 0.0

    def test_missing_field(self):
        with pytest.raises(InvalidTickError, match="price"):
            Tick.from_dict({"symbol": "ES", "timestamp": T0})

    def test_bad_timestamp_string(self):
        with pytest.raises(InvalidTickError):
            Tick.from_dict({"symbol": "ES", "price": 1.0, "timestamp": "yesterday"})

    @pytest.mark.parametrize("timestamp", [math.inf, -math.inf, math.nan])
    def test_non_finite_timestamp(self, timestamp):
        with pytest.raises(InvalidTickError, match="finite"):
            Tick.from_dict({"symbol": "ES", "price": 1.0, "timestamp": timestamp})

    def test_json_roundtrip(self):
        tick = make_tick(bid=99.0, ask=101.0, side="sell")
        assert Tick.from_json(tick.to_json()) == tick


class TestCandlestick:

    def test_to_dict(self):
        candle = Candlestick(
            symbol="X", timeframe="1m", timestamp=T0,
            open=10, high=12, low=9, close=11, volume=7, trades=4, complete=True,
        )
        data = candle.to_dict()
        assert data["time"] == "2023-11-14T22:14:00+00:00"
        assert data["complete"] is True
        assert data["trades"] == 4
        assert Candlestick.from_dict(data) == candle

    def test_time_property(self):
        candle = Candlestick("X", "1m", T0, 1, 1, 1, 1)
        assert candle.time == datetime(2023, 11, 14, 22, 14, tzinfo=timezone.utc)
        assert candle.complete is False


def test_quote_to_tick_uses_mid_price():
    quote = Quote(symbol="ES", timestamp=T0, bid=99.0, ask=101.0)
    tick = quote.to_tick()
    assert quote.spread == 2.0
    assert tick.price == 100.0
    assert tick.volume == 0.0
    assert (tick.bid, tick.ask) == (99.0, 101.0)
