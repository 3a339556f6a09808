"""
Market Data Types

Core market data types used by the candle aggregation engine.
Timestamps are integer epoch milliseconds; these types are used for
NATS messaging and the status API.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Literal
import json
import math

TRADE_SIDES = ("buy", "sell")


class InvalidTickError(ValueError):
    """Raised when a tick fails validation at the ingestion boundary"""


def to_epoch_ms(value) -> int:
    """
    Coerce a timestamp into epoch milliseconds.

    Accepts epoch-ms numbers, ISO 8601 strings and datetimes
    (naive datetimes are taken as UTC).
    """
    if isinstance(value, bool):
        raise InvalidTickError(f"Unsupported timestamp: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise InvalidTickError(f"Timestamp must be finite, got {value}")
        return int(value)
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidTickError(f"Unsupported timestamp format: {value}") from None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    raise InvalidTickError(f"Unsupported timestamp type: {type(value)!r}")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class Tick:
    """Single observed market event for a symbol"""
    symbol: str
    price: float
    timestamp: int  # epoch milliseconds
    volume: float = 0.0
    bid: Optional[float] = None
    ask: Optional[float] = None
    side: Optional[Literal["buy", "sell"]] = None

    def validate(self) -> None:
        """
        Check the tick can be folded into a candle.

        Raises:
            InvalidTickError: Missing symbol, bad price, negative volume,
                bad timestamp or unknown side
        """
        if not isinstance(self.symbol, str) or not self.symbol.strip():
            raise InvalidTickError("Tick is missing a symbol")
        if not _is_number(self.price) or not math.isfinite(self.price) or self.price <= 0:
            raise InvalidTickError(f"Invalid price for {self.symbol}: {self.price!r}")
        if not _is_number(self.volume) or not math.isfinite(self.volume) or self.volume < 0:
            raise InvalidTickError(f"Invalid volume for {self.symbol}: {self.volume!r}")
        if not _is_number(self.timestamp) or not math.isfinite(self.timestamp) or self.timestamp < 0:
            raise InvalidTickError(f"Invalid timestamp for {self.symbol}: {self.timestamp!r}")
        if self.side is not None and self.side not in TRADE_SIDES:
            raise InvalidTickError(f"Invalid trade side for {self.symbol}: {self.side!r}")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Tick":
        """Create Tick from dictionary"""
        try:
            symbol = data["symbol"]
            price = data["price"]
            timestamp = data["timestamp"]
        except KeyError as e:
            raise InvalidTickError(f"Tick is missing field {e}") from None

        volume = data.get("volume")
        return cls(
            symbol=symbol,
            price=price,
            timestamp=to_epoch_ms(timestamp),
            volume=0.0 if volume is None else volume,
            bid=data.get("bid"),
            ask=data.get("ask"),
            side=data.get("side"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Tick":
        """Deserialize from JSON string"""
        return cls.from_dict(json.loads(json_str))


@dataclass(frozen=True)
class Candlestick:
    """OHLCV snapshot of one window, live or finalized"""
    symbol: str
    timeframe: str  # '1m', '5m', '15m', '1h', '1d', etc.
    timestamp: int  # window start, epoch milliseconds
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    trades: int = 0  # Number of ticks that formed this candle
    complete: bool = False

    @property
    def time(self) -> datetime:
        """Window start as a UTC datetime"""
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "timestamp": self.timestamp,
            "time": self.time.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "trades": self.trades,
            "complete": self.complete,
        }

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Candlestick":
        """Create Candlestick from dictionary"""
        return cls(
            symbol=data["symbol"],
            timeframe=data["timeframe"],
            timestamp=to_epoch_ms(data["timestamp"]),
            open=data["open"],
            high=data["high"],
            low=data["low"],
            close=data["close"],
            volume=data.get("volume", 0.0),
            trades=data.get("trades", 0),
            complete=data.get("complete", False),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Candlestick":
        """Deserialize from JSON string"""
        return cls.from_dict(json.loads(json_str))


@dataclass(frozen=True)
class Quote:
    """Bid/Ask quote data"""
    symbol: str
    timestamp: int
    bid: float
    ask: float

    @property
    def spread(self) -> float:
        """Calculate bid-ask spread"""
        return self.ask - self.bid

    @property
    def mid(self) -> float:
        """Calculate mid price"""
        return (self.bid + self.ask) / 2

    def to_tick(self) -> Tick:
        """Quote-only update: mid price, zero volume"""
        return Tick(
            symbol=self.symbol,
            price=self.mid,
            timestamp=self.timestamp,
            volume=0.0,
            bid=self.bid,
            ask=self.ask,
        )
