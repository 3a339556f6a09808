"""
Test doubles for the candle engine: clock, candle recorder, NATS client.
"""

import json
from dataclasses import dataclass

from schemas.market_data import Tick

# 2023-11-14 22:14:00 UTC, aligned to a 1m boundary
T0 = 1_700_000_040_000
MINUTE = 60_000


class FakeClock:
    """Settable epoch-ms clock"""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now


class Recorder:
    """Candle callback that keeps everything it receives"""

    def __init__(self):
        self.candles = []

    def __call__(self, candle):
        self.candles.append(candle)

    @property
    def live(self):
        return [c for c in self.candles if not c.complete]

    @property
    def completed(self):
        return [c for c in self.candles if c.complete]


def make_tick(price=100.0, timestamp=T0, volume=1.0, symbol="X", **kwargs) -> Tick:
    return Tick(symbol=symbol, price=price, timestamp=timestamp, volume=volume, **kwargs)


@dataclass
class FakeMsg:
    subject: str
    data: bytes

    @classmethod
    def json(cls, subject: str, payload) -> "FakeMsg":
        return cls(subject=subject, data=json.dumps(payload).encode())


class FakeNatsClient:
    """In-memory stand-in for NatsClient"""

    def __init__(self, connected: bool = True, fail_publish: bool = False):
        self.connected = connected
        self.fail_publish = fail_publish
        self.subscriptions = {}
        self.published = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def subscribe(self, subject, callback, queue=None):
        self.subscriptions[subject] = (callback, queue)

    async def unsubscribe(self, subject):
        self.subscriptions.pop(subject, None)

    async def unsubscribe_all(self):
        self.subscriptions.clear()

    async def publish_json(self, subject, data):
        if self.fail_publish:
            raise RuntimeError("publish failed")
        self.published.append((subject, json.loads(data) if isinstance(data, str) else data))

    def published_to(self, prefix):
        return [payload for subject, payload in self.published if subject.startswith(prefix)]
