"""
NATS Client Adapter

Async NATS client used by the candle aggregation service to consume
market data and publish live and finalized candles.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Optional, Awaitable, Any, Union
import nats
from nats.aio.client import Client as NatsConnection
from nats.aio.msg import Msg

logger = logging.getLogger(__name__)


@dataclass
class NatsConfig:
    """NATS connection configuration"""
    servers: list[str] = field(default_factory=lambda: ["nats://localhost:4222"])
    name: str = "candle-aggregator"
    reconnect_time_wait: float = 2.0
    max_reconnect_attempts: int = -1  # Infinite reconnects
    ping_interval: int = 20
    max_outstanding_pings: int = 3

    @classmethod
    def from_env(cls, prefix: str = "NATS") -> "NatsConfig":
        """Create config from environment variables"""
        defaults = cls()
        servers = os.getenv(f"{prefix}_SERVERS", "nats://localhost:4222")
        return cls(
            servers=[s.strip() for s in servers.split(",") if s.strip()],
            name=os.getenv(f"{prefix}_CLIENT_NAME", defaults.name),
            reconnect_time_wait=float(
                os.getenv(f"{prefix}_RECONNECT_TIME_WAIT", defaults.reconnect_time_wait)
            ),
            max_reconnect_attempts=int(
                os.getenv(f"{prefix}_MAX_RECONNECT_ATTEMPTS", defaults.max_reconnect_attempts)
            ),
        )


class NatsClient:
    """
    Async NATS client wrapper.

    Provides simplified pub/sub interface with automatic reconnection
    and error handling.

    Topic Patterns:
    - ticks.raw.{symbol}            - Raw ticks
    - market.data.{symbol}          - Wrapped quote/trade/depth messages
    - orders.executions             - Order fills
    - candles.{symbol}.{tf}         - Finalized candles
    - candles_live.{symbol}.{tf}    - In-progress candles
    """

    def __init__(self, config: Optional[NatsConfig] = None):
        self.config = config or NatsConfig()
        self._nc: Optional[NatsConnection] = None
        self._subscriptions: dict[str, Any] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if client is connected"""
        return self._connected and self._nc is not None and self._nc.is_connected

    async def connect(self) -> None:
        """Establish connection to NATS server"""
        if self._connected:
            return

        async def error_handler(e):
            logger.error(f"NATS error: {e}")

        async def closed_handler():
            logger.warning("NATS connection closed")
            self._connected = False

        async def reconnected_handler():
            logger.info("NATS reconnected")
            self._connected = True

        async def disconnected_handler():
            logger.warning("NATS disconnected")
            self._connected = False

        try:
            self._nc = await nats.connect(
                servers=self.config.servers,
                name=self.config.name,
                reconnect_time_wait=self.config.reconnect_time_wait,
                max_reconnect_attempts=self.config.max_reconnect_attempts,
                ping_interval=self.config.ping_interval,
                max_outstanding_pings=self.config.max_outstanding_pings,
                error_cb=error_handler,
                closed_cb=closed_handler,
                reconnected_cb=reconnected_handler,
                disconnected_cb=disconnected_handler,
            )
            self._connected = True
            logger.info(f"Connected to NATS: {self.config.servers}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def close(self) -> None:
        """Drain subscriptions and close the connection"""
        if self._nc:
            await self._nc.drain()
            await self._nc.close()
            self._subscriptions.clear()
            self._connected = False
            logger.info("NATS connection closed")

    async def publish(self, subject: str, data: bytes) -> None:
        """
        Publish data to a NATS subject.

        Args:
            subject: NATS subject (e.g., "candles.ES.1m")
            data: Bytes payload (typically JSON)
        """
        if not self.is_connected:
            raise RuntimeError("NATS client not connected")
        await self._nc.publish(subject, data)
        logger.debug(f"Published to {subject}: {len(data)} bytes")

    async def publish_json(self, subject: str, data: Union[str, dict]) -> None:
        """
        Publish JSON to a NATS subject.

        Args:
            subject: NATS subject
            data: JSON string, or a dict to serialize
        """
        if not isinstance(data, str):
            data = json.dumps(data)
        await self.publish(subject, data.encode("utf-8"))

    async def subscribe(
        self,
        subject: str,
        callback: Callable[[Msg], Awaitable[None]],
        queue: Optional[str] = None,
    ) -> None:
        """
        Subscribe to a NATS subject.

        Args:
            subject: NATS subject pattern (supports wildcards: *, >)
            callback: Async callback for received messages
            queue: Optional queue group for load balancing
        """
        if not self.is_connected:
            raise RuntimeError("NATS client not connected")

        if subject in self._subscriptions:
            logger.warning(f"Already subscribed to {subject}; replacing subscription")
            await self.unsubscribe(subject)

        if queue:
            sub = await self._nc.subscribe(subject, queue=queue, cb=callback)
        else:
            sub = await self._nc.subscribe(subject, cb=callback)

        self._subscriptions[subject] = sub
        logger.info(f"Subscribed to {subject}" + (f" (queue: {queue})" if queue else ""))

    async def unsubscribe(self, subject: str) -> None:
        """Unsubscribe from a subject"""
        if subject in self._subscriptions:
            await self._subscriptions.pop(subject).unsubscribe()
            logger.info(f"Unsubscribed from {subject}")

    async def unsubscribe_all(self) -> None:
        for subject in list(self._subscriptions):
            await self.unsubscribe(subject)


# Topic helpers
class Topics:
    """NATS topic name builders"""

    @staticmethod
    def _sanitize(name: str) -> str:
        """
        Sanitize a name for use in NATS topics.

        Topic segments may only contain alphanumerics, hyphens and
        underscores; anything else (including the dots in contract names
        like CON.F.US.MNQ.U25) becomes an underscore.
        """
        return "".join(c if c.isalnum() or c in "-_" else "_" for c in name)

    @staticmethod
    def candles(symbol: str, timeframe: str) -> str:
        """Finalized candle topic for a symbol and timeframe"""
        return f"candles.{Topics._sanitize(symbol)}.{timeframe}"

    @staticmethod
    def candles_live(symbol: str, timeframe: str) -> str:
        """In-progress candle topic for a symbol and timeframe"""
        return f"candles_live.{Topics._sanitize(symbol)}.{timeframe}"
