"""
Candle Aggregation Service

Subscribes to tick, market data and execution messages from NATS,
aggregates them into candles and publishes live and finalized candles
back to NATS. Also serves the status API in the same event loop.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import uvicorn

from dataflow.adapters.nats_client import NatsClient, NatsConfig, Topics
from dataflow.query.api.main import create_app
from schemas.market_data import Candlestick, InvalidTickError, Quote, Tick, to_epoch_ms

from .aggregator import CandleAggregator
from .config import AggregationConfig
from .registry import Subscription
from .scheduler import wall_clock_ms

logger = logging.getLogger(__name__)


def _normalize_side(side: Any) -> Optional[str]:
    if isinstance(side, str) and side.lower() in ("buy", "sell"):
        return side.lower()
    return None


def _message_timestamp(data: dict) -> int:
    timestamp = data.get("timestamp")
    if timestamp is None:
        return wall_clock_ms()
    return to_epoch_ms(timestamp)


def _has_price(price: Any) -> bool:
    if price is None:
        return False
    if isinstance(price, (int, float)) and not isinstance(price, bool):
        return price > 0
    # Let validation reject anything else
    return True


def tick_from_message(data: dict) -> Optional[Tick]:
    """
    Convert a decoded bus message into a Tick.

    Supported shapes (optionally wrapped in {"payload": ...}):
    - raw tick: {symbol, price, timestamp, volume?, bid?, ask?, side?}
    - market data: {instrument, type: QUOTE|TRADE|DEPTH, data: {...}}
    - order execution: {instrument|symbol, price, quantity, side?, timestamp?}

    Returns:
        Tick, or None for messages that carry no usable price

    Raises:
        InvalidTickError: Message is missing required fields or has a
            bad timestamp
    """
    if not isinstance(data, dict):
        raise InvalidTickError(f"Expected a JSON object, got {type(data).__name__}")

    if isinstance(data.get("payload"), dict):
        data = data["payload"]

    symbol = data.get("instrument") or data.get("symbol")

    if "type" in data and isinstance(data.get("data"), dict):
        kind = str(data["type"]).upper()
        price_data = data["data"]

        if kind == "QUOTE":
            bid, ask = price_data.get("bid"), price_data.get("ask")
            if not (_has_price(bid) and _has_price(ask)):
                return None
            quote = Quote(
                symbol=symbol,
                timestamp=_message_timestamp(price_data),
                bid=bid,
                ask=ask,
            )
            return quote.to_tick()

        if kind == "TRADE":
            price = price_data.get("price")
            if not _has_price(price):
                return None
            return Tick(
                symbol=symbol,
                price=price,
                timestamp=_message_timestamp(price_data),
                volume=price_data.get("size") or 0.0,
                bid=price_data.get("bid"),
                ask=price_data.get("ask"),
                side=_normalize_side(price_data.get("side")),
            )

        if kind == "DEPTH":
            logger.debug(f"Depth update for {symbol} skipped")
        else:
            logger.warning(f"Unknown market data type: {kind}")
        return None

    if "quantity" in data:
        price = data.get("price")
        if not _has_price(price) or not data.get("quantity"):
            return None
        return Tick(
            symbol=symbol,
            price=price,
            timestamp=_message_timestamp(data),
            volume=data["quantity"],
            side=_normalize_side(data.get("side")),
        )

    if not _has_price(data.get("price")):
        return None
    tick_data = dict(data)
    tick_data["symbol"] = symbol
    tick_data["timestamp"] = _message_timestamp(data)
    tick_data["side"] = _normalize_side(data.get("side"))
    return Tick.from_dict(tick_data)


class CandleAggregationService:
    """
    Bridges NATS and the CandleAggregator.

    The first valid tick for a symbol registers publish callbacks for
    every configured timeframe. Finalized candles go to
    candles.{symbol}.{tf}; live candles to candles_live.{symbol}.{tf}.
    """

    def __init__(
        self,
        nats_client: NatsClient,
        aggregator: CandleAggregator,
        config: Optional[AggregationConfig] = None,
    ):
        self.nats = nats_client
        self.aggregator = aggregator
        self.config = config or AggregationConfig()
        self._symbol_subscriptions: Dict[str, List[Subscription]] = {}

        # Metrics
        self._messages_received = 0
        self._messages_ignored = 0
        self._messages_failed = 0
        self._candles_published = 0
        self._publish_failures = 0

    async def start(self) -> None:
        """Subscribe to the configured NATS subjects"""
        logger.info(f"Starting candle aggregator for timeframes: {self.config.timeframes}")

        subjects = [
            self.config.tick_subject,
            self.config.market_data_subject,
            self.config.executions_subject,
        ]
        for subject in dict.fromkeys(s for s in subjects if s):
            await self.nats.subscribe(subject, self._handle_message, queue=self.config.queue_group)

        logger.info("Candle aggregator started")

    async def stop(self) -> None:
        """Stop consuming, publish any remaining candles and drop all state"""
        await self.nats.unsubscribe_all()

        self.aggregator.finalize_all()
        await self.aggregator.registry.drain()

        for subscriptions in self._symbol_subscriptions.values():
            for subscription in subscriptions:
                subscription.unsubscribe()
        self._symbol_subscriptions.clear()

        self.aggregator.clear_all()
        logger.info("Candle aggregator stopped")

    async def _handle_message(self, msg) -> None:
        """Handle incoming NATS message"""
        try:
            data = json.loads(msg.data.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self._messages_received += 1
            self._messages_failed += 1
            logger.error(f"Failed to parse message on {msg.subject}: {e}")
            return

        self.handle_data(data)

    def handle_data(self, data: Any) -> int:
        """
        Convert one decoded message and feed it to the aggregator.

        Returns:
            Number of timeframes the resulting tick was applied to
        """
        self._messages_received += 1

        try:
            tick = tick_from_message(data)
            if tick is None:
                self._messages_ignored += 1
                return 0
            tick.validate()
        except (InvalidTickError, TypeError) as e:
            self._messages_failed += 1
            logger.warning(f"Rejected message: {e}")
            return 0

        self._ensure_symbol(tick.symbol)
        logger.debug(f"Received tick: {tick.symbol} @ {tick.price}")
        return self.aggregator.process_tick(tick, self.config.timeframes)

    def _ensure_symbol(self, symbol: str) -> None:
        subscriptions = self._symbol_subscriptions.get(symbol)
        if subscriptions and all(s.active for s in subscriptions):
            return

        self._symbol_subscriptions[symbol] = [
            self.aggregator.subscribe(symbol, timeframe, self._publish_candle)
            for timeframe in self.config.timeframes
        ]
        logger.info(f"Tracking {symbol} on {self.config.timeframes}")

    async def _publish_candle(self, candle: Candlestick) -> None:
        """Publish a live or finalized candle to NATS"""
        if candle.complete:
            topic = Topics.candles(candle.symbol, candle.timeframe)
        elif self.config.publish_live:
            topic = Topics.candles_live(candle.symbol, candle.timeframe)
        else:
            return

        if not self.nats.is_connected:
            logger.debug(f"NATS not connected - candle for {topic} dropped")
            return

        try:
            await self.nats.publish_json(topic, candle.to_json())
        except Exception as e:
            self._publish_failures += 1
            logger.error(f"Failed to publish candle to {topic}: {e}")
            return

        self._candles_published += 1
        if candle.complete:
            logger.info(
                f"Published candle: {candle.symbol} {candle.timeframe} "
                f"O={candle.open:.2f} H={candle.high:.2f} "
                f"L={candle.low:.2f} C={candle.close:.2f} "
                f"V={candle.volume:.0f} trades={candle.trades}"
            )

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get service metrics.

        Returns:
            Aggregator stats plus message and publish counters
        """
        return {
            **self.aggregator.get_stats(),
            "symbols_tracked": len(self._symbol_subscriptions),
            "messages_received": self._messages_received,
            "messages_ignored": self._messages_ignored,
            "messages_failed": self._messages_failed,
            "candles_published": self._candles_published,
            "publish_failures": self._publish_failures,
        }


async def main():
    """
    Main entry point.

    Environment Variables:
        AGGREGATOR_CONFIG: Optional YAML config path
        TIMEFRAMES: Comma-separated timeframes (default: "1m,5m,15m")
        NATS_SERVERS: NATS server URLs (default: "nats://localhost:4222")
        HOST / PORT: Status API bind address (default: 0.0.0.0:8002)
    """
    config = AggregationConfig.load()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    nats_client = NatsClient(NatsConfig.from_env())
    aggregator = CandleAggregator(
        default_timeframe=config.default_timeframe,
        max_ticks_per_buffer=config.max_ticks_per_buffer,
    )
    service = CandleAggregationService(nats_client, aggregator, config)

    try:
        await nats_client.connect()
        await service.start()

        if config.api_enabled:
            logger.info(f"Starting status API on {config.api_host}:{config.api_port}")
            app = create_app(aggregator, nats_client)
            server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=config.api_host,
                    port=config.api_port,
                    log_level=config.log_level.lower(),
                )
            )
            await server.serve()
        else:
            logger.info("Candle aggregator running. Press Ctrl+C to stop.")
            while True:
                await asyncio.sleep(60)
                metrics = service.get_metrics()
                logger.info(
                    f"Metrics: {metrics['buffer_count']} buffers, "
                    f"{metrics['timer_count']} timers, "
                    f"{metrics['candles_published']} candles published"
                )
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        await service.stop()
        await nats_client.close()


def run() -> None:
    """Console script entry point"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
