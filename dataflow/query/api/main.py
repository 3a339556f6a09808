"""
Status API

FastAPI application exposing the candle aggregator's state.

HTTP Endpoints:
- GET  /              - Health check
- GET  /health        - Detailed health status with aggregator stats
- GET  /stats         - Aggregator stats
- GET  /candles/{symbol}/{timeframe}/current  - Live candle
- GET  /candles/{symbol}/{timeframe}          - Candles held in memory
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from dataflow.adapters.nats_client import NatsClient
from dataflow.candle_aggregation.aggregator import CandleAggregator
from dataflow.candle_aggregation.timeframes import TIMEFRAMES, is_valid_timeframe
from schemas.market_data import Candlestick

logger = logging.getLogger(__name__)


# Response models (Pydantic)
class CandleResponse(BaseModel):
    """Single candle response"""
    symbol: str
    timeframe: str
    timestamp: int  # window start, epoch ms
    time: str  # ISO 8601
    open: float
    high: float
    low: float
    close: float
    volume: float
    trades: int
    complete: bool

    @classmethod
    def from_candle(cls, candle: Candlestick) -> "CandleResponse":
        return cls(**candle.to_dict())


class CandlesResponse(BaseModel):
    """Response containing multiple candles"""
    symbol: str
    timeframe: str
    count: int
    candles: list[CandleResponse]


class StatsResponse(BaseModel):
    """Aggregator statistics"""
    instrument_count: int
    instruments: list[str]
    buffer_count: int
    timer_count: int
    callback_count: int
    ticks_processed: int
    ticks_rejected: int
    late_ticks: int
    candles_completed: int


def _check_timeframe(timeframe: str) -> None:
    if not is_valid_timeframe(timeframe):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid timeframe '{timeframe}'. Must be one of: {list(TIMEFRAMES.keys())}"
        )


def create_app(
    aggregator: CandleAggregator,
    nats_client: Optional[NatsClient] = None,
) -> FastAPI:
    """
    Build the status API for an aggregator.

    Args:
        aggregator: Aggregator whose state is served
        nats_client: Optional NATS client, reported in /health
    """
    app = FastAPI(
        title="Candle Engine - Status API",
        description="Live candle state and aggregator health",
        version="1.0.0",
    )

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {
            "status": "running",
            "service": "candle-aggregator",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health")
    async def health():
        """Detailed health status"""
        return {
            "status": "healthy",
            "service": "candle-aggregator",
            "nats_connected": nats_client.is_connected if nats_client else False,
            "aggregator": aggregator.get_stats(),
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/stats")
    async def stats() -> StatsResponse:
        """Aggregator statistics"""
        return StatsResponse(**aggregator.get_stats())

    @app.get("/candles/{symbol}/{timeframe}/current")
    async def get_current_candle(symbol: str, timeframe: str) -> CandleResponse:
        """
        Fetch the in-progress candle for a symbol/timeframe.

        Raises:
            400: Invalid timeframe
            404: No live candle
        """
        _check_timeframe(timeframe)

        candle = aggregator.get_current_candle(symbol, timeframe)
        if candle is None:
            raise HTTPException(
                status_code=404,
                detail=f"No live candle for {symbol} {timeframe}"
            )
        return CandleResponse.from_candle(candle)

    @app.get("/candles/{symbol}/{timeframe}")
    async def get_candles(
        symbol: str,
        timeframe: str,
        limit: int = Query(default=100, ge=1, le=1000, description="Number of candles to fetch")
    ) -> CandlesResponse:
        """
        Fetch the last N candles held in memory for a symbol/timeframe.

        History is not retained by the aggregator, so the list may be
        empty.

        Raises:
            400: Invalid timeframe
        """
        _check_timeframe(timeframe)

        candles = [
            CandleResponse.from_candle(candle)
            for candle in aggregator.get_historical_candles(symbol, timeframe, limit)
        ]
        logger.debug(f"Fetched {len(candles)} candles for {symbol} {timeframe} (limit={limit})")

        return CandlesResponse(
            symbol=symbol,
            timeframe=timeframe,
            count=len(candles),
            candles=candles
        )

    return app
