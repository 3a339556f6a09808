"""
Aggregation Config

Settings for the candle aggregation service, loaded from environment
variables or a YAML file.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .buffers import DEFAULT_MAX_TICKS
from .timeframes import DEFAULT_TIMEFRAME, TIMEFRAMES

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class AggregationConfig(BaseModel):
    """Candle aggregation service configuration"""
    timeframes: List[str] = Field(default_factory=lambda: ["1m", "5m", "15m"])
    default_timeframe: str = DEFAULT_TIMEFRAME
    max_ticks_per_buffer: int = Field(default=DEFAULT_MAX_TICKS, ge=0)
    publish_live: bool = True

    # NATS subjects to consume
    tick_subject: str = "ticks.raw.*"
    market_data_subject: str = "market.data.>"
    executions_subject: str = "orders.executions"
    queue_group: Optional[str] = None

    # Status API
    api_enabled: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8002, ge=1, le=65535)

    log_level: str = "INFO"

    @field_validator("timeframes")
    @classmethod
    def _check_timeframes(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("At least one timeframe is required")
        unknown = [tf for tf in value if tf not in TIMEFRAMES]
        if unknown:
            raise ValueError(
                f"Invalid timeframes {unknown}. Must be one of: {list(TIMEFRAMES.keys())}"
            )
        # Keep order, drop duplicates
        return list(dict.fromkeys(value))

    @field_validator("default_timeframe")
    @classmethod
    def _check_default_timeframe(cls, value: str) -> str:
        if value not in TIMEFRAMES:
            raise ValueError(
                f"Invalid timeframe '{value}'. Must be one of: {list(TIMEFRAMES.keys())}"
            )
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in LOG_LEVELS:
            raise ValueError(f"Invalid log level '{value}'. Must be one of: {list(LOG_LEVELS)}")
        return value

    @classmethod
    def from_env(cls, prefix: str = "AGGREGATOR") -> "AggregationConfig":
        """
        Create config from environment variables.

        TIMEFRAMES (unprefixed) is honoured as well as {prefix}_TIMEFRAMES.
        Unset variables keep their defaults.
        """
        env = {
            "timeframes": os.getenv(f"{prefix}_TIMEFRAMES", os.getenv("TIMEFRAMES")),
            "default_timeframe": os.getenv(f"{prefix}_DEFAULT_TIMEFRAME"),
            "max_ticks_per_buffer": os.getenv(f"{prefix}_MAX_TICKS_PER_BUFFER"),
            "publish_live": os.getenv(f"{prefix}_PUBLISH_LIVE"),
            "tick_subject": os.getenv(f"{prefix}_TICK_SUBJECT"),
            "market_data_subject": os.getenv(f"{prefix}_MARKET_DATA_SUBJECT"),
            "executions_subject": os.getenv(f"{prefix}_EXECUTIONS_SUBJECT"),
            "queue_group": os.getenv(f"{prefix}_QUEUE_GROUP"),
            "api_enabled": os.getenv(f"{prefix}_API_ENABLED"),
            "api_host": os.getenv("HOST"),
            "api_port": os.getenv("PORT"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        values = {k: v for k, v in env.items() if v is not None and v != ""}
        if "timeframes" in values:
            values["timeframes"] = [tf.strip() for tf in values["timeframes"].split(",") if tf.strip()]
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Path) -> "AggregationConfig":
        """
        Load config from a YAML file.

        Raises:
            ValueError: If the file is missing or invalid
        """
        path = Path(path)
        if not path.exists():
            raise ValueError(f"Config file not found: {path}")

        try:
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
            config = cls(**raw)
        except Exception as e:
            logger.error(f"Failed to load {path}: {e}")
            raise ValueError(f"Failed to load {path}: {e}")

        logger.info(f"Loaded aggregation config from {path}: timeframes={config.timeframes}")
        return config

    @classmethod
    def load(cls) -> "AggregationConfig":
        """Load from AGGREGATOR_CONFIG if set, else from the environment"""
        config_path = os.getenv("AGGREGATOR_CONFIG")
        if config_path:
            return cls.from_yaml(Path(config_path))
        return cls.from_env()
