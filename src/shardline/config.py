"""
Configuration management for shardline.

Loads environment variables (optionally from a .env file) into a flat,
typed configuration object shared by the REST dispatcher and the gateway
connection.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger("shardline.config")

DEFAULT_API_URL = "https://discord.com/api"
DEFAULT_API_VERSION = 10
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ShardlineConfig:
    """
    Client configuration loaded from environment variables.

    Simple, flat configuration structure with sensible defaults.
    """

    token: str

    # REST Configuration
    api_url: str = DEFAULT_API_URL
    api_version: int = DEFAULT_API_VERSION
    rest_max_retries: int = 3
    rest_timeout: float = 15.0
    global_rate: float = 50.0  # authenticated requests per second

    # Gateway Configuration
    gateway_url: Optional[str] = None  # None = ask GET /gateway/bot
    intents: int = 0
    shard_id: int = 0
    shard_count: int = 1
    compress: bool = False
    large_threshold: int = 50

    # Reconnect Configuration
    reconnect: bool = True
    max_reconnect_delay: float = 60.0

    # Logging Configuration
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "ShardlineConfig":
        """
        Load configuration from environment variables.

        Returns:
            ShardlineConfig instance

        Raises:
            ValueError: If required environment variables are missing
        """
        load_dotenv(dotenv_path=dotenv_path)

        token = os.environ.get("SHARDLINE_TOKEN")

        missing = []
        if not token:
            missing.append("SHARDLINE_TOKEN")
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        config = cls(
            token=token,
            api_url=os.environ.get("SHARDLINE_API_URL", DEFAULT_API_URL),
            api_version=int(os.environ.get("SHARDLINE_API_VERSION", str(DEFAULT_API_VERSION))),
            rest_max_retries=int(os.environ.get("SHARDLINE_REST_MAX_RETRIES", "3")),
            rest_timeout=float(os.environ.get("SHARDLINE_REST_TIMEOUT", "15.0")),
            global_rate=float(os.environ.get("SHARDLINE_GLOBAL_RATE", "50")),
            gateway_url=os.environ.get("SHARDLINE_GATEWAY_URL") or None,
            intents=int(os.environ.get("SHARDLINE_INTENTS", "0")),
            shard_id=int(os.environ.get("SHARDLINE_SHARD_ID", "0")),
            shard_count=int(os.environ.get("SHARDLINE_SHARD_COUNT", "1")),
            compress=os.environ.get("SHARDLINE_COMPRESS", "false").lower() == "true",
            reconnect=os.environ.get("SHARDLINE_RECONNECT", "true").lower() == "true",
            log_level=os.environ.get("SHARDLINE_LOG_LEVEL", "INFO").upper(),
        )

        if not 0 <= config.shard_id < config.shard_count:
            raise ValueError(
                f"Invalid shard {config.shard_id} for shard count {config.shard_count}"
            )

        logger.debug(
            f"Loaded config: api={config.api_url}/v{config.api_version}, "
            f"shard=[{config.shard_id}, {config.shard_count}], intents={config.intents}"
        )
        return config


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Set up logging configuration for shardline."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    return logging.getLogger("shardline")
