#!/usr/bin/env python3
"""
shardline runner: connect one gateway session and log what arrives.

    SHARDLINE_TOKEN=... python -m shardline
"""

import asyncio
import logging

from .client import Client
from .config import ShardlineConfig, setup_logging
from .gateway.connection import GatewayCallback

logger = logging.getLogger("shardline")


async def run(config: ShardlineConfig) -> None:
    client = Client.from_config(config)

    async def on_event(name, data):
        logger.info(f"Event {name}")

    client.register_callback(GatewayCallback.EVENT, on_event)

    await client.start()
    try:
        await client.wait_until_ready()
        logger.info(f"Ready: {client.get_health()}")
        # Runs until interrupted or the session is lost for good
        while True:
            await asyncio.sleep(60)
            await client.wait_until_ready()
            logger.info(f"Health: {client.get_health()}")
    finally:
        await client.close()


def main() -> None:
    config = ShardlineConfig.from_env()
    setup_logging(config.log_level)
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
