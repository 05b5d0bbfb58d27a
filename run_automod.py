#!/usr/bin/env python3
"""
Entry point for running the channel automod worker with logging enabled.

Usage:
    python run_automod.py

Environment:
    - AUTOMOD_WARPCAST__API_KEY
    - AUTOMOD_NEYNAR__API_KEY / AUTOMOD_NEYNAR__SIGNER_UUID (warning replies)
    - AUTOMOD_CHAIN__RPC_URLS (JSON object, chain id -> RPC url)

The script loads configuration via AutomodSettings (reads .env by default),
starts the ModerationCoordinator and sweeps expired cooldowns once a minute
until Ctrl+C.
"""

import asyncio

import structlog

from channel_automod import ModerationCoordinator
from channel_automod.config import AutomodSettings

SWEEP_INTERVAL_SECONDS = 60

logger = structlog.get_logger("run_automod")


async def _main() -> None:
    settings = AutomodSettings()
    coordinator = ModerationCoordinator(settings)
    await coordinator.start()
    try:
        while True:
            ended = await coordinator.expire_cooldowns()
            logger.debug("cooldown_sweep", ended=ended)
            await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
    finally:
        await coordinator.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        print("\n\nAutomod shutdown requested by user.")
