"""
Background worker running the competition scheduler.

Providers are plugged in by import path, each pointing at a zero-argument
factory returning the provider instance:

    PRICE_ORACLE=mypkg.prices:create_oracle          (required)
    PERPS_DATA_PROVIDER=mypkg.perps:create_provider  (optional)
    STAKE_PROVIDER=mypkg.stakes:create_provider      (optional)
"""

import asyncio
import importlib
import logging
import os
import signal
from typing import Any, Optional

from .competition.scheduler import SchedulerConfig
from .config import config
from .db import get_database
from .engine import ArenaEngine

logger = logging.getLogger(__name__)


def load_factory(path: Optional[str]) -> Optional[Any]:
    """Import ``module:attribute`` and call it; None when no path is configured."""
    if not path:
        return None
    module_name, _, attribute = path.partition(":")
    if not attribute:
        raise ValueError(f"Provider path must look like 'module:factory', got: {path}")
    factory = getattr(importlib.import_module(module_name), attribute)
    return factory()


async def run():
    oracle = load_factory(os.getenv("PRICE_ORACLE"))
    if oracle is None:
        raise ValueError("PRICE_ORACLE must name a price oracle factory")

    database = await get_database()
    engine = ArenaEngine(
        database,
        oracle,
        perps_provider=load_factory(os.getenv("PERPS_DATA_PROVIDER")),
        stake_provider=load_factory(os.getenv("STAKE_PROVIDER")),
        config=config,
    )
    scheduler = engine.create_scheduler(SchedulerConfig.from_env())

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Platforms without signal handler support fall back to KeyboardInterrupt
            pass

    await scheduler.start()
    logger.info(f"Arena engine worker running ({config.environment})")
    try:
        await stop_event.wait()
    finally:
        await scheduler.stop()
        await engine.close()


def main():
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Worker interrupted, shutting down")


if __name__ == "__main__":
    main()
