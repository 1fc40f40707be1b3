"""
Main entry point for the rewards scheduler service.
"""

import asyncio
import signal

import structlog

from reward_settlement.core.config import load_protocol_config, settings
from reward_settlement.core.database import close_database, init_database
from reward_settlement.core.logging import setup_logging
from reward_settlement.services.chain_reader import ChainReader
from reward_settlement.services.historic_price import HistoricPrice
from reward_settlement.services.rewards import RewardsProcessor
from reward_settlement.services.rewards.database import RewardsRepository
from .rewards_scheduler import RewardsScheduler

logger = structlog.get_logger(__name__)


async def main():
    """Run the rewards scheduler until SIGINT or SIGTERM."""
    setup_logging(settings.log_file)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    try:
        await init_database()

        processor = RewardsProcessor(
            config=load_protocol_config(),
            store=RewardsRepository(),
            chain=ChainReader(),
            price_oracle=HistoricPrice(),
        )
        async with RewardsScheduler(processor=processor):
            logger.info("Rewards scheduler service started", environment=settings.environment)
            await stop_event.wait()
            logger.info("Shutdown signal received")
    except Exception as e:
        logger.error("Scheduler service failed", error=str(e))
        raise
    finally:
        await close_database()
        logger.info("Scheduler service stopped")


if __name__ == "__main__":
    asyncio.run(main())
