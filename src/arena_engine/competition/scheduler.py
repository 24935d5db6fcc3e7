import asyncio
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from ..perps.processor import PerpsDataProcessor
from ..repositories.competition import CompetitionRepository
from ..trading.snapshots import PortfolioSnapshotter
from .manager import CompetitionManager

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """Configuration for the competition scheduler"""

    # Scheduling intervals (seconds)
    lifecycle_check_interval: int = 60
    snapshot_interval: int = 300

    # Back-off after an unexpected loop error
    error_retry_interval: int = 60

    @classmethod
    def from_env(cls) -> 'SchedulerConfig':
        """Create configuration from environment variables"""
        return cls(
            lifecycle_check_interval=int(os.getenv('LIFECYCLE_CHECK_INTERVAL', 60)),
            snapshot_interval=int(os.getenv('SNAPSHOT_INTERVAL', 300)),
            error_retry_interval=int(os.getenv('SCHEDULER_ERROR_RETRY_INTERVAL', 60)),
        )


class CompetitionScheduler:
    """
    Periodic driver of the competition lifecycle.

    Two loops run while started: one ends competitions past their end date
    and starts the next due competition, the other records portfolio
    snapshots (spot) or syncs accounts (perps) for the active competition.
    """

    def __init__(self, manager: CompetitionManager, competitions: CompetitionRepository,
                 snapshotter: PortfolioSnapshotter,
                 perps_processor: Optional[PerpsDataProcessor] = None,
                 config: Optional[SchedulerConfig] = None):
        self.config = config or SchedulerConfig.from_env()
        self.manager = manager
        self.competitions = competitions
        self.snapshotter = snapshotter
        self.perps_processor = perps_processor
        self.is_running = False
        self.scheduler_tasks: List[asyncio.Task] = []

    async def start(self):
        """Start the scheduler loops"""
        if self.is_running:
            logger.warning("Competition scheduler is already running")
            return

        self.is_running = True
        logger.info("Starting competition scheduler")

        self.scheduler_tasks.append(asyncio.create_task(self._competition_lifecycle_loop()))
        self.scheduler_tasks.append(asyncio.create_task(self._snapshot_loop()))

        logger.info(f"Started {len(self.scheduler_tasks)} scheduler tasks")

    async def stop(self):
        """Stop the scheduler gracefully"""
        self.is_running = False
        logger.info("Stopping competition scheduler")

        for task in self.scheduler_tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"Error stopping scheduler task: {e}")

        self.scheduler_tasks.clear()
        logger.info("Competition scheduler stopped")

    async def run_lifecycle_checks(self):
        """One pass of scheduled ending and starting"""
        ended = await self.manager.process_competition_end_date_checks()
        if ended:
            logger.info(f"Ended {len(ended)} competitions past their end date")

        started = await self.manager.process_competition_start_date_checks()
        if started is not None:
            logger.info(f"Started scheduled competition {started.competition.id}")

    async def run_snapshot_round(self):
        """Snapshot or sync the active competition, if any"""
        competition = await self.competitions.find_active_competition()
        if competition is None:
            logger.debug("No active competition, skipping snapshot round")
            return

        if competition.is_perps:
            if self.perps_processor is None:
                logger.warning(f"No perps processor configured, cannot sync competition {competition.id}")
                return
            await self.perps_processor.process_perps_competition(competition.id)
        else:
            await self.snapshotter.take_portfolio_snapshots(competition.id)

    async def _competition_lifecycle_loop(self):
        while self.is_running:
            try:
                await self.run_lifecycle_checks()
                await asyncio.sleep(self.config.lifecycle_check_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in competition lifecycle loop: {e}")
                await asyncio.sleep(self.config.error_retry_interval)

    async def _snapshot_loop(self):
        while self.is_running:
            try:
                await self.run_snapshot_round()
                await asyncio.sleep(self.config.snapshot_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in snapshot loop: {e}")
                await asyncio.sleep(self.config.error_retry_interval)
