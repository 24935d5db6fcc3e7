"""
Engine container.

Builds repositories and services over one ``Database`` and owns the
shared caches. External providers (prices, perps accounts, stakes) are
passed in; everything else is constructed here.
"""

import logging
from typing import Optional

from .cache import TTLCache
from .competition.leaderboard import LeaderboardCalculator
from .competition.manager import CompetitionManager, StakeProvider
from .competition.scheduler import CompetitionScheduler, SchedulerConfig
from .config import Config, config as default_config
from .db import Database
from .monitoring.self_funding import SelfFundingMonitor
from .perps.processor import PerpsDataProcessor
from .perps.provider import PerpsDataProvider
from .repositories import (
    AgentRepository,
    BalanceRepository,
    CompetitionRepository,
    LeaderboardRepository,
    PerpsRepository,
    SnapshotRepository,
    TradingConstraintsRepository,
)
from .risk.metrics import RiskMetricsCalculator
from .trading.balances import BalanceManager
from .trading.constraints import TradingConstraintsService
from .trading.execution import TradeExecutionService
from .trading.prices import CachedPriceOracle, PriceOracle
from .trading.snapshots import PortfolioSnapshotter

logger = logging.getLogger(__name__)


class ArenaEngine:
    def __init__(self, database: Database, oracle: PriceOracle,
                 perps_provider: Optional[PerpsDataProvider] = None,
                 stake_provider: Optional[StakeProvider] = None,
                 config: Optional[Config] = None):
        self.config = config or default_config
        self.database = database

        self.constraints_cache = TTLCache(
            ttl_seconds=self.config.constraints_cache_ttl_seconds,
            max_size=self.config.constraints_cache_max_size,
        )
        self.price_cache: Optional[TTLCache] = None
        if self.config.price_cache_ttl_seconds > 0:
            self.price_cache = TTLCache(ttl_seconds=self.config.price_cache_ttl_seconds)
            oracle = CachedPriceOracle(oracle, self.price_cache)
        self.oracle = oracle

        # Repositories
        self.competition_repository = CompetitionRepository(database)
        self.agent_repository = AgentRepository(database)
        self.balance_repository = BalanceRepository(database)
        self.snapshot_repository = SnapshotRepository(database)
        self.leaderboard_repository = LeaderboardRepository(database)
        self.constraints_repository = TradingConstraintsRepository(database)
        self.perps_repository = PerpsRepository(database)

        # Services
        self.balances = BalanceManager(self.balance_repository, self.config)
        self.constraints = TradingConstraintsService(self.constraints_repository, self.config, self.constraints_cache)
        self.snapshotter = PortfolioSnapshotter(
            self.competition_repository, self.snapshot_repository, self.balances, oracle
        )
        self.trading = TradeExecutionService(
            self.competition_repository, self.balance_repository, self.balances,
            self.constraints, oracle, self.config,
        )
        self.leaderboard = LeaderboardCalculator(
            self.competition_repository, self.agent_repository, self.snapshot_repository,
            self.perps_repository, self.leaderboard_repository, self.balances, oracle,
        )

        self.monitor: Optional[SelfFundingMonitor] = None
        self.perps_processor: Optional[PerpsDataProcessor] = None
        if perps_provider is not None:
            self.monitor = SelfFundingMonitor(perps_provider, self.perps_repository, self.config)
            self.perps_processor = PerpsDataProcessor(
                self.competition_repository, self.agent_repository, self.perps_repository,
                self.snapshot_repository, perps_provider, self.monitor, RiskMetricsCalculator(), self.config,
            )

        self.manager = CompetitionManager(
            database, self.competition_repository, self.agent_repository, self.balances,
            self.constraints, self.snapshotter, self.leaderboard, self.leaderboard_repository,
            self.perps_repository, perps_processor=self.perps_processor, stake_provider=stake_provider,
            config=self.config,
        )

    def create_scheduler(self, scheduler_config: Optional[SchedulerConfig] = None) -> CompetitionScheduler:
        return CompetitionScheduler(
            self.manager, self.competition_repository, self.snapshotter,
            perps_processor=self.perps_processor, config=scheduler_config,
        )

    async def close(self):
        self.constraints_cache.clear()
        if self.price_cache is not None:
            self.price_cache.clear()
        await self.database.close()
        logger.info("Arena engine closed")
