"""
Perpetual futures competition processing.

One processing round syncs every active agent's account from the external
provider, records the equity as an account summary and a portfolio
snapshot, runs self-funding monitoring when the competition enables it and
refreshes risk metrics while the competition is active.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import Config
from ..errors import NotFoundError, ValidationError
from ..models.competition import CompetitionStatus
from ..models.perps import PerpsAccountSummary
from ..models.trading import PortfolioSnapshot
from ..monitoring.self_funding import MonitoredAgent, MonitoringResult, SelfFundingMonitor
from ..repositories.agent import AgentRepository
from ..repositories.competition import CompetitionRepository
from ..repositories.perps import PerpsRepository
from ..repositories.snapshot import SnapshotRepository
from ..risk.metrics import RiskMetricsCalculator
from ..utils import as_utc, utc_now
from .provider import AccountSummary, PerpsDataProvider

logger = logging.getLogger(__name__)


@dataclass
class PerpsProcessingResult:
    synced: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    account_summaries: Dict[str, AccountSummary] = field(default_factory=dict)
    monitoring: Optional[MonitoringResult] = None
    risk_metrics_calculated: int = 0
    risk_metrics_failed: int = 0


class PerpsDataProcessor:
    """Syncs perps accounts and derives snapshots, alerts and risk metrics from them."""

    def __init__(self, competitions: CompetitionRepository, agents: AgentRepository,
                 perps: PerpsRepository, snapshots: SnapshotRepository,
                 provider: PerpsDataProvider, monitor: SelfFundingMonitor,
                 risk_calculator: RiskMetricsCalculator, config: Config):
        self.competitions = competitions
        self.agents = agents
        self.perps = perps
        self.snapshots = snapshots
        self.provider = provider
        self.monitor = monitor
        self.risk_calculator = risk_calculator
        self.concurrency = config.monitor_concurrency

    async def process_perps_competition(self, competition_id: str,
                                        skip_monitoring: bool = False) -> PerpsProcessingResult:
        """
        Run one processing round.

        Args:
            competition_id: Perpetual futures competition
            skip_monitoring: Sync only; used for the initial sync at start

        Returns:
            PerpsProcessingResult
        """
        competition = await self.competitions.find_by_id(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition {competition_id} not found")
        if not competition.is_perps:
            raise ValidationError(f"Competition {competition_id} is not a perpetual futures competition")

        perps_config = await self.perps.get_config(competition_id)
        if perps_config is None:
            raise NotFoundError(f"No perps configuration found for competition {competition_id}")

        threshold = perps_config.self_funding_threshold_usd
        run_monitoring = not skip_monitoring and threshold is not None and threshold >= 0

        start_date = as_utc(competition.start_date)
        if run_monitoring:
            if start_date is None:
                raise ValidationError(f"Competition {competition_id} has no start date, cannot process perps data")
            if start_date > utc_now():
                logger.warning(f"Competition {competition_id} hasn't started yet (starts {start_date.isoformat()})")
                return PerpsProcessingResult()

        result = await self.sync_agents(competition_id, perps_config.initial_capital)
        logger.info(
            f"Perps sync for competition {competition_id}: {len(result.synced)} successful, "
            f"{len(result.failed)} failed"
        )

        if run_monitoring and result.synced:
            agents = await self.agents.find_by_ids(result.synced)
            result.monitoring = await self.monitor.monitor_agents(
                [MonitoredAgent(agent_id=a.id, wallet_address=a.wallet_address) for a in agents],
                competition_id,
                start_date,
                perps_config.initial_capital,
                threshold,
                account_summaries=result.account_summaries,
            )

        if competition.status == CompetitionStatus.ACTIVE.value and result.synced:
            await self._calculate_risk_metrics(competition_id, result)

        return result

    async def sync_agents(self, competition_id: str, initial_capital: float) -> PerpsProcessingResult:
        """Fetch account summaries for all active agents with a wallet and store them."""
        result = PerpsProcessingResult()

        agent_ids = await self.competitions.get_agent_ids(competition_id)
        agents = await self.agents.find_by_ids(agent_ids)
        for agent in agents:
            if not agent.wallet_address:
                result.failed[agent.id] = "Agent has no wallet address"
        agents = [a for a in agents if a.wallet_address]
        if not agents:
            return result

        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch(wallet_address: str) -> AccountSummary:
            async with semaphore:
                return await self.provider.get_account_summary(wallet_address)

        outcomes = await asyncio.gather(*(fetch(a.wallet_address) for a in agents), return_exceptions=True)

        timestamp = utc_now()
        summaries = []
        snapshots = []
        for agent, outcome in zip(agents, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Failed to sync perps account for agent {agent.id}: {outcome}")
                result.failed[agent.id] = str(outcome) or type(outcome).__name__
                continue

            result.synced.append(agent.id)
            result.account_summaries[agent.id] = outcome
            summaries.append(PerpsAccountSummary(
                agent_id=agent.id,
                competition_id=competition_id,
                total_equity=outcome.total_equity,
                total_pnl=outcome.total_pnl,
                initial_capital=outcome.initial_capital if outcome.initial_capital is not None else initial_capital,
                timestamp=timestamp,
            ))
            snapshots.append(PortfolioSnapshot(
                agent_id=agent.id,
                competition_id=competition_id,
                total_value=outcome.total_equity,
                timestamp=timestamp,
            ))

        await self.perps.save_account_summaries(summaries)
        await self.snapshots.create_snapshots(snapshots)
        return result

    async def _calculate_risk_metrics(self, competition_id: str, result: PerpsProcessingResult) -> None:
        for agent_id in result.synced:
            snapshots = await self.snapshots.get_agent_snapshots(competition_id, agent_id)
            try:
                metrics = self.risk_calculator.calculate(snapshots)
            except ValidationError as e:
                logger.debug(f"Skipping risk metrics for agent {agent_id}: {e.message}")
                result.risk_metrics_failed += 1
                continue

            await self.perps.upsert_risk_metrics(competition_id, agent_id, metrics.to_dict())
            result.risk_metrics_calculated += 1

        logger.info(
            f"Risk metrics for competition {competition_id}: {result.risk_metrics_calculated} calculated, "
            f"{result.risk_metrics_failed} skipped"
        )
