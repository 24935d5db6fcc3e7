import logging
from typing import Dict

from ..errors import NotFoundError
from ..models.competition import CompetitionStatus
from ..models.trading import PortfolioSnapshot
from ..repositories.competition import CompetitionRepository
from ..repositories.snapshot import SnapshotRepository
from ..utils import utc_now
from .balances import BalanceManager
from .prices import PriceOracle

logger = logging.getLogger(__name__)


class PortfolioSnapshotter:
    """
    Records the portfolio value of every active agent in a spot competition.

    Snapshots are the leaderboard's source of truth and the PnL baseline,
    so a snapshot round values all agents against one bulk price fetch
    and stamps them with the same timestamp.
    """

    def __init__(self, competitions: CompetitionRepository, snapshots: SnapshotRepository,
                 balances: BalanceManager, oracle: PriceOracle):
        self.competitions = competitions
        self.snapshots = snapshots
        self.balances = balances
        self.oracle = oracle

    async def take_portfolio_snapshots(self, competition_id: str, force: bool = False) -> Dict[str, float]:
        """
        Snapshot all active agents.

        Args:
            competition_id: Competition to snapshot
            force: Snapshot even when the competition is no longer active
                (initial and final rounds)

        Returns:
            Mapping of agent id to recorded total value
        """
        competition = await self.competitions.find_by_id(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition with ID {competition_id} not found")

        if competition.status != CompetitionStatus.ACTIVE.value and not force:
            logger.warning(
                f"Skipping snapshots for competition {competition_id} in status {competition.status}"
            )
            return {}

        if force and competition.status != CompetitionStatus.ACTIVE.value:
            logger.info(f"Taking forced snapshots for competition {competition_id} ({competition.status})")

        agent_ids = await self.competitions.get_agent_ids(competition_id)
        if not agent_ids:
            logger.info(f"No active agents to snapshot in competition {competition_id}")
            return {}

        values = await self.balances.get_portfolio_values(competition_id, agent_ids, self.oracle)
        timestamp = utc_now()
        await self.snapshots.create_snapshots([
            PortfolioSnapshot(
                agent_id=agent_id,
                competition_id=competition_id,
                timestamp=timestamp,
                total_value=value,
            )
            for agent_id, value in values.items()
        ])

        logger.info(f"Took {len(values)} portfolio snapshots for competition {competition_id}")
        return values
