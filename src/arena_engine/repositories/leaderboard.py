import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Database
from ..models.scoring import CompetitionLeaderboard, CompetitionReward
from ..utils import utc_now

logger = logging.getLogger(__name__)


class LeaderboardRepository:
    """Persisted final standings and the rewards attached to final ranks."""

    def __init__(self, database: Database):
        self.database = database

    async def get_leaderboard(self, competition_id: str,
                              session: Optional[AsyncSession] = None) -> List[CompetitionLeaderboard]:
        async with self.database.session_scope(session) as s:
            result = await s.execute(
                select(CompetitionLeaderboard)
                .where(CompetitionLeaderboard.competition_id == competition_id)
                .order_by(CompetitionLeaderboard.rank.asc())
            )
            return list(result.scalars().all())

    async def insert_leaderboard(self, rows: Sequence[CompetitionLeaderboard], session: AsyncSession) -> int:
        session.add_all(list(rows))
        await session.flush()
        logger.debug(f"Persisted {len(rows)} leaderboard rows")
        return len(rows)

    async def create_rewards(self, competition_id: str, rewards: Dict[int, float],
                             session: Optional[AsyncSession] = None) -> List[CompetitionReward]:
        async with self.database.session_scope(session) as s:
            rows = [
                CompetitionReward(competition_id=competition_id, rank=rank, reward=amount)
                for rank, amount in sorted(rewards.items())
            ]
            s.add_all(rows)
            await s.flush()
            return rows

    async def get_rewards(self, competition_id: str,
                          session: Optional[AsyncSession] = None) -> List[CompetitionReward]:
        async with self.database.session_scope(session) as s:
            result = await s.execute(
                select(CompetitionReward)
                .where(CompetitionReward.competition_id == competition_id)
                .order_by(CompetitionReward.rank.asc())
            )
            return list(result.scalars().all())

    async def assign_winners(self, competition_id: str, winners_by_rank: Dict[int, str],
                             session: AsyncSession) -> int:
        """Attach the agent holding each rewarded rank; ranks without a reward row are ignored."""
        assigned = 0
        now = utc_now()
        for rank, agent_id in winners_by_rank.items():
            result = await session.execute(
                update(CompetitionReward)
                .where(and_(
                    CompetitionReward.competition_id == competition_id,
                    CompetitionReward.rank == rank,
                ))
                .values(agent_id=agent_id, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            assigned += result.rowcount
        return assigned
