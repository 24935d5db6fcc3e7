"""
Portfolio snapshot persistence.

Per-agent lookups (latest, earliest, as-of) are answered for a whole set of
agents with one windowed query each, never one query per agent.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Database
from ..models.trading import PortfolioSnapshot

logger = logging.getLogger(__name__)


class SnapshotRepository:
    def __init__(self, database: Database):
        self.database = database

    async def create_snapshots(self, snapshots: Sequence[PortfolioSnapshot],
                               session: Optional[AsyncSession] = None) -> int:
        if not snapshots:
            return 0
        async with self.database.session_scope(session) as s:
            s.add_all(list(snapshots))
            await s.flush()
        return len(snapshots)

    async def _ranked_snapshots(self, competition_id: str, agent_ids: Optional[Sequence[str]],
                                newest_first: bool,
                                before: Optional[datetime] = None) -> Dict[str, PortfolioSnapshot]:
        order = (
            (PortfolioSnapshot.timestamp.desc(), PortfolioSnapshot.id.desc())
            if newest_first else
            (PortfolioSnapshot.timestamp.asc(), PortfolioSnapshot.id.asc())
        )
        conditions = [PortfolioSnapshot.competition_id == competition_id]
        if agent_ids is not None:
            if not agent_ids:
                return {}
            conditions.append(PortfolioSnapshot.agent_id.in_(list(agent_ids)))
        if before is not None:
            conditions.append(PortfolioSnapshot.timestamp <= before)

        row_number = func.row_number().over(
            partition_by=PortfolioSnapshot.agent_id,
            order_by=order,
        ).label("rn")
        ranked = (
            select(PortfolioSnapshot.id.label("snapshot_id"), row_number)
            .where(and_(*conditions))
            .subquery()
        )

        async with self.database.session_scope() as s:
            result = await s.execute(
                select(PortfolioSnapshot)
                .join(ranked, ranked.c.snapshot_id == PortfolioSnapshot.id)
                .where(ranked.c.rn == 1)
            )
            return {snapshot.agent_id: snapshot for snapshot in result.scalars().all()}

    async def get_latest_snapshots(self, competition_id: str,
                                   agent_ids: Optional[Sequence[str]] = None) -> Dict[str, PortfolioSnapshot]:
        return await self._ranked_snapshots(competition_id, agent_ids, newest_first=True)

    async def get_earliest_snapshots(self, competition_id: str,
                                     agent_ids: Optional[Sequence[str]] = None) -> Dict[str, PortfolioSnapshot]:
        return await self._ranked_snapshots(competition_id, agent_ids, newest_first=False)

    async def get_snapshots_as_of(self, competition_id: str, agent_ids: Sequence[str],
                                  as_of: datetime) -> Dict[str, PortfolioSnapshot]:
        """Most recent snapshot per agent taken at or before ``as_of``"""
        return await self._ranked_snapshots(competition_id, agent_ids, newest_first=True, before=as_of)

    async def get_agent_snapshots(self, competition_id: str, agent_id: str) -> List[PortfolioSnapshot]:
        async with self.database.session_scope() as s:
            result = await s.execute(
                select(PortfolioSnapshot)
                .where(and_(
                    PortfolioSnapshot.competition_id == competition_id,
                    PortfolioSnapshot.agent_id == agent_id,
                ))
                .order_by(PortfolioSnapshot.timestamp.asc(), PortfolioSnapshot.id.asc())
            )
            return list(result.scalars().all())

    async def count_snapshots(self, competition_id: str) -> int:
        async with self.database.session_scope() as s:
            count = await s.scalar(
                select(func.count(PortfolioSnapshot.id))
                .where(PortfolioSnapshot.competition_id == competition_id)
            )
            return count or 0
