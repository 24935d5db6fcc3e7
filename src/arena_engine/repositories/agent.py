import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Database
from ..models.agent import Agent
from ..utils import utc_now

logger = logging.getLogger(__name__)


class AgentRepository:
    def __init__(self, database: Database):
        self.database = database

    async def create(self, agent: Agent, session: Optional[AsyncSession] = None) -> Agent:
        async with self.database.session_scope(session) as s:
            s.add(agent)
            await s.flush()
            return agent

    async def find_by_id(self, agent_id: str) -> Optional[Agent]:
        async with self.database.session_scope() as s:
            return await s.get(Agent, agent_id, populate_existing=True)

    async def find_by_ids(self, agent_ids: Sequence[str],
                          session: Optional[AsyncSession] = None) -> List[Agent]:
        if not agent_ids:
            return []
        async with self.database.session_scope(session) as s:
            result = await s.execute(select(Agent).where(Agent.id.in_(list(agent_ids))))
            return list(result.scalars().all())

    async def update_global_scores(self, scores: Dict[str, float], session: AsyncSession) -> int:
        """Write new global skill scores for the given agents inside the caller's transaction."""
        now = utc_now()
        for agent_id, score in scores.items():
            await session.execute(
                update(Agent)
                .where(Agent.id == agent_id)
                .values(global_score=score, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        logger.debug(f"Updated global scores for {len(scores)} agents")
        return len(scores)
