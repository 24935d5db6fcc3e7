"""
Competition persistence: competitions, status transitions and participation.

Every status transition is a single conditional UPDATE whose affected-row
count decides the winner. A transition method returns the updated
competition, or ``None`` when another caller got there first or the
competition was not in the expected prior state.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, update, and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Database
from ..errors import NotFoundError, OwnerAlreadyRegisteredError, ParticipantLimitReachedError
from ..models.agent import Agent
from ..models.competition import (
    Competition,
    CompetitionAgent,
    CompetitionStatus,
    ParticipationStatus,
)
from ..utils import utc_now

logger = logging.getLogger(__name__)


class CompetitionRepository:
    def __init__(self, database: Database):
        self.database = database

    async def create(self, competition: Competition, session: Optional[AsyncSession] = None) -> Competition:
        async with self.database.session_scope(session) as s:
            s.add(competition)
            await s.flush()
            logger.info(f"Created {competition.type} competition: {competition.name} ({competition.id})")
            return competition

    async def find_by_id(self, competition_id: str, session: Optional[AsyncSession] = None) -> Optional[Competition]:
        async with self.database.session_scope(session) as s:
            return await s.get(Competition, competition_id, populate_existing=True)

    async def find_active_competition(self, session: Optional[AsyncSession] = None) -> Optional[Competition]:
        async with self.database.session_scope(session) as s:
            return await s.scalar(
                select(Competition)
                .where(Competition.status == CompetitionStatus.ACTIVE.value)
                .limit(1)
            )

    async def find_competitions_needing_ending(self, now: Optional[datetime] = None) -> List[Competition]:
        """Active or ending competitions whose end date has passed"""
        now = now or utc_now()
        async with self.database.session_scope() as s:
            result = await s.execute(
                select(Competition)
                .where(and_(
                    Competition.status.in_([CompetitionStatus.ACTIVE.value, CompetitionStatus.ENDING.value]),
                    Competition.end_date.is_not(None),
                    Competition.end_date <= now,
                ))
                .order_by(Competition.end_date.asc())
            )
            return list(result.scalars().all())

    async def find_pending_due(self, now: Optional[datetime] = None) -> List[Competition]:
        """Pending competitions whose start date has passed, earliest first"""
        now = now or utc_now()
        async with self.database.session_scope() as s:
            result = await s.execute(
                select(Competition)
                .where(and_(
                    Competition.status == CompetitionStatus.PENDING.value,
                    Competition.start_date.is_not(None),
                    Competition.start_date <= now,
                ))
                .order_by(Competition.start_date.asc(), Competition.created_at.asc())
            )
            return list(result.scalars().all())

    # Status transitions

    async def mark_as_active(self, competition_id: str, start_date: Optional[datetime] = None) -> Optional[Competition]:
        """
        pending -> active.

        Returns None when the competition was not pending or another
        competition is already active (the single-active unique index).
        """
        try:
            async with self.database.get_session() as s:
                result = await s.execute(
                    update(Competition)
                    .where(and_(
                        Competition.id == competition_id,
                        Competition.status == CompetitionStatus.PENDING.value,
                    ))
                    .values(
                        status=CompetitionStatus.ACTIVE.value,
                        start_date=start_date or utc_now(),
                        updated_at=utc_now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                return await s.get(Competition, competition_id, populate_existing=True)
        except IntegrityError:
            logger.warning(f"Competition {competition_id} lost the race to become the active competition")
            return None

    async def mark_as_ending(self, competition_id: str) -> Optional[Competition]:
        """active -> ending; the end date is stamped with the moment ending began."""
        async with self.database.get_session() as s:
            now = utc_now()
            result = await s.execute(
                update(Competition)
                .where(and_(
                    Competition.id == competition_id,
                    Competition.status == CompetitionStatus.ACTIVE.value,
                ))
                .values(status=CompetitionStatus.ENDING.value, end_date=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            return await s.get(Competition, competition_id, populate_existing=True)

    async def mark_as_ended(self, competition_id: str, session: AsyncSession) -> Optional[Competition]:
        """ending -> ended, inside the caller's finalization transaction."""
        result = await session.execute(
            update(Competition)
            .where(and_(
                Competition.id == competition_id,
                Competition.status == CompetitionStatus.ENDING.value,
            ))
            .values(status=CompetitionStatus.ENDED.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return await session.get(Competition, competition_id, populate_existing=True)

    # Participation

    async def get_participation(self, competition_id: str, agent_id: str,
                                session: Optional[AsyncSession] = None) -> Optional[CompetitionAgent]:
        async with self.database.session_scope(session) as s:
            return await s.scalar(
                select(CompetitionAgent)
                .where(and_(
                    CompetitionAgent.competition_id == competition_id,
                    CompetitionAgent.agent_id == agent_id,
                ))
            )

    async def is_agent_active(self, competition_id: str, agent_id: str) -> bool:
        participation = await self.get_participation(competition_id, agent_id)
        return participation is not None and participation.is_active

    async def get_agent_ids(self, competition_id: str,
                            statuses: Sequence[str] = (ParticipationStatus.ACTIVE.value,),
                            session: Optional[AsyncSession] = None) -> List[str]:
        async with self.database.session_scope(session) as s:
            result = await s.execute(
                select(CompetitionAgent.agent_id)
                .where(and_(
                    CompetitionAgent.competition_id == competition_id,
                    CompetitionAgent.status.in_(list(statuses)),
                ))
                .order_by(CompetitionAgent.created_at.asc(), CompetitionAgent.id.asc())
            )
            return list(result.scalars().all())

    async def get_participations(self, competition_id: str,
                                 statuses: Optional[Sequence[str]] = None) -> List[CompetitionAgent]:
        async with self.database.session_scope() as s:
            query = select(CompetitionAgent).where(CompetitionAgent.competition_id == competition_id)
            if statuses:
                query = query.where(CompetitionAgent.status.in_(list(statuses)))
            result = await s.execute(query.order_by(CompetitionAgent.id.asc()))
            return list(result.scalars().all())

    async def add_agent(self, competition_id: str, agent_id: str) -> bool:
        """
        Register an agent, checking the participant limit and the
        one-agent-per-owner rule in the same transaction.

        Re-adding an agent that already has a participation row is a no-op
        and returns False.
        """
        async with self.database.get_session() as s:
            competition = await s.scalar(
                select(Competition).where(Competition.id == competition_id).with_for_update()
            )
            if competition is None:
                raise NotFoundError(f"Competition {competition_id} not found")

            agent = await s.get(Agent, agent_id)
            if agent is None:
                raise NotFoundError(f"Agent {agent_id} not found")

            other_agent = await s.scalar(
                select(CompetitionAgent.agent_id)
                .join(Agent, Agent.id == CompetitionAgent.agent_id)
                .where(and_(
                    CompetitionAgent.competition_id == competition_id,
                    Agent.owner_id == agent.owner_id,
                    CompetitionAgent.agent_id != agent_id,
                ))
                .limit(1)
            )
            if other_agent is not None:
                raise OwnerAlreadyRegisteredError("User already has an agent registered in this competition")

            existing = await s.scalar(
                select(CompetitionAgent.id)
                .where(and_(
                    CompetitionAgent.competition_id == competition_id,
                    CompetitionAgent.agent_id == agent_id,
                ))
            )
            if existing is not None:
                return False

            registered = competition.registered_participants or 0
            if competition.max_participants and registered + 1 > competition.max_participants:
                raise ParticipantLimitReachedError(
                    f"Competition has reached maximum participant limit ({competition.max_participants})"
                )

            s.add(CompetitionAgent(competition_id=competition_id, agent_id=agent_id))
            await s.execute(
                update(Competition)
                .where(Competition.id == competition_id)
                .values(
                    registered_participants=Competition.registered_participants + 1,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            logger.info(f"Agent {agent_id} registered for competition {competition_id}")
            return True

    async def update_agent_status(self, competition_id: str, agent_id: str, status: str,
                                  reason: Optional[str] = None,
                                  session: Optional[AsyncSession] = None) -> bool:
        """Set a participation status; returns False when the agent is not a participant."""
        async with self.database.session_scope(session) as s:
            now = utc_now()
            values = {"status": status, "updated_at": now}
            if status == ParticipationStatus.ACTIVE.value:
                values.update(deactivation_reason=None, deactivated_at=None)
            else:
                values.update(deactivation_reason=reason, deactivated_at=now)

            result = await s.execute(
                update(CompetitionAgent)
                .where(and_(
                    CompetitionAgent.competition_id == competition_id,
                    CompetitionAgent.agent_id == agent_id,
                ))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def count_agents_by_status(self, competition_id: str) -> Dict[str, int]:
        async with self.database.session_scope() as s:
            result = await s.execute(
                select(CompetitionAgent.status, func.count(CompetitionAgent.id))
                .where(CompetitionAgent.competition_id == competition_id)
                .group_by(CompetitionAgent.status)
            )
            return {status: count for status, count in result.all()}
