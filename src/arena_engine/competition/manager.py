"""
Competition lifecycle: pending -> active -> ending -> ended.

Starting and ending are idempotent and safe to retry. Each status change
is a conditional write; a caller that loses a race gets the committed
outcome (or a ConflictError on start) instead of a second transition.
``ending`` is a checkpoint: an interrupted end resumes from it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence

from ..config import Config, config as default_config
from ..db import Database
from ..errors import (
    ArenaError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from ..models.agent import Agent
from ..models.competition import Competition, CompetitionStatus, CompetitionType, ParticipationStatus
from ..models.perps import PerpsCompetitionConfig
from ..perps.processor import PerpsDataProcessor
from ..repositories.agent import AgentRepository
from ..repositories.competition import CompetitionRepository
from ..repositories.leaderboard import LeaderboardRepository
from ..repositories.perps import PerpsRepository
from ..trading.balances import BalanceManager
from ..trading.constraints import TradingConstraintsInput, TradingConstraintsService
from ..trading.snapshots import PortfolioSnapshotter
from ..utils import as_utc, utc_now
from .leaderboard import LeaderboardCalculator, LeaderboardEntry, updated_global_scores

logger = logging.getLogger(__name__)

NO_REGISTERED_AGENTS = "Cannot start competition: no registered agents"


class StakeProvider(Protocol):
    async def get_total_staked(self, wallet_address: str) -> Decimal:
        ...


@dataclass
class StartResult:
    competition: Competition
    agent_ids: List[str]
    disqualified: Dict[str, str] = field(default_factory=dict)


@dataclass
class EndResult:
    competition: Competition
    leaderboard: List[LeaderboardEntry]


class CompetitionManager:
    """Creates, starts, ends and manages participation in competitions."""

    def __init__(self, database: Database, competitions: CompetitionRepository, agents: AgentRepository,
                 balances: BalanceManager, constraints: TradingConstraintsService,
                 snapshotter: PortfolioSnapshotter, leaderboard: LeaderboardCalculator,
                 leaderboards: LeaderboardRepository, perps: PerpsRepository,
                 perps_processor: Optional[PerpsDataProcessor] = None,
                 stake_provider: Optional[StakeProvider] = None,
                 config: Optional[Config] = None):
        self.config = config or default_config
        self.database = database
        self.competitions = competitions
        self.agents = agents
        self.balances = balances
        self.constraints = constraints
        self.snapshotter = snapshotter
        self.leaderboard = leaderboard
        self.leaderboards = leaderboards
        self.perps = perps
        self.perps_processor = perps_processor
        self.stake_provider = stake_provider

    async def create_competition(self, name: str, competition_type: str = CompetitionType.TRADING.value,
                                 constraints: Optional[TradingConstraintsInput] = None,
                                 perps_config: Optional[Dict] = None,
                                 rewards: Optional[Dict[int, float]] = None,
                                 **fields) -> Competition:
        """Create a pending competition with its trading constraints, perps config and rewards"""
        fields.setdefault("cross_chain_trading_type", self.config.cross_chain_trading_type)
        async with self.database.get_session() as session:
            competition = await self.competitions.create(
                Competition(name=name, type=competition_type, **fields), session=session
            )
            await self.constraints.create_constraints(competition.id, constraints, session=session)
            if competition.is_perps:
                await self.perps.create_config(
                    PerpsCompetitionConfig(competition_id=competition.id, **(perps_config or {})),
                    session=session,
                )
            if rewards:
                await self.leaderboards.create_rewards(competition.id, rewards, session=session)

        logger.info(f"Created {competition_type} competition: {name}")
        return competition

    # Start

    async def start_competition(self, competition_id: str, agent_ids: Optional[Sequence[str]] = None,
                                constraints: Optional[TradingConstraintsInput] = None) -> StartResult:
        """
        Start a pending competition.

        Args:
            competition_id: Competition to start
            agent_ids: Agents to enroll in addition to those already registered
            constraints: Trading constraint overrides

        Returns:
            StartResult with the active competition and its participants

        Raises:
            NotFoundError, ConflictError, ValidationError
        """
        competition = await self.competitions.find_by_id(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition not found: {competition_id}")

        if competition.status != CompetitionStatus.PENDING.value:
            raise ConflictError(f"Competition is already in {competition.status} state and cannot be started")

        active = await self.competitions.find_active_competition()
        if active is not None and active.id != competition_id:
            raise ConflictError(f"Another competition is already active: {active.id}")

        registered = await self.competitions.get_agent_ids(competition_id)
        participant_ids = list(dict.fromkeys([*(agent_ids or []), *registered]))
        agents = await self._validate_participants(competition, participant_ids)

        for agent in agents:
            await self.balances.reset_agent_balances(agent.id, competition_id, competition.type)
            await self._enroll(competition_id, agent.id)

        await self.constraints.upsert_constraints(competition_id, constraints)

        disqualified = {}
        if competition.is_perps:
            disqualified = await self._initial_perps_sync(competition_id)
        else:
            await self.snapshotter.take_portfolio_snapshots(competition_id, force=True)

        active_ids = [a.id for a in agents if a.id not in disqualified]
        started = await self.competitions.mark_as_active(competition_id, start_date=utc_now())
        if started is None:
            started = await self._committed_start(competition_id)
            return StartResult(competition=started, agent_ids=active_ids, disqualified=disqualified)

        logger.info(
            f"Started competition {started.name} ({competition_id}) with {len(active_ids)} agents"
            + (f", {len(disqualified)} disqualified" if disqualified else "")
        )
        return StartResult(competition=started, agent_ids=active_ids, disqualified=disqualified)

    async def _committed_start(self, competition_id: str) -> Competition:
        """Outcome for a caller whose pending -> active write changed nothing."""
        current = await self.competitions.find_by_id(competition_id)
        if current is not None and current.status == CompetitionStatus.ACTIVE.value:
            logger.info(f"Competition {competition_id} was started by another caller")
            return current

        active = await self.competitions.find_active_competition()
        if active is not None and active.id != competition_id:
            raise ConflictError(f"Another competition is already active: {active.id}")

        status = current.status if current is not None else "unknown"
        raise ConflictError(f"Competition is already in {status} state and cannot be started")

    async def _validate_participants(self, competition: Competition, participant_ids: List[str]) -> List[Agent]:
        if not participant_ids:
            raise ValidationError(NO_REGISTERED_AGENTS)

        found = {agent.id: agent for agent in await self.agents.find_by_ids(participant_ids)}
        invalid = [
            agent_id for agent_id in participant_ids
            if agent_id not in found or not found[agent_id].is_active
        ]
        if invalid:
            raise ValidationError(
                f"Cannot start competition: the following agent IDs are invalid or inactive: {', '.join(invalid)}"
            )

        agents = [found[agent_id] for agent_id in participant_ids]
        if competition.is_perps:
            missing_wallets = [a for a in agents if not a.wallet_address]
            if missing_wallets:
                names = ", ".join(f"{a.name} ({a.id})" for a in missing_wallets)
                raise ValidationError(
                    f"Cannot start perpetual futures competition: "
                    f"The following agents have no wallet address: {names}"
                )
        return agents

    async def _enroll(self, competition_id: str, agent_id: str) -> None:
        # Limit and duplicate-owner errors propagate as ConflictError subclasses
        added = await self.competitions.add_agent(competition_id, agent_id)
        if added:
            return

        participation = await self.competitions.get_participation(competition_id, agent_id)
        if participation is not None and not participation.is_active:
            await self.competitions.update_agent_status(competition_id, agent_id, ParticipationStatus.ACTIVE.value)
            logger.info(f"Reactivated agent {agent_id} in competition {competition_id} at start")

    async def _initial_perps_sync(self, competition_id: str) -> Dict[str, str]:
        """Sync starting equity and disqualify agents below the minimum funding threshold."""
        if self.perps_processor is None:
            raise ValidationError("Perpetual futures competitions require a perps data processor")

        result = await self.perps_processor.process_perps_competition(competition_id, skip_monitoring=True)

        perps_config = await self.perps.get_config(competition_id)
        minimum = perps_config.min_funding_threshold if perps_config else None
        if minimum is None:
            return {}

        disqualified = {}
        for agent_id, summary in result.account_summaries.items():
            if summary.total_equity < minimum:
                reason = f"Insufficient initial funding: ${summary.total_equity:.2f} < ${minimum:.2f} minimum"
                await self.competitions.update_agent_status(
                    competition_id, agent_id, ParticipationStatus.DISQUALIFIED.value, reason
                )
                disqualified[agent_id] = reason
                logger.warning(f"Agent {agent_id} removed from competition {competition_id}: {reason}")
        return disqualified

    # End

    async def end_competition(self, competition_id: str) -> EndResult:
        """
        End an active competition, or resume one left in ``ending``.

        Ending an already ended competition returns its persisted result.
        """
        competition = await self.competitions.mark_as_ending(competition_id)
        if competition is None:
            competition = await self.competitions.find_by_id(competition_id)
            if competition is None:
                raise NotFoundError(f"Competition not found: {competition_id}")
            if competition.status == CompetitionStatus.ENDED.value:
                logger.info(f"Competition {competition_id} already ended, returning persisted result")
                return EndResult(competition, await self.leaderboard.get_leaderboard(competition_id))
            if competition.status != CompetitionStatus.ENDING.value:
                raise ConflictError(f"Competition is not active or ending: {competition.status}")
            logger.info(f"Resuming end of competition {competition_id}")
        else:
            logger.info(f"Competition {competition.name} ({competition_id}) marked as ending")

        await self._final_snapshots(competition)
        rows = await self.leaderboard.build_final_leaderboard(competition)

        async with self.database.get_session() as session:
            ended = await self.competitions.mark_as_ended(competition_id, session)
            if ended is not None:
                await self.leaderboards.insert_leaderboard(rows, session)

                current = {a.id: a.global_score for a in await self.agents.find_by_ids(
                    [row.agent_id for row in rows], session=session
                )}
                entries = [LeaderboardEntry(agent_id=row.agent_id, value=row.score, rank=row.rank) for row in rows]
                await self.agents.update_global_scores(updated_global_scores(entries, current), session)

                await self.leaderboards.assign_winners(
                    competition_id, {row.rank: row.agent_id for row in rows}, session
                )

        if ended is None:
            logger.info(f"Competition {competition_id} was ended by another caller")
            committed = await self.competitions.find_by_id(competition_id)
            return EndResult(committed, await self.leaderboard.get_leaderboard(competition_id))

        logger.info(f"Competition {ended.name} ({competition_id}) ended with {len(rows)} ranked agents")
        return EndResult(ended, await self.leaderboard.get_leaderboard(competition_id))

    async def _final_snapshots(self, competition: Competition) -> None:
        if competition.is_perps:
            if self.perps_processor is None:
                raise ValidationError("Perpetual futures competitions require a perps data processor")
            await self.perps_processor.process_perps_competition(competition.id)
        else:
            await self.snapshotter.take_portfolio_snapshots(competition.id, force=True)

    # Participation

    async def _authorize(self, agent_id: str, user_id: Optional[str], auth_agent_id: Optional[str]) -> Agent:
        if user_id is None and auth_agent_id is None:
            raise UnauthorizedError("Authentication required")

        if auth_agent_id is not None and auth_agent_id != agent_id:
            raise ForbiddenError("Agent API key does not match agent ID in URL")

        agent = await self.agents.find_by_id(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent not found: {agent_id}")

        if user_id is not None and agent.owner_id != user_id:
            raise ForbiddenError("Access denied: You do not own this agent")

        return agent

    async def join_competition(self, competition_id: str, agent_id: str, user_id: Optional[str] = None,
                               auth_agent_id: Optional[str] = None) -> None:
        """
        Register an agent for a pending competition.

        The caller is either the owning user (``user_id``) or the agent
        itself (``auth_agent_id``, from its API key).
        """
        agent = await self._authorize(agent_id, user_id, auth_agent_id)
        if not agent.is_eligible:
            raise ForbiddenError("Agent is not eligible to join competitions")

        competition = await self.competitions.find_by_id(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition not found: {competition_id}")

        if competition.status != CompetitionStatus.PENDING.value:
            raise ConflictError("Cannot join competition that has already started or ended")

        now = utc_now()
        join_start = as_utc(competition.join_start_date)
        join_end = as_utc(competition.join_end_date)
        if join_start is not None and now < join_start:
            raise ConflictError(f"Competition joining opens at {join_start.isoformat()}")
        if join_end is not None and now > join_end:
            raise ConflictError(f"Competition joining closed at {join_end.isoformat()}")

        if competition.is_perps and not agent.wallet_address:
            raise ValidationError("Agent must have a wallet address to join perpetual futures competitions")

        participation = await self.competitions.get_participation(competition_id, agent_id)
        if participation is not None:
            if participation.is_active:
                raise ConflictError("Agent is already actively registered for this competition")
            if participation.status == ParticipationStatus.DISQUALIFIED.value:
                raise ForbiddenError("Agent has been disqualified from this competition")

        if competition.minimum_stake:
            await self._check_minimum_stake(agent, competition)

        added = await self.competitions.add_agent(competition_id, agent_id)
        if not added:
            # Withdrawn before the start; rejoining reactivates the same participation
            await self.competitions.update_agent_status(competition_id, agent_id, ParticipationStatus.ACTIVE.value)

        logger.info(f"Agent {agent_id} joined competition {competition_id}")

    async def _check_minimum_stake(self, agent: Agent, competition: Competition) -> None:
        minimum = Decimal(str(competition.minimum_stake))
        staked = Decimal(0)
        if self.stake_provider is not None and agent.wallet_address:
            staked = await self.stake_provider.get_total_staked(agent.wallet_address)
        if staked < minimum:
            raise ForbiddenError(
                f"Insufficient stake to join this competition: {staked} staked, {minimum} required",
                details={"staked": str(staked), "minimum_stake": str(minimum)},
            )

    async def leave_competition(self, competition_id: str, agent_id: str, user_id: Optional[str] = None,
                                auth_agent_id: Optional[str] = None) -> bool:
        """Withdraw an agent; returns False when it was already inactive."""
        await self._authorize(agent_id, user_id, auth_agent_id)

        competition = await self.competitions.find_by_id(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition not found: {competition_id}")

        participation = await self.competitions.get_participation(competition_id, agent_id)
        if participation is None:
            raise NotFoundError(f"Agent {agent_id} is not a participant in competition {competition_id}")

        if competition.status == CompetitionStatus.ENDED.value:
            raise ForbiddenError("Cannot leave a competition that has ended")

        if not participation.is_active:
            return False

        reason = f"Withdrew from competition {competition.name}"
        if competition.status == CompetitionStatus.PENDING.value:
            reason += " before it started"

        await self.competitions.update_agent_status(
            competition_id, agent_id, ParticipationStatus.WITHDRAWN.value, reason
        )
        logger.info(f"Agent {agent_id} left competition {competition_id}: {reason}")
        return True

    async def remove_agent(self, competition_id: str, agent_id: str, reason: str = "Disqualified by admin") -> None:
        updated = await self.competitions.update_agent_status(
            competition_id, agent_id, ParticipationStatus.DISQUALIFIED.value, reason
        )
        if not updated:
            raise NotFoundError(f"Agent {agent_id} is not a participant in competition {competition_id}")
        logger.warning(f"Agent {agent_id} disqualified from competition {competition_id}: {reason}")

    async def reactivate_agent(self, competition_id: str, agent_id: str) -> None:
        competition = await self.competitions.find_by_id(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition not found: {competition_id}")
        if competition.status == CompetitionStatus.ENDED.value:
            raise ConflictError("Cannot reactivate an agent in a competition that has ended")

        updated = await self.competitions.update_agent_status(
            competition_id, agent_id, ParticipationStatus.ACTIVE.value
        )
        if not updated:
            raise NotFoundError(f"Agent {agent_id} is not a participant in competition {competition_id}")
        logger.info(f"Agent {agent_id} reactivated in competition {competition_id}")

    # Scheduled checks

    async def process_competition_end_date_checks(self, now: Optional[datetime] = None) -> List[str]:
        """End every competition past its end date; returns the ids ended this run."""
        due = await self.competitions.find_competitions_needing_ending(now)
        ended = []
        for competition in due:
            try:
                await self.end_competition(competition.id)
                ended.append(competition.id)
            except Exception as e:
                logger.error(f"Failed to auto-end competition {competition.id}: {e}")
        return ended

    async def process_competition_start_date_checks(self, now: Optional[datetime] = None) -> Optional[StartResult]:
        """Start the earliest pending competition whose start date has passed, if none is active."""
        active = await self.competitions.find_active_competition()
        if active is not None:
            logger.debug(f"Competition {active.id} is active, skipping scheduled start")
            return None

        due = await self.competitions.find_pending_due(now)
        if not due:
            return None

        competition = due[0]
        try:
            return await self.start_competition(competition.id)
        except ValidationError as e:
            if e.message == NO_REGISTERED_AGENTS:
                logger.debug(f"Competition {competition.id} has no registered agents, not starting")
            else:
                logger.error(f"Failed to auto-start competition {competition.id}: {e}")
        except ArenaError as e:
            logger.error(f"Failed to auto-start competition {competition.id}: {e}")
        return None
