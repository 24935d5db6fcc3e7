"""
Competition leaderboards.

Standings depend on competition status:

- pending: participants ordered by their global skill score
- ended: the persisted final leaderboard, when one was written
- active/ending (and ended without persisted rows): latest snapshots;
  perps use the risk-adjusted view, spot sorts by portfolio value, and
  with no snapshots yet values are computed live from balances

Reading a leaderboard never writes. ``build_final_leaderboard`` produces
the rows persisted when a competition ends.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import NotFoundError
from ..models.competition import Competition, CompetitionStatus, EvaluationMetric, ParticipationStatus
from ..models.scoring import SENTINEL_SCORE_NO_METRIC, CompetitionLeaderboard
from ..repositories.agent import AgentRepository
from ..repositories.competition import CompetitionRepository
from ..repositories.leaderboard import LeaderboardRepository
from ..repositories.perps import PerpsRepository
from ..repositories.snapshot import SnapshotRepository
from ..trading.balances import BalanceManager
from ..trading.prices import PriceOracle
from ..utils import utc_now

logger = logging.getLogger(__name__)

UNRANKED_GLOBAL_SCORE = -1.0

# Global score blending: new = old * (1 - weight) + placement * weight
GLOBAL_SCORE_BASELINE = 50.0
GLOBAL_SCORE_WEIGHT = 0.25


@dataclass
class LeaderboardEntry:
    agent_id: str
    value: float
    rank: int = 0
    pnl: float = 0.0
    starting_value: float = 0.0
    calmar_ratio: Optional[float] = None
    sortino_ratio: Optional[float] = None
    simple_return: Optional[float] = None
    max_drawdown: Optional[float] = None
    downside_deviation: Optional[float] = None
    has_risk_metrics: bool = False
    score: Optional[float] = None


@dataclass
class InactiveAgentEntry:
    agent_id: str
    value: float
    status: str
    deactivation_reason: Optional[str]
    deactivated_at: Optional[datetime]


@dataclass
class AgentMetrics:
    pnl: float
    pnl_percent: float
    change_24h: float
    change_24h_percent: float


@dataclass
class AgentRanking:
    rank: int
    total_agents: int


def _percent(change: float, base: float) -> float:
    return (change / base) * 100 if base > 0 else 0.0


def _assign_ranks(entries: List[LeaderboardEntry]) -> List[LeaderboardEntry]:
    for index, entry in enumerate(entries, start=1):
        entry.rank = index
    return entries


def metric_value(entry: LeaderboardEntry, evaluation_metric: str) -> Optional[float]:
    return getattr(entry, evaluation_metric, None)


def persisted_score(entry: LeaderboardEntry, competition: Competition) -> float:
    """Score written to the final leaderboard; perps agents lacking the metric get the sentinel."""
    if not competition.is_perps:
        return entry.value
    value = metric_value(entry, competition.evaluation_metric)
    return SENTINEL_SCORE_NO_METRIC if value is None else value


def updated_global_scores(entries: Sequence[LeaderboardEntry],
                          current_scores: Mapping[str, Optional[float]]) -> Dict[str, float]:
    """
    Blend each agent's placement (100 for first, 0 for last) into its global score.

    Unranked agents start from the baseline.
    """
    total = len(entries)
    scores = {}
    for entry in entries:
        placement = 100.0 * (total - entry.rank) / (total - 1) if total > 1 else 100.0
        previous = current_scores.get(entry.agent_id)
        base = GLOBAL_SCORE_BASELINE if previous is None else previous
        scores[entry.agent_id] = round(base * (1 - GLOBAL_SCORE_WEIGHT) + placement * GLOBAL_SCORE_WEIGHT, 6)
    return scores


class LeaderboardCalculator:
    """Read-only standings for any competition status."""

    def __init__(self, competitions: CompetitionRepository, agents: AgentRepository,
                 snapshots: SnapshotRepository, perps: PerpsRepository,
                 leaderboards: LeaderboardRepository, balances: BalanceManager,
                 oracle: PriceOracle):
        self.competitions = competitions
        self.agents = agents
        self.snapshots = snapshots
        self.perps = perps
        self.leaderboards = leaderboards
        self.balances = balances
        self.oracle = oracle

    async def _get_competition(self, competition_id: str) -> Competition:
        competition = await self.competitions.find_by_id(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition not found: {competition_id}")
        return competition

    async def get_leaderboard(self, competition_id: str) -> List[LeaderboardEntry]:
        """
        Ranked standings for a competition.

        Raises:
            NotFoundError: competition does not exist
        """
        competition = await self._get_competition(competition_id)

        if competition.status == CompetitionStatus.PENDING.value:
            return await self._pending_leaderboard(competition_id)

        if competition.status == CompetitionStatus.ENDED.value:
            rows = await self.leaderboards.get_leaderboard(competition_id)
            if rows:
                return [self._from_persisted(row) for row in rows]
            logger.warning(f"Competition {competition_id} ended without a persisted leaderboard, computing")

        return await self.compute_standings(competition)

    async def _pending_leaderboard(self, competition_id: str) -> List[LeaderboardEntry]:
        agent_ids = await self.competitions.get_agent_ids(competition_id)
        agents = {agent.id: agent for agent in await self.agents.find_by_ids(agent_ids)}

        def global_score(agent_id: str) -> float:
            agent = agents.get(agent_id)
            if agent is None or agent.global_score is None:
                return UNRANKED_GLOBAL_SCORE
            return agent.global_score

        # sorted() is stable: equal scores keep registration order
        ordered = sorted(agent_ids, key=global_score, reverse=True)
        return _assign_ranks([
            LeaderboardEntry(agent_id=agent_id, value=0.0, score=global_score(agent_id))
            for agent_id in ordered
        ])

    @staticmethod
    def _from_persisted(row: CompetitionLeaderboard) -> LeaderboardEntry:
        return LeaderboardEntry(
            agent_id=row.agent_id,
            value=row.total_equity if row.total_equity is not None else row.score,
            rank=row.rank,
            pnl=row.pnl,
            starting_value=row.starting_value,
            calmar_ratio=row.calmar_ratio,
            sortino_ratio=row.sortino_ratio,
            simple_return=row.simple_return,
            max_drawdown=row.max_drawdown,
            downside_deviation=row.downside_deviation,
            has_risk_metrics=row.has_risk_metrics,
            score=row.score,
        )

    async def compute_standings(self, competition: Competition) -> List[LeaderboardEntry]:
        """Current standings of active participants, ignoring any persisted leaderboard."""
        if competition.is_perps:
            entries = await self._perps_standings(competition)
        else:
            entries = await self._spot_standings(competition)

        starting = await self.snapshots.get_earliest_snapshots(competition.id, [e.agent_id for e in entries])
        for entry in entries:
            snapshot = starting.get(entry.agent_id)
            if snapshot is not None:
                entry.starting_value = snapshot.total_value
                entry.pnl = entry.value - snapshot.total_value
        return _assign_ranks(entries)

    async def _perps_standings(self, competition: Competition) -> List[LeaderboardEntry]:
        metric = competition.evaluation_metric or EvaluationMetric.CALMAR_RATIO.value
        rows = await self.perps.get_risk_adjusted_leaderboard(competition.id, metric)
        if not rows:
            # Nothing synced yet; list participants at zero equity
            agent_ids = await self.competitions.get_agent_ids(competition.id)
            return [LeaderboardEntry(agent_id=agent_id, value=0.0) for agent_id in sorted(agent_ids)]

        return [
            LeaderboardEntry(
                agent_id=row["agent_id"],
                value=row["total_equity"],
                calmar_ratio=row["calmar_ratio"],
                sortino_ratio=row["sortino_ratio"],
                simple_return=row["simple_return"],
                max_drawdown=row["max_drawdown"],
                downside_deviation=row["downside_deviation"],
                has_risk_metrics=row["has_risk_metrics"],
            )
            for row in rows
        ]

    async def _spot_standings(self, competition: Competition) -> List[LeaderboardEntry]:
        agent_ids = await self.competitions.get_agent_ids(competition.id)
        if not agent_ids:
            return []

        latest = await self.snapshots.get_latest_snapshots(competition.id, agent_ids)
        values = {agent_id: snapshot.total_value for agent_id, snapshot in latest.items()}

        # Agents enrolled after the last snapshot round are valued live
        unsnapshotted = [agent_id for agent_id in agent_ids if agent_id not in values]
        if unsnapshotted:
            logger.debug(
                f"{len(unsnapshotted)} agents without snapshots in competition {competition.id}, valuing live"
            )
            values.update(await self.balances.get_portfolio_values(competition.id, unsnapshotted, self.oracle))

        entries = [LeaderboardEntry(agent_id=agent_id, value=value) for agent_id, value in values.items()]
        entries.sort(key=lambda e: (-e.value, e.agent_id))
        return entries

    async def build_final_leaderboard(self, competition: Competition) -> List[CompetitionLeaderboard]:
        """Rows to persist when the competition ends, ranked from the current standings."""
        entries = await self.compute_standings(competition)
        total = len(entries)
        return [
            CompetitionLeaderboard(
                competition_id=competition.id,
                agent_id=entry.agent_id,
                rank=entry.rank,
                score=persisted_score(entry, competition),
                total_agents=total,
                pnl=entry.pnl,
                starting_value=entry.starting_value,
                calmar_ratio=entry.calmar_ratio,
                sortino_ratio=entry.sortino_ratio,
                simple_return=entry.simple_return,
                max_drawdown=entry.max_drawdown,
                downside_deviation=entry.downside_deviation,
                total_equity=entry.value,
                has_risk_metrics=entry.has_risk_metrics,
            )
            for entry in entries
        ]

    async def get_bulk_agent_metrics(self, competition_id: str,
                                     agent_ids: Sequence[str]) -> Dict[str, AgentMetrics]:
        """
        PnL and 24h change for many agents from three snapshot queries.

        The 24h reference is the latest snapshot taken at or before 24 hours
        ago, falling back to the agent's earliest snapshot.
        """
        if not agent_ids:
            return {}

        earliest = await self.snapshots.get_earliest_snapshots(competition_id, agent_ids)
        latest = await self.snapshots.get_latest_snapshots(competition_id, agent_ids)
        day_ago = await self.snapshots.get_snapshots_as_of(
            competition_id, agent_ids, utc_now() - timedelta(hours=24)
        )

        metrics = {}
        for agent_id in agent_ids:
            current = latest[agent_id].total_value if agent_id in latest else 0.0
            start = earliest[agent_id].total_value if agent_id in earliest else current
            reference_snapshot = day_ago.get(agent_id) or earliest.get(agent_id)
            reference = reference_snapshot.total_value if reference_snapshot else current

            pnl = current - start
            change_24h = current - reference
            metrics[agent_id] = AgentMetrics(
                pnl=pnl,
                pnl_percent=_percent(pnl, start),
                change_24h=change_24h,
                change_24h_percent=_percent(change_24h, reference),
            )
        return metrics

    async def get_leaderboard_with_inactive_agents(
            self, competition_id: str) -> Tuple[List[LeaderboardEntry], List[InactiveAgentEntry]]:
        """Active standings plus withdrawn and disqualified agents with their last value."""
        active = await self.get_leaderboard(competition_id)

        inactive_participations = await self.competitions.get_participations(
            competition_id,
            statuses=[ParticipationStatus.WITHDRAWN.value, ParticipationStatus.DISQUALIFIED.value],
        )
        latest = await self.snapshots.get_latest_snapshots(
            competition_id, [p.agent_id for p in inactive_participations]
        )
        inactive = [
            InactiveAgentEntry(
                agent_id=p.agent_id,
                value=latest[p.agent_id].total_value if p.agent_id in latest else 0.0,
                status=p.status,
                deactivation_reason=p.deactivation_reason,
                deactivated_at=p.deactivated_at,
            )
            for p in inactive_participations
        ]
        return active, inactive

    async def get_agent_rankings(self, competition_id: str,
                                 agent_ids: Optional[Sequence[str]] = None) -> Dict[str, AgentRanking]:
        """Rank and field size per agent; agents not on the leaderboard are left out."""
        entries = await self.get_leaderboard(competition_id)
        wanted = set(agent_ids) if agent_ids is not None else None
        total = len(entries)
        return {
            entry.agent_id: AgentRanking(rank=entry.rank, total_agents=total)
            for entry in entries
            if wanted is None or entry.agent_id in wanted
        }
