"""
Tests for competition leaderboards.

============================================================
PURPOSE
============================================================
Standings per competition status, risk-adjusted perps
ordering, bulk agent metrics and global score blending.

TEST PRINCIPLES:
- Reading a leaderboard never writes
- Metric holders rank above agents without the metric
- Ties break on agent id

============================================================
"""

from datetime import timedelta

import pytest

from arena_engine.competition.leaderboard import (
    GLOBAL_SCORE_BASELINE,
    UNRANKED_GLOBAL_SCORE,
    LeaderboardEntry,
    updated_global_scores,
)
from arena_engine.errors import NotFoundError
from arena_engine.models import (
    Competition,
    CompetitionStatus,
    CompetitionType,
    ParticipationStatus,
    PerpsAccountSummary,
    PortfolioSnapshot,
    SENTINEL_SCORE_NO_METRIC,
)
from arena_engine.utils import utc_now


async def create_active_competition(engine, agents, competition_type=CompetitionType.TRADING.value, **fields):
    competition = await engine.competition_repository.create(Competition(
        name="Standings",
        type=competition_type,
        status=CompetitionStatus.ACTIVE.value,
        start_date=utc_now() - timedelta(days=2),
        **fields,
    ))
    for agent in agents:
        await engine.competition_repository.add_agent(competition.id, agent.id)
    return competition


async def record_snapshots(engine, competition_id, agent_id, values_by_age):
    now = utc_now()
    await engine.snapshot_repository.create_snapshots([
        PortfolioSnapshot(
            agent_id=agent_id,
            competition_id=competition_id,
            total_value=value,
            timestamp=now - age,
        )
        for age, value in values_by_age
    ])


# ============================================================
# PERPS ORDERING TESTS
# ============================================================

class TestPerpsLeaderboard:

    @pytest.mark.asyncio
    async def test_metric_holders_rank_above_higher_equity(self, engine, make_agent):
        """Agent X (calmar 1.5, $500) ranks above agent Y (no metrics, $600)."""
        x = await make_agent(name="x", wallet_address="0xx")
        y = await make_agent(name="y", wallet_address="0xy")
        competition = await create_active_competition(
            engine, [x, y], CompetitionType.PERPETUAL_FUTURES.value, evaluation_metric="calmar_ratio"
        )
        await engine.perps_repository.save_account_summaries([
            PerpsAccountSummary(agent_id=x.id, competition_id=competition.id, total_equity=500.0),
            PerpsAccountSummary(agent_id=y.id, competition_id=competition.id, total_equity=600.0),
        ])
        await engine.perps_repository.upsert_risk_metrics(competition.id, x.id, {
            "calmar_ratio": 1.5,
            "sortino_ratio": 0.8,
            "simple_return": 0.1,
            "max_drawdown": -0.05,
            "downside_deviation": 0.02,
            "snapshot_count": 5,
        })

        entries = await engine.leaderboard.get_leaderboard(competition.id)

        assert [e.agent_id for e in entries] == [x.id, y.id]
        assert [e.rank for e in entries] == [1, 2]
        assert entries[0].has_risk_metrics is True
        assert entries[1].has_risk_metrics is False
        assert entries[1].value == 600.0

    @pytest.mark.asyncio
    async def test_final_rows_use_sentinel_for_missing_metric(self, engine, make_agent):
        x = await make_agent(name="x", wallet_address="0xx")
        y = await make_agent(name="y", wallet_address="0xy")
        competition = await create_active_competition(engine, [x, y], CompetitionType.PERPETUAL_FUTURES.value)
        await engine.perps_repository.save_account_summaries([
            PerpsAccountSummary(agent_id=x.id, competition_id=competition.id, total_equity=500.0),
            PerpsAccountSummary(agent_id=y.id, competition_id=competition.id, total_equity=600.0),
        ])
        await engine.perps_repository.upsert_risk_metrics(competition.id, x.id, {"calmar_ratio": 1.5})

        rows = await engine.leaderboard.build_final_leaderboard(competition)

        assert [(r.agent_id, r.score) for r in rows] == [(x.id, 1.5), (y.id, SENTINEL_SCORE_NO_METRIC)]
        assert all(r.total_agents == 2 for r in rows)
        assert rows[1].total_equity == 600.0

    @pytest.mark.asyncio
    async def test_equity_breaks_ties_without_metrics(self, engine, make_agent):
        a = await make_agent(name="a", wallet_address="0xa")
        b = await make_agent(name="b", wallet_address="0xb")
        competition = await create_active_competition(engine, [a, b], CompetitionType.PERPETUAL_FUTURES.value)
        await engine.perps_repository.save_account_summaries([
            PerpsAccountSummary(agent_id=a.id, competition_id=competition.id, total_equity=400.0),
            PerpsAccountSummary(agent_id=b.id, competition_id=competition.id, total_equity=700.0),
        ])

        entries = await engine.leaderboard.get_leaderboard(competition.id)

        assert [e.agent_id for e in entries] == [b.id, a.id]

    @pytest.mark.asyncio
    async def test_latest_summary_wins(self, engine, make_agent):
        a = await make_agent(name="a", wallet_address="0xa")
        competition = await create_active_competition(engine, [a], CompetitionType.PERPETUAL_FUTURES.value)
        now = utc_now()
        await engine.perps_repository.save_account_summaries([
            PerpsAccountSummary(agent_id=a.id, competition_id=competition.id, total_equity=400.0,
                                timestamp=now - timedelta(hours=1)),
            PerpsAccountSummary(agent_id=a.id, competition_id=competition.id, total_equity=450.0, timestamp=now),
        ])

        entries = await engine.leaderboard.get_leaderboard(competition.id)

        assert entries[0].value == 450.0

    @pytest.mark.asyncio
    async def test_no_summaries_lists_participants_at_zero(self, engine, make_agent):
        a = await make_agent(name="a", wallet_address="0xa")
        b = await make_agent(name="b", wallet_address="0xb")
        competition = await create_active_competition(engine, [a, b], CompetitionType.PERPETUAL_FUTURES.value)

        entries = await engine.leaderboard.get_leaderboard(competition.id)

        assert sorted(e.agent_id for e in entries) == sorted([a.id, b.id])
        assert all(e.value == 0.0 for e in entries)


# ============================================================
# SPOT AND PENDING TESTS
# ============================================================

class TestSpotLeaderboard:

    @pytest.mark.asyncio
    async def test_orders_by_latest_snapshot_value(self, engine, make_agent):
        a = await make_agent(name="a")
        b = await make_agent(name="b")
        competition = await create_active_competition(engine, [a, b])
        await record_snapshots(engine, competition.id, a.id, [(timedelta(hours=2), 100.0), (timedelta(0), 90.0)])
        await record_snapshots(engine, competition.id, b.id, [(timedelta(hours=2), 100.0), (timedelta(0), 130.0)])

        entries = await engine.leaderboard.get_leaderboard(competition.id)

        assert [e.agent_id for e in entries] == [b.id, a.id]
        assert entries[0].pnl == pytest.approx(30.0)
        assert entries[1].pnl == pytest.approx(-10.0)
        assert entries[0].starting_value == 100.0

    @pytest.mark.asyncio
    async def test_live_values_without_snapshots(self, engine, make_agent):
        a = await make_agent(name="a")
        competition = await create_active_competition(engine, [a])
        await engine.balances.reset_agent_balances(a.id, competition.id, competition.type)

        entries = await engine.leaderboard.get_leaderboard(competition.id)

        assert entries[0].value == pytest.approx(100.0)
        assert await engine.snapshot_repository.count_snapshots(competition.id) == 0

    @pytest.mark.asyncio
    async def test_agent_without_snapshot_is_valued_live(self, engine, make_agent):
        """An agent enrolled after the last snapshot round still appears, at its live value."""
        early = await make_agent(name="early")
        late = await make_agent(name="late")
        competition = await create_active_competition(engine, [early, late])
        await record_snapshots(engine, competition.id, early.id, [(timedelta(0), 90.0)])
        await engine.balances.reset_agent_balances(late.id, competition.id, competition.type)

        entries = await engine.leaderboard.get_leaderboard(competition.id)

        assert [e.agent_id for e in entries] == [late.id, early.id]
        assert entries[0].value == pytest.approx(100.0)
        assert entries[1].value == 90.0

    @pytest.mark.asyncio
    async def test_withdrawn_agents_listed_separately(self, engine, make_agent):
        a = await make_agent(name="a")
        b = await make_agent(name="b")
        competition = await create_active_competition(engine, [a, b])
        await record_snapshots(engine, competition.id, a.id, [(timedelta(0), 100.0)])
        await record_snapshots(engine, competition.id, b.id, [(timedelta(0), 80.0)])
        await engine.competition_repository.update_agent_status(
            competition.id, b.id, ParticipationStatus.WITHDRAWN.value, "Withdrew"
        )

        active, inactive = await engine.leaderboard.get_leaderboard_with_inactive_agents(competition.id)

        assert [e.agent_id for e in active] == [a.id]
        assert len(inactive) == 1
        assert inactive[0].agent_id == b.id
        assert inactive[0].value == 80.0
        assert inactive[0].deactivation_reason == "Withdrew"

    @pytest.mark.asyncio
    async def test_pending_orders_by_global_score(self, engine, make_agent):
        unranked = await make_agent(name="unranked")
        strong = await make_agent(name="strong", global_score=80.0)
        middling = await make_agent(name="middling", global_score=60.0)
        competition = await engine.competition_repository.create(Competition(name="Upcoming"))
        for agent in (unranked, strong, middling):
            await engine.competition_repository.add_agent(competition.id, agent.id)

        entries = await engine.leaderboard.get_leaderboard(competition.id)

        assert [e.agent_id for e in entries] == [strong.id, middling.id, unranked.id]
        assert entries[2].score == UNRANKED_GLOBAL_SCORE
        assert all(e.value == 0.0 for e in entries)

    @pytest.mark.asyncio
    async def test_unknown_competition(self, engine):
        with pytest.raises(NotFoundError):
            await engine.leaderboard.get_leaderboard("missing")

    @pytest.mark.asyncio
    async def test_agent_rankings(self, engine, make_agent):
        a = await make_agent(name="a")
        b = await make_agent(name="b")
        competition = await create_active_competition(engine, [a, b])
        await record_snapshots(engine, competition.id, a.id, [(timedelta(0), 50.0)])
        await record_snapshots(engine, competition.id, b.id, [(timedelta(0), 150.0)])

        rankings = await engine.leaderboard.get_agent_rankings(competition.id, [a.id])

        assert list(rankings) == [a.id]
        assert rankings[a.id].rank == 2
        assert rankings[a.id].total_agents == 2


# ============================================================
# AGENT METRICS TESTS
# ============================================================

class TestBulkAgentMetrics:

    @pytest.mark.asyncio
    async def test_pnl_and_24h_change(self, engine, make_agent):
        a = await make_agent(name="a")
        competition = await create_active_competition(engine, [a])
        await record_snapshots(engine, competition.id, a.id, [
            (timedelta(hours=48), 100.0),
            (timedelta(hours=25), 110.0),
            (timedelta(0), 121.0),
        ])

        metrics = await engine.leaderboard.get_bulk_agent_metrics(competition.id, [a.id])

        assert metrics[a.id].pnl == pytest.approx(21.0)
        assert metrics[a.id].pnl_percent == pytest.approx(21.0)
        assert metrics[a.id].change_24h == pytest.approx(11.0)
        assert metrics[a.id].change_24h_percent == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_young_agent_falls_back_to_earliest_snapshot(self, engine, make_agent):
        a = await make_agent(name="a")
        competition = await create_active_competition(engine, [a])
        await record_snapshots(engine, competition.id, a.id, [
            (timedelta(hours=3), 200.0),
            (timedelta(0), 150.0),
        ])

        metrics = await engine.leaderboard.get_bulk_agent_metrics(competition.id, [a.id])

        assert metrics[a.id].change_24h == pytest.approx(-50.0)
        assert metrics[a.id].change_24h_percent == pytest.approx(-25.0)

    @pytest.mark.asyncio
    async def test_agent_without_snapshots(self, engine, make_agent):
        a = await make_agent(name="a")
        competition = await create_active_competition(engine, [a])

        metrics = await engine.leaderboard.get_bulk_agent_metrics(competition.id, [a.id])

        assert metrics[a.id].pnl == 0.0
        assert metrics[a.id].pnl_percent == 0.0


# ============================================================
# GLOBAL SCORE TESTS
# ============================================================

class TestGlobalScores:

    def test_placement_blends_into_previous_score(self):
        entries = [
            LeaderboardEntry(agent_id="first", value=0, rank=1),
            LeaderboardEntry(agent_id="second", value=0, rank=2),
            LeaderboardEntry(agent_id="third", value=0, rank=3),
        ]

        scores = updated_global_scores(entries, {"first": 80.0, "second": None, "third": 40.0})

        assert scores["first"] == pytest.approx(80.0 * 0.75 + 100.0 * 0.25)
        assert scores["second"] == pytest.approx(GLOBAL_SCORE_BASELINE * 0.75 + 50.0 * 0.25)
        assert scores["third"] == pytest.approx(40.0 * 0.75)

    def test_single_entrant_takes_full_placement(self):
        scores = updated_global_scores([LeaderboardEntry(agent_id="solo", value=0, rank=1)], {})

        assert scores["solo"] == pytest.approx(62.5)
