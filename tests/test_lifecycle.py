"""
Tests for the competition lifecycle manager.

============================================================
PURPOSE
============================================================
Starting, ending, participation and scheduled transitions.

TEST PRINCIPLES:
- Every transition is a conditional write; losers observe
  the committed outcome
- At most one competition is active
- Ending is idempotent

============================================================
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from arena_engine.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    OwnerAlreadyRegisteredError,
    ParticipantLimitReachedError,
    UnauthorizedError,
    ValidationError,
)
from arena_engine.models import CompetitionStatus, CompetitionType, ParticipationStatus
from arena_engine.perps.provider import AccountSummary
from arena_engine.utils import utc_now

from conftest import USDC_ETH


# ============================================================
# START TESTS
# ============================================================

class TestStartCompetition:

    @pytest.mark.asyncio
    async def test_start_enrolls_funds_and_snapshots(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")

        result = await engine.manager.start_competition(competition.id, agent_ids=[agent.id])

        assert result.competition.status == CompetitionStatus.ACTIVE.value
        assert result.agent_ids == [agent.id]
        assert await engine.balances.get_balance(agent.id, competition.id, USDC_ETH) == 100
        assert await engine.snapshot_repository.count_snapshots(competition.id) == 1
        assert await engine.constraints.get_constraints(competition.id) is not None

    @pytest.mark.asyncio
    async def test_start_requires_agents(self, engine):
        competition = await engine.manager.create_competition("Empty")

        with pytest.raises(ValidationError, match="no registered agents"):
            await engine.manager.start_competition(competition.id)

    @pytest.mark.asyncio
    async def test_start_rejects_inactive_agents(self, engine, make_agent):
        agent = await make_agent(name="sleepy", status="inactive")
        competition = await engine.manager.create_competition("Spot Cup")

        with pytest.raises(ValidationError, match="invalid or inactive"):
            await engine.manager.start_competition(competition.id, agent_ids=[agent.id])

    @pytest.mark.asyncio
    async def test_start_twice_conflicts(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])

        with pytest.raises(ConflictError, match="already in active state"):
            await engine.manager.start_competition(competition.id, agent_ids=[agent.id])

    @pytest.mark.asyncio
    async def test_only_one_active_competition(self, engine, make_agent):
        first = await engine.manager.create_competition("First")
        second = await engine.manager.create_competition("Second")
        await engine.manager.start_competition(first.id, agent_ids=[(await make_agent(name="a")).id])

        with pytest.raises(ConflictError, match="Another competition is already active"):
            await engine.manager.start_competition(second.id, agent_ids=[(await make_agent(name="b")).id])

        # The store itself refuses a second active row
        assert await engine.competition_repository.mark_as_active(second.id) is None
        refreshed = await engine.competition_repository.find_by_id(second.id)
        assert refreshed.status == CompetitionStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_losing_start_returns_committed_competition(self, engine, make_agent):
        """A caller whose pending -> active write changes nothing observes the other caller's start."""
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")
        activate = engine.competition_repository.mark_as_active

        async def started_elsewhere(competition_id, start_date=None):
            await activate(competition_id, start_date=start_date)
            return await activate(competition_id, start_date=start_date)

        with patch.object(engine.competition_repository, "mark_as_active",
                          AsyncMock(side_effect=started_elsewhere)):
            result = await engine.manager.start_competition(competition.id, agent_ids=[agent.id])

        assert result.competition.id == competition.id
        assert result.competition.status == CompetitionStatus.ACTIVE.value
        assert result.agent_ids == [agent.id]

    @pytest.mark.asyncio
    async def test_losing_start_to_another_competition_conflicts(self, engine, make_agent):
        first = await engine.manager.create_competition("First")
        second = await engine.manager.create_competition("Second")
        activate = engine.competition_repository.mark_as_active

        async def first_wins(competition_id, start_date=None):
            await activate(first.id)
            return await activate(competition_id, start_date=start_date)

        with patch.object(engine.competition_repository, "mark_as_active", AsyncMock(side_effect=first_wins)):
            with pytest.raises(ConflictError, match=f"Another competition is already active: {first.id}"):
                await engine.manager.start_competition(second.id, agent_ids=[(await make_agent(name="b")).id])

        refreshed = await engine.competition_repository.find_by_id(second.id)
        assert refreshed.status == CompetitionStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_perps_start_disqualifies_underfunded_agents(self, engine, make_agent, perps_provider):
        funded = await make_agent(name="funded", wallet_address="0xfunded")
        broke = await make_agent(name="broke", wallet_address="0xbroke")
        perps_provider.summaries["0xfunded"] = AccountSummary(total_equity=500, total_pnl=0)
        perps_provider.summaries["0xbroke"] = AccountSummary(total_equity=120, total_pnl=0)
        competition = await engine.manager.create_competition(
            "Perps Cup",
            competition_type=CompetitionType.PERPETUAL_FUTURES.value,
            perps_config={"initial_capital": 500.0, "min_funding_threshold": 250.0},
        )

        result = await engine.manager.start_competition(competition.id, agent_ids=[funded.id, broke.id])

        assert result.agent_ids == [funded.id]
        assert result.disqualified[broke.id] == "Insufficient initial funding: $120.00 < $250.00 minimum"
        participation = await engine.competition_repository.get_participation(competition.id, broke.id)
        assert participation.status == ParticipationStatus.DISQUALIFIED.value

    @pytest.mark.asyncio
    async def test_perps_start_requires_wallets(self, engine, make_agent):
        agent = await make_agent(name="walletless")
        competition = await engine.manager.create_competition(
            "Perps Cup", competition_type=CompetitionType.PERPETUAL_FUTURES.value
        )

        with pytest.raises(ValidationError, match="have no wallet address"):
            await engine.manager.start_competition(competition.id, agent_ids=[agent.id])


# ============================================================
# END TESTS
# ============================================================

class TestEndCompetition:

    @pytest.mark.asyncio
    async def test_end_persists_leaderboard_scores_and_rewards(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup", rewards={1: 1000.0, 2: 500.0})
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])

        result = await engine.manager.end_competition(competition.id)

        assert result.competition.status == CompetitionStatus.ENDED.value
        assert [e.agent_id for e in result.leaderboard] == [agent.id]
        rows = await engine.leaderboard_repository.get_leaderboard(competition.id)
        assert len(rows) == 1
        assert rows[0].score == pytest.approx(100.0)

        refreshed = await engine.agent_repository.find_by_id(agent.id)
        assert refreshed.global_score == pytest.approx(62.5)

        rewards = await engine.leaderboard_repository.get_rewards(competition.id)
        assert rewards[0].agent_id == agent.id
        assert rewards[1].agent_id is None

    @pytest.mark.asyncio
    async def test_end_is_idempotent(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])
        first = await engine.manager.end_competition(competition.id)

        again = await engine.manager.end_competition(competition.id)

        assert again.competition.status == CompetitionStatus.ENDED.value
        assert again.leaderboard == first.leaderboard
        assert len(await engine.leaderboard_repository.get_leaderboard(competition.id)) == 1
        refreshed = await engine.agent_repository.find_by_id(agent.id)
        assert refreshed.global_score == pytest.approx(62.5)

    @pytest.mark.asyncio
    async def test_losing_end_returns_committed_result(self, engine, make_agent):
        """A caller whose ending write affects zero rows writes nothing and does not fail."""
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])

        insert = AsyncMock()
        with patch.object(engine.competition_repository, "mark_as_ended", AsyncMock(return_value=None)), \
                patch.object(engine.leaderboard_repository, "insert_leaderboard", insert):
            result = await engine.manager.end_competition(competition.id)

        insert.assert_not_awaited()
        assert result.competition.id == competition.id
        assert [e.agent_id for e in result.leaderboard] == [agent.id]

    @pytest.mark.asyncio
    async def test_resumes_from_ending(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])
        await engine.competition_repository.mark_as_ending(competition.id)

        result = await engine.manager.end_competition(competition.id)

        assert result.competition.status == CompetitionStatus.ENDED.value

    @pytest.mark.asyncio
    async def test_pending_competition_cannot_end(self, engine):
        competition = await engine.manager.create_competition("Spot Cup")

        with pytest.raises(ConflictError):
            await engine.manager.end_competition(competition.id)

    @pytest.mark.asyncio
    async def test_unknown_competition(self, engine):
        with pytest.raises(NotFoundError):
            await engine.manager.end_competition("missing")


# ============================================================
# PARTICIPATION TESTS
# ============================================================

class TestParticipation:

    @pytest.mark.asyncio
    async def test_join_requires_authentication(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")

        with pytest.raises(UnauthorizedError, match="Authentication required"):
            await engine.manager.join_competition(competition.id, agent.id)

    @pytest.mark.asyncio
    async def test_join_checks_ownership(self, engine, make_agent):
        agent = await make_agent(name="alpha", owner_id="owner-1")
        competition = await engine.manager.create_competition("Spot Cup")

        with pytest.raises(ForbiddenError, match="do not own this agent"):
            await engine.manager.join_competition(competition.id, agent.id, user_id="owner-2")

        with pytest.raises(ForbiddenError, match="does not match"):
            await engine.manager.join_competition(competition.id, agent.id, auth_agent_id="someone-else")

    @pytest.mark.asyncio
    async def test_join_leave_and_rejoin(self, engine, make_agent):
        agent = await make_agent(name="alpha", owner_id="owner-1")
        competition = await engine.manager.create_competition("Spot Cup")

        await engine.manager.join_competition(competition.id, agent.id, user_id="owner-1")
        with pytest.raises(ConflictError, match="already actively registered"):
            await engine.manager.join_competition(competition.id, agent.id, auth_agent_id=agent.id)

        assert await engine.manager.leave_competition(competition.id, agent.id, user_id="owner-1") is True
        assert await engine.manager.leave_competition(competition.id, agent.id, user_id="owner-1") is False

        participation = await engine.competition_repository.get_participation(competition.id, agent.id)
        assert participation.status == ParticipationStatus.WITHDRAWN.value
        assert participation.deactivation_reason.endswith("before it started")

        await engine.manager.join_competition(competition.id, agent.id, auth_agent_id=agent.id)
        assert await engine.competition_repository.is_agent_active(competition.id, agent.id)

    @pytest.mark.asyncio
    async def test_disqualified_agent_cannot_rejoin(self, engine, make_agent):
        agent = await make_agent(name="alpha", owner_id="owner-1")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.join_competition(competition.id, agent.id, user_id="owner-1")
        await engine.manager.remove_agent(competition.id, agent.id, "Wash trading")

        with pytest.raises(ForbiddenError, match="disqualified"):
            await engine.manager.join_competition(competition.id, agent.id, user_id="owner-1")
        assert await engine.competition_repository.count_agents_by_status(competition.id) == {"disqualified": 1}

    @pytest.mark.asyncio
    async def test_one_agent_per_owner(self, engine, make_agent):
        first = await make_agent(name="first", owner_id="owner-1")
        second = await make_agent(name="second", owner_id="owner-1")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.join_competition(competition.id, first.id, user_id="owner-1")

        with pytest.raises(OwnerAlreadyRegisteredError):
            await engine.manager.join_competition(competition.id, second.id, user_id="owner-1")

    @pytest.mark.asyncio
    async def test_participant_limit(self, engine, make_agent):
        first = await make_agent(name="first")
        second = await make_agent(name="second")
        competition = await engine.manager.create_competition("Spot Cup", max_participants=1)
        await engine.manager.join_competition(competition.id, first.id, auth_agent_id=first.id)

        with pytest.raises(ParticipantLimitReachedError, match="maximum participant limit"):
            await engine.manager.join_competition(competition.id, second.id, auth_agent_id=second.id)

    @pytest.mark.asyncio
    async def test_join_window(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition(
            "Spot Cup", join_end_date=utc_now() - timedelta(hours=1)
        )

        with pytest.raises(ConflictError, match="joining closed"):
            await engine.manager.join_competition(competition.id, agent.id, auth_agent_id=agent.id)

    @pytest.mark.asyncio
    async def test_cannot_join_started_competition(self, engine, make_agent):
        starter = await make_agent(name="starter")
        late = await make_agent(name="late")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[starter.id])

        with pytest.raises(ConflictError, match="already started or ended"):
            await engine.manager.join_competition(competition.id, late.id, auth_agent_id=late.id)

    @pytest.mark.asyncio
    async def test_minimum_stake(self, engine, make_agent, stake_provider):
        agent = await make_agent(name="staker", wallet_address="0xstake")
        competition = await engine.manager.create_competition("Staked Cup", minimum_stake=100.0)

        stake_provider.get_total_staked.return_value = Decimal("50")
        with pytest.raises(ForbiddenError, match="Insufficient stake"):
            await engine.manager.join_competition(competition.id, agent.id, auth_agent_id=agent.id)

        stake_provider.get_total_staked.return_value = Decimal("150")
        await engine.manager.join_competition(competition.id, agent.id, auth_agent_id=agent.id)
        stake_provider.get_total_staked.assert_awaited_with("0xstake")

    @pytest.mark.asyncio
    async def test_leave_ended_competition_forbidden(self, engine, make_agent):
        agent = await make_agent(name="alpha", owner_id="owner-1")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])
        await engine.manager.end_competition(competition.id)

        with pytest.raises(ForbiddenError, match="has ended"):
            await engine.manager.leave_competition(competition.id, agent.id, user_id="owner-1")

    @pytest.mark.asyncio
    async def test_reactivate_agent(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])
        await engine.manager.remove_agent(competition.id, agent.id)

        await engine.manager.reactivate_agent(competition.id, agent.id)

        assert await engine.competition_repository.is_agent_active(competition.id, agent.id)


# ============================================================
# SCHEDULED CHECK TESTS
# ============================================================

class TestScheduledChecks:

    @pytest.mark.asyncio
    async def test_due_competition_is_started(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition(
            "Scheduled", start_date=utc_now() - timedelta(minutes=5)
        )
        await engine.manager.join_competition(competition.id, agent.id, auth_agent_id=agent.id)

        result = await engine.manager.process_competition_start_date_checks()

        assert result is not None
        assert result.competition.id == competition.id
        assert result.competition.status == CompetitionStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_due_competition_without_agents_is_skipped(self, engine):
        competition = await engine.manager.create_competition(
            "Scheduled", start_date=utc_now() - timedelta(minutes=5)
        )

        assert await engine.manager.process_competition_start_date_checks() is None
        refreshed = await engine.competition_repository.find_by_id(competition.id)
        assert refreshed.status == CompetitionStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_overdue_competition_is_ended(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition(
            "Scheduled", end_date=utc_now() + timedelta(days=1)
        )
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])

        assert await engine.manager.process_competition_end_date_checks() == []
        ended = await engine.manager.process_competition_end_date_checks(now=utc_now() + timedelta(days=2))

        assert ended == [competition.id]
        refreshed = await engine.competition_repository.find_by_id(competition.id)
        assert refreshed.status == CompetitionStatus.ENDED.value

    @pytest.mark.asyncio
    async def test_scheduler_round_snapshots_active_competition(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])
        scheduler = engine.create_scheduler()

        await scheduler.run_snapshot_round()

        assert await engine.snapshot_repository.count_snapshots(competition.id) == 2
