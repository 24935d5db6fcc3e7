"""
Tests for environment configuration and portfolio snapshots.
"""

import pytest

from arena_engine.competition.scheduler import SchedulerConfig
from arena_engine.config import Config


# ============================================================
# CONFIG TESTS
# ============================================================

class TestConfig:

    def test_defaults(self, monkeypatch):
        for key in ("ENVIRONMENT", "MAX_TRADE_PERCENTAGE", "INITIAL_USDC_BALANCE", "INITIAL_BALANCE_CHAINS"):
            monkeypatch.delenv(key, raising=False)

        config = Config()

        assert config.max_trade_percentage == 25
        assert config.default_minimum_fdv_usd == 1_000_000
        assert config.reconciliation_threshold_usd == 100
        assert config.initial_balances() == {"eth": 5000, "base": 5000, "svm": 5000}

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ValueError, match="DATABASE_URL"):
            Config()

    @pytest.mark.parametrize("key,value", [
        ("MAX_TRADE_PERCENTAGE", "0"),
        ("MAX_TRADE_PERCENTAGE", "150"),
        ("CROSS_CHAIN_TRADING_TYPE", "sometimes"),
        ("MONITOR_CONCURRENCY", "0"),
    ])
    def test_invalid_values_are_rejected(self, monkeypatch, key, value):
        monkeypatch.setenv(key, value)

        with pytest.raises(ValueError, match=key):
            Config()

    def test_reload_picks_up_environment(self, monkeypatch):
        config = Config()
        monkeypatch.setenv("INITIAL_BALANCE_CHAINS", "eth, polygon ,")
        config.load_config()

        assert config.initial_balance_chains == ["eth", "polygon"]

    def test_scheduler_config_from_env(self, monkeypatch):
        monkeypatch.setenv("SNAPSHOT_INTERVAL", "30")
        monkeypatch.delenv("LIFECYCLE_CHECK_INTERVAL", raising=False)

        scheduler_config = SchedulerConfig.from_env()

        assert scheduler_config.snapshot_interval == 30
        assert scheduler_config.lifecycle_check_interval == 60


# ============================================================
# SNAPSHOT TESTS
# ============================================================

class TestPortfolioSnapshots:

    @pytest.mark.asyncio
    async def test_ended_competition_requires_force(self, engine, make_agent):
        agent = await make_agent(name="alpha")
        competition = await engine.manager.create_competition("Spot Cup")
        await engine.manager.start_competition(competition.id, agent_ids=[agent.id])
        await engine.manager.end_competition(competition.id)
        before = await engine.snapshot_repository.count_snapshots(competition.id)

        assert await engine.snapshotter.take_portfolio_snapshots(competition.id) == {}
        assert await engine.snapshot_repository.count_snapshots(competition.id) == before

        values = await engine.snapshotter.take_portfolio_snapshots(competition.id, force=True)
        assert values == {agent.id: pytest.approx(100.0)}
        assert await engine.snapshot_repository.count_snapshots(competition.id) == before + 1
