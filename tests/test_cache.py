"""
Tests for the injected TTL cache and trading constraints service.
"""

from unittest.mock import AsyncMock

import pytest

from arena_engine.cache import TTLCache
from arena_engine.models import Competition
from arena_engine.trading.constraints import TradingConstraintsInput
from arena_engine.trading.prices import CachedPriceOracle

from conftest import USDC_ETH, WETH_ETH


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# ============================================================
# TTL CACHE TESTS
# ============================================================

class TestTTLCache:

    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("competition-1", "thresholds")

        clock.now = 59.9
        assert cache.get("competition-1") == "thresholds"

        clock.now = 60.0
        assert cache.get("competition-1") is None
        assert len(cache) == 0

    def test_least_recently_used_entry_is_evicted(self):
        cache = TTLCache(ttl_seconds=60, max_size=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache

    def test_invalidate_and_clear(self):
        cache = TTLCache(clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == 2

        cache.clear()
        assert len(cache) == 0

    def test_stats_count_hits_and_misses(self):
        cache = TTLCache(clock=FakeClock())
        cache.set("a", 1)
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    @pytest.mark.parametrize("ttl,max_size", [(0, 10), (60, 0)])
    def test_invalid_settings_are_rejected(self, ttl, max_size):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=ttl, max_size=max_size)


# ============================================================
# TRADING CONSTRAINTS TESTS
# ============================================================

class TestTradingConstraintsService:

    @pytest.mark.asyncio
    async def test_create_falls_back_to_configured_defaults(self, engine, test_config):
        competition = await engine.competition_repository.create(Competition(name="Defaults"))

        await engine.constraints.create_constraints(
            competition.id, TradingConstraintsInput(minimum_liquidity_usd=2500)
        )
        thresholds = await engine.constraints.get_constraints(competition.id)

        assert thresholds.minimum_liquidity_usd == 2500
        assert thresholds.minimum_pair_age_hours == test_config.default_minimum_pair_age_hours
        assert thresholds.minimum_fdv_usd == test_config.default_minimum_fdv_usd

    @pytest.mark.asyncio
    async def test_update_invalidates_cached_thresholds(self, engine):
        competition = await engine.competition_repository.create(Competition(name="Cached"))
        await engine.constraints.create_constraints(competition.id)

        before = await engine.constraints.get_constraints(competition.id)
        assert competition.id in engine.constraints_cache

        await engine.constraints.update_constraints(
            competition.id, TradingConstraintsInput(minimum_24h_volume_usd=42)
        )
        after = await engine.constraints.get_constraints(competition.id)

        assert after.minimum_24h_volume_usd == 42
        assert after.minimum_liquidity_usd == before.minimum_liquidity_usd

    @pytest.mark.asyncio
    async def test_missing_constraints_use_defaults(self, engine, test_config):
        thresholds = await engine.constraints.get_constraints_or_defaults("no-such-competition")

        assert thresholds.minimum_24h_volume_usd == test_config.default_minimum_24h_volume_usd

    @pytest.mark.asyncio
    async def test_upsert_keeps_existing_without_overrides(self, engine):
        competition = await engine.competition_repository.create(Competition(name="Upsert"))
        await engine.constraints.create_constraints(
            competition.id, TradingConstraintsInput(minimum_fdv_usd=7)
        )

        record = await engine.constraints.upsert_constraints(competition.id)

        assert record.minimum_fdv_usd == 7

    @pytest.mark.asyncio
    async def test_delete_removes_constraints(self, engine):
        competition = await engine.competition_repository.create(Competition(name="Delete"))
        await engine.constraints.create_constraints(competition.id)
        await engine.constraints.get_constraints(competition.id)

        assert await engine.constraints.delete_constraints(competition.id) is True
        assert await engine.constraints.get_constraints(competition.id) is None


# ============================================================
# PRICE CACHE TESTS
# ============================================================

class TestCachedPriceOracle:

    @pytest.mark.asyncio
    async def test_quotes_are_served_from_cache(self, price_oracle):
        clock = FakeClock()
        oracle = CachedPriceOracle(price_oracle, TTLCache(ttl_seconds=10, clock=clock))

        first = await oracle.get_price(WETH_ETH)
        price_oracle.set_price(WETH_ETH, 2500.0, symbol="WETH")
        second = await oracle.get_price(WETH_ETH)

        assert first.price == second.price == 2000.0

        clock.now = 10.0
        assert (await oracle.get_price(WETH_ETH)).price == 2500.0

    @pytest.mark.asyncio
    async def test_bulk_fetch_only_requests_misses(self, price_oracle):
        cache = TTLCache(ttl_seconds=10, clock=FakeClock())
        oracle = CachedPriceOracle(price_oracle, cache)
        await oracle.get_bulk_prices([USDC_ETH])

        price_oracle.get_bulk_prices = AsyncMock(return_value={})
        prices = await oracle.get_bulk_prices([USDC_ETH, WETH_ETH])

        price_oracle.get_bulk_prices.assert_awaited_once_with([WETH_ETH])
        assert list(prices) == [USDC_ETH]

    @pytest.mark.asyncio
    async def test_unknown_tokens_are_not_cached(self, price_oracle):
        cache = TTLCache(ttl_seconds=10, clock=FakeClock())
        oracle = CachedPriceOracle(price_oracle, cache)

        assert await oracle.get_price("0xnothing") is None
        assert len(cache) == 0
