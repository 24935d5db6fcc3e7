"""
Shared fixtures for the arena engine test suite.

============================================================
PURPOSE
============================================================
Every test runs against a fresh in-memory SQLite database
(aiosqlite) created from the model metadata, with fake price
oracle and perps provider implementations standing in for
the external services. Concurrency tests use a file-backed
database so each session holds its own connection.

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from arena_engine.chains import SPECIFIC_CHAIN_TOKENS, BlockchainType, normalize_token_address
from arena_engine.config import Config
from arena_engine.db import Database
from arena_engine.engine import ArenaEngine
from arena_engine.models import Agent
from arena_engine.perps.provider import AccountSummary, Transfer
from arena_engine.trading.prices import PriceReport
from arena_engine.utils import new_id


USDC_ETH = SPECIFIC_CHAIN_TOKENS["eth"]["usdc"]
USDT_ETH = SPECIFIC_CHAIN_TOKENS["eth"]["usdt"]
WETH_ETH = SPECIFIC_CHAIN_TOKENS["eth"]["eth"]
SOL_SVM = SPECIFIC_CHAIN_TOKENS["svm"]["sol"]
SMALL_CAP_TOKEN = "0x1111111111111111111111111111111111111111"
BURN_TOKEN = "0x000000000000000000000000000000000000dEaD"


# ============================================================
# FAKE PROVIDERS
# ============================================================

class FakePriceOracle:
    """Static price table keyed by normalized token address."""

    def __init__(self, prices: Optional[Dict[str, PriceReport]] = None):
        self.prices: Dict[str, PriceReport] = {
            normalize_token_address(token): report for token, report in (prices or {}).items()
        }

    def set_price(self, token: str, price: float, symbol: str = "", specific_chain: str = "eth", **market):
        chain = BlockchainType.SVM if specific_chain == "svm" else BlockchainType.EVM
        self.prices[normalize_token_address(token)] = PriceReport(
            token=token,
            price=price,
            symbol=symbol,
            chain=chain,
            specific_chain=specific_chain,
            **market,
        )

    async def get_price(self, token: str, chain: Optional[BlockchainType] = None,
                        specific_chain: Optional[str] = None) -> Optional[PriceReport]:
        return self.prices.get(normalize_token_address(token))

    async def get_bulk_prices(self, tokens: Sequence[str]) -> Dict[str, PriceReport]:
        quotes = {token: self.prices.get(normalize_token_address(token)) for token in tokens}
        return {token: report for token, report in quotes.items() if report is not None}


class FakePerpsProvider:
    """Perps venue with account summaries and transfer history per wallet."""

    def __init__(self):
        self.summaries: Dict[str, AccountSummary] = {}
        self.transfers: Dict[str, List[Transfer]] = {}

    async def get_account_summary(self, wallet_address: str) -> AccountSummary:
        if wallet_address not in self.summaries:
            raise RuntimeError(f"Unknown wallet {wallet_address}")
        return self.summaries[wallet_address]

    async def get_transfer_history(self, wallet_address: str, since: datetime) -> List[Transfer]:
        return list(self.transfers.get(wallet_address, []))


class SummaryOnlyPerpsProvider:
    """Perps venue without transfer history support."""

    def __init__(self):
        self.summaries: Dict[str, AccountSummary] = {}

    async def get_account_summary(self, wallet_address: str) -> AccountSummary:
        return self.summaries[wallet_address]


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def test_config():
    """Small, deterministic configuration: 100 USDC on eth, 50% size cap."""
    config = Config()
    config.initial_usdc_balance = 100.0
    config.initial_balance_chains = ["eth"]
    config.max_trade_percentage = 50.0
    config.price_cache_ttl_seconds = 0
    config.reconciliation_threshold_usd = 100.0
    config.critical_amount_threshold_usd = 500.0
    config.transfer_threshold_usd = 0.0
    config.monitor_concurrency = 4
    return config


@pytest.fixture
def price_oracle():
    oracle = FakePriceOracle()
    oracle.set_price(USDC_ETH, 1.0, symbol="USDC")
    oracle.set_price(USDT_ETH, 1.0, symbol="USDT")
    oracle.set_price(WETH_ETH, 2000.0, symbol="WETH")
    return oracle


@pytest.fixture
def perps_provider():
    return FakePerpsProvider()


@pytest.fixture
def stake_provider():
    provider = AsyncMock()
    provider.get_total_staked = AsyncMock(return_value=Decimal("0"))
    return provider


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory database with all tables."""
    db = Database("sqlite+aiosqlite://")
    await db.create_tables()
    yield db
    await db.close()


def build_engine(database, price_oracle, perps_provider, stake_provider, config) -> ArenaEngine:
    arena = ArenaEngine(
        database,
        price_oracle,
        perps_provider=perps_provider,
        stake_provider=stake_provider,
        config=config,
    )
    # Midpoint of the slippage jitter
    arena.trading.random_source = lambda: 0.5
    return arena


@pytest_asyncio.fixture
async def engine(database, price_oracle, perps_provider, stake_provider, test_config):
    arena = build_engine(database, price_oracle, perps_provider, stake_provider, test_config)
    yield arena
    arena.constraints_cache.clear()


@pytest_asyncio.fixture
async def file_database(tmp_path):
    """
    File-backed database where every session gets its own connection.

    Concurrent sessions really run in parallel transactions here, unlike
    the in-memory database whose sessions share one connection.
    """
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'arena.db'}")
    await db.create_tables()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def file_engine(file_database, price_oracle, perps_provider, stake_provider, test_config):
    arena = build_engine(file_database, price_oracle, perps_provider, stake_provider, test_config)
    yield arena
    arena.constraints_cache.clear()


@pytest.fixture
def make_agent(engine):
    """Factory creating agents in the test database."""

    async def _make_agent(name: str = "agent", owner_id: Optional[str] = None,
                          wallet_address: Optional[str] = None, global_score: Optional[float] = None,
                          status: str = "active") -> Agent:
        return await engine.agent_repository.create(Agent(
            owner_id=owner_id or new_id(),
            name=name,
            wallet_address=wallet_address,
            global_score=global_score,
            status=status,
        ))

    return _make_agent
