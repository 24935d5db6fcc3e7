"""
Repositories over the engine's SQLAlchemy models.

Each repository wraps one ``Database``. Methods accepting an optional
``session`` join the caller's transaction when given one and otherwise run
in their own.
"""

from .agent import AgentRepository
from .balance import BalanceRepository, InitialBalance, TradeWithBalances
from .competition import CompetitionRepository
from .constraints import TradingConstraintsRepository
from .leaderboard import LeaderboardRepository
from .perps import PerpsRepository
from .snapshot import SnapshotRepository

__all__ = [
    "AgentRepository",
    "BalanceRepository",
    "InitialBalance",
    "TradeWithBalances",
    "CompetitionRepository",
    "TradingConstraintsRepository",
    "LeaderboardRepository",
    "PerpsRepository",
    "SnapshotRepository",
]
