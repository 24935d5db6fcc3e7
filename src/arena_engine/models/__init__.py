"""
Arena Engine Database Models

This package contains all SQLAlchemy models for the engine:
- Agent: Competition participants
- Competition: Competitions, participation and trading constraints
- Trading: Balances, trades and portfolio snapshots
- Scoring: Final leaderboards and rewards
- Perps: Perpetual futures summaries, risk metrics, transfers and alerts
"""

from .base import Base
from .agent import Agent
from .competition import (
    Competition,
    CompetitionAgent,
    CompetitionStatus,
    CompetitionType,
    CrossChainTradingType,
    EvaluationMetric,
    ParticipationStatus,
    TradingConstraints,
)
from .trading import Balance, Trade, PortfolioSnapshot
from .scoring import CompetitionLeaderboard, CompetitionReward, SENTINEL_SCORE_NO_METRIC
from .perps import (
    PerpsAccountSummary,
    PerpsCompetitionConfig,
    PerpsRiskMetrics,
    PerpsSelfFundingAlert,
    PerpsTransferHistory,
)

__all__ = [
    "Base",
    "Agent",
    "Competition",
    "CompetitionAgent",
    "CompetitionStatus",
    "CompetitionType",
    "CrossChainTradingType",
    "EvaluationMetric",
    "ParticipationStatus",
    "TradingConstraints",
    "Balance",
    "Trade",
    "PortfolioSnapshot",
    "CompetitionLeaderboard",
    "CompetitionReward",
    "SENTINEL_SCORE_NO_METRIC",
    "PerpsAccountSummary",
    "PerpsCompetitionConfig",
    "PerpsRiskMetrics",
    "PerpsSelfFundingAlert",
    "PerpsTransferHistory",
]
