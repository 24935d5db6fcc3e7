"""
Competition lifecycle, leaderboards and scheduling.
"""

from .leaderboard import (
    AgentMetrics,
    AgentRanking,
    InactiveAgentEntry,
    LeaderboardCalculator,
    LeaderboardEntry,
    persisted_score,
    updated_global_scores,
)
from .manager import CompetitionManager, EndResult, StakeProvider, StartResult
from .scheduler import CompetitionScheduler, SchedulerConfig

__all__ = [
    "AgentMetrics",
    "AgentRanking",
    "InactiveAgentEntry",
    "LeaderboardCalculator",
    "LeaderboardEntry",
    "persisted_score",
    "updated_global_scores",
    "CompetitionManager",
    "EndResult",
    "StakeProvider",
    "StartResult",
    "CompetitionScheduler",
    "SchedulerConfig",
]
