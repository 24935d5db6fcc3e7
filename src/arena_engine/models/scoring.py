"""
Final standings and reward models.

``CompetitionLeaderboard`` rows are written once, inside the transaction
that moves a competition from ending to ended.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, ForeignKey, Index
from .base import Base
from ..utils import utc_now

# Persisted score for perps agents lacking the evaluation metric
SENTINEL_SCORE_NO_METRIC = -999999.0


class CompetitionLeaderboard(Base):
    """Persisted final ranking of one agent in one competition."""
    __tablename__ = "competitions_leaderboard"

    id = Column(Integer, primary_key=True, autoincrement=True)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)

    # Ranking
    rank = Column(Integer, nullable=False)
    score = Column(Float, nullable=False)
    total_agents = Column(Integer, nullable=False)

    # Performance
    pnl = Column(Float, nullable=False, default=0.0)
    starting_value = Column(Float, nullable=False, default=0.0)

    # Perps risk metrics
    calmar_ratio = Column(Float)
    sortino_ratio = Column(Float)
    simple_return = Column(Float)
    max_drawdown = Column(Float)
    downside_deviation = Column(Float)
    total_equity = Column(Float)
    has_risk_metrics = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('pnl', 0.0)
        kwargs.setdefault('starting_value', 0.0)
        kwargs.setdefault('has_risk_metrics', False)
        kwargs.setdefault('created_at', utc_now())

        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_leaderboard_competition_agent', 'competition_id', 'agent_id', unique=True),
        Index('idx_leaderboard_competition_rank', 'competition_id', 'rank'),
    )

    def __repr__(self):
        return f"<CompetitionLeaderboard(competition_id={self.competition_id}, agent_id={self.agent_id}, rank={self.rank})>"


class CompetitionReward(Base):
    """Reward attached to a final rank; ``agent_id`` is filled in when the competition ends."""
    __tablename__ = "competition_rewards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)
    rank = Column(Integer, nullable=False)
    reward = Column(Float, nullable=False)
    agent_id = Column(String(36), ForeignKey("agents.id"))

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __init__(self, **kwargs):
        now = utc_now()
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)

        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_rewards_competition_rank', 'competition_id', 'rank', unique=True),
    )

    def __repr__(self):
        return f"<CompetitionReward(competition_id={self.competition_id}, rank={self.rank}, agent_id={self.agent_id})>"
