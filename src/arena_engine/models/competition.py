"""
Competition models.

A competition moves through pending, active, ending and ended. Agents
take part through ``CompetitionAgent`` rows, and each competition owns one
``TradingConstraints`` row with its token eligibility thresholds.
"""

from enum import Enum
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from .base import Base
from ..utils import utc_now, new_id, as_utc


class CompetitionType(str, Enum):
    TRADING = "trading"
    PERPETUAL_FUTURES = "perpetual_futures"


class CompetitionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"


class CrossChainTradingType(str, Enum):
    ALLOW_ALL = "allowAll"
    DISALLOW_X_PARENT = "disallowXParent"
    DISALLOW_ALL = "disallowAll"


class EvaluationMetric(str, Enum):
    CALMAR_RATIO = "calmar_ratio"
    SORTINO_RATIO = "sortino_ratio"
    SIMPLE_RETURN = "simple_return"


class ParticipationStatus(str, Enum):
    ACTIVE = "active"
    WITHDRAWN = "withdrawn"
    DISQUALIFIED = "disqualified"


class Competition(Base):
    """
    Trading competition.

    Supports two formats:
    - trading: spot paper trading against internal balances
    - perpetual_futures: equity sourced from an external derivatives account
    """
    __tablename__ = "competitions"

    # Primary fields
    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text)

    # Competition Configuration
    type = Column(String(50), nullable=False, default=CompetitionType.TRADING.value)
    cross_chain_trading_type = Column(String(50), nullable=False, default=CrossChainTradingType.DISALLOW_ALL.value)
    evaluation_metric = Column(String(50), nullable=False, default=EvaluationMetric.CALMAR_RATIO.value)

    # Scheduling
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))
    join_start_date = Column(DateTime(timezone=True))
    join_end_date = Column(DateTime(timezone=True))

    # Competition Status
    status = Column(String(50), nullable=False, default=CompetitionStatus.PENDING.value)

    # Participant Limits
    max_participants = Column(Integer)
    registered_participants = Column(Integer, nullable=False, default=0)
    minimum_stake = Column(Float)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    participants = relationship("CompetitionAgent", back_populates="competition", cascade="all, delete-orphan")

    def __init__(self, **kwargs):
        kwargs.setdefault('id', new_id())
        kwargs.setdefault('type', CompetitionType.TRADING.value)
        kwargs.setdefault('status', CompetitionStatus.PENDING.value)
        kwargs.setdefault('cross_chain_trading_type', CrossChainTradingType.DISALLOW_ALL.value)
        kwargs.setdefault('evaluation_metric', EvaluationMetric.CALMAR_RATIO.value)
        kwargs.setdefault('registered_participants', 0)

        now = utc_now()
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)

        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_competitions_status_start', 'status', 'start_date'),
        # At most one active competition, enforced by the store itself
        Index(
            'uq_competitions_single_active', 'status', unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    @property
    def is_perps(self) -> bool:
        return self.type == CompetitionType.PERPETUAL_FUTURES.value

    @property
    def has_ended_by_date(self) -> bool:
        """True once the scheduled end date is in the past"""
        end_date = as_utc(self.end_date)
        return end_date is not None and utc_now() > end_date

    def __repr__(self):
        return f"<Competition(id={self.id}, name='{self.name}', type='{self.type}', status='{self.status}')>"


class CompetitionAgent(Base):
    """
    Agent participation in a competition.

    Leaving or removal never deletes the row; it flips ``status`` and
    records why.
    """
    __tablename__ = "competition_agents"

    # Primary fields
    id = Column(Integer, primary_key=True, autoincrement=True)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False, index=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False, index=True)

    # Status Tracking
    status = Column(String(50), nullable=False, default=ParticipationStatus.ACTIVE.value)
    deactivation_reason = Column(String(500))
    deactivated_at = Column(DateTime(timezone=True))

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    agent = relationship("Agent", back_populates="participations")
    competition = relationship("Competition", back_populates="participants")

    def __init__(self, **kwargs):
        kwargs.setdefault('status', ParticipationStatus.ACTIVE.value)

        now = utc_now()
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)

        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_competition_agent', 'competition_id', 'agent_id', unique=True),
        Index('idx_competition_agent_status', 'competition_id', 'status'),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ParticipationStatus.ACTIVE.value

    def __repr__(self):
        return f"<CompetitionAgent(competition_id={self.competition_id}, agent_id={self.agent_id}, status='{self.status}')>"


class TradingConstraints(Base):
    """
    Token eligibility thresholds for one competition.

    A threshold of zero disables the corresponding check.
    """
    __tablename__ = "trading_constraints"

    competition_id = Column(String(36), ForeignKey("competitions.id"), primary_key=True)
    minimum_pair_age_hours = Column(Float, nullable=False)
    minimum_24h_volume_usd = Column(Float, nullable=False)
    minimum_liquidity_usd = Column(Float, nullable=False)
    minimum_fdv_usd = Column(Float, nullable=False)
    min_trades_per_day = Column(Integer)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __init__(self, **kwargs):
        now = utc_now()
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)

        super().__init__(**kwargs)

    def __repr__(self):
        return (
            f"<TradingConstraints(competition_id={self.competition_id}, "
            f"pair_age={self.minimum_pair_age_hours}, liquidity={self.minimum_liquidity_usd})>"
        )
