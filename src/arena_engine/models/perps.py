"""
Perpetual futures models.

Equity for perps competitions comes from an external account provider.
These tables hold the synced account summaries, computed risk metrics,
wallet transfer audit rows and self-funding alerts.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text, JSON, ForeignKey, Index
from .base import Base
from ..utils import utc_now


class PerpsCompetitionConfig(Base):
    """Per-competition perps settings; a null self-funding threshold disables monitoring."""
    __tablename__ = "perps_competition_configs"

    competition_id = Column(String(36), ForeignKey("competitions.id"), primary_key=True)
    data_source = Column(String(100), nullable=False, default="external")
    initial_capital = Column(Float, nullable=False, default=500.0)
    self_funding_threshold_usd = Column(Float)
    min_funding_threshold = Column(Float)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('data_source', 'external')
        kwargs.setdefault('initial_capital', 500.0)

        now = utc_now()
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)

        super().__init__(**kwargs)

    def __repr__(self):
        return f"<PerpsCompetitionConfig(competition_id={self.competition_id}, initial_capital={self.initial_capital})>"


class PerpsAccountSummary(Base):
    __tablename__ = "perps_account_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)
    total_equity = Column(Float, nullable=False)
    total_pnl = Column(Float)
    initial_capital = Column(Float)
    timestamp = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('timestamp', utc_now())
        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_perps_summaries_competition_agent_ts', 'competition_id', 'agent_id', 'timestamp'),
    )

    def __repr__(self):
        return f"<PerpsAccountSummary(agent_id={self.agent_id}, equity={self.total_equity})>"


class PerpsRiskMetrics(Base):
    """Latest risk-adjusted metrics of one agent in one competition."""
    __tablename__ = "perps_risk_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)

    simple_return = Column(Float)
    annualized_return = Column(Float)
    max_drawdown = Column(Float)
    calmar_ratio = Column(Float)
    sortino_ratio = Column(Float)
    downside_deviation = Column(Float)
    snapshot_count = Column(Integer, nullable=False, default=0)

    calculated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('snapshot_count', 0)
        kwargs.setdefault('calculated_at', utc_now())
        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_perps_risk_metrics_agent_competition', 'agent_id', 'competition_id', unique=True),
    )

    @property
    def has_risk_metrics(self) -> bool:
        return self.calmar_ratio is not None or self.sortino_ratio is not None

    def __repr__(self):
        return f"<PerpsRiskMetrics(agent_id={self.agent_id}, calmar={self.calmar_ratio}, sortino={self.sortino_ratio})>"


class PerpsTransferHistory(Base):
    """Audit row for a wallet deposit or withdrawal observed during a competition."""
    __tablename__ = "perps_transfer_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)
    type = Column(String(20), nullable=False)  # deposit, withdraw
    amount = Column(Float, nullable=False)
    asset = Column(String(50), nullable=False, default="USDC")
    from_address = Column(String(255))
    to_address = Column(String(255))
    tx_hash = Column(String(255), nullable=False)
    transfer_timestamp = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('asset', 'USDC')
        kwargs.setdefault('created_at', utc_now())
        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_transfer_history_competition_tx', 'competition_id', 'tx_hash', unique=True),
        Index('idx_transfer_history_agent', 'agent_id', 'competition_id'),
    )

    def __repr__(self):
        return f"<PerpsTransferHistory(agent_id={self.agent_id}, type='{self.type}', amount={self.amount})>"


class PerpsSelfFundingAlert(Base):
    """
    Suspected injection of external capital into a competition account.

    Created by the self-funding monitor; only a human reviewer sets the
    review fields.
    """
    __tablename__ = "perps_self_funding_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)

    # Reconciliation
    expected_equity = Column(Float, nullable=False)
    actual_equity = Column(Float, nullable=False)
    unexplained_amount = Column(Float, nullable=False)
    account_snapshot = Column(JSON)

    # Classification
    detection_method = Column(String(50), nullable=False)  # transfer_history, balance_reconciliation
    confidence = Column(String(20), nullable=False)  # high, medium, low
    severity = Column(String(20), nullable=False)  # critical, warning
    evidence = Column(JSON)
    note = Column(Text)

    # Review
    reviewed = Column(Boolean, nullable=False, default=False)
    reviewed_at = Column(DateTime(timezone=True))
    reviewed_by = Column(String(255))
    action_taken = Column(String(100))

    detected_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('reviewed', False)
        kwargs.setdefault('detected_at', utc_now())
        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_self_funding_alerts_competition_agent', 'competition_id', 'agent_id'),
        Index('idx_self_funding_alerts_reviewed', 'reviewed'),
    )

    def __repr__(self):
        return (
            f"<PerpsSelfFundingAlert(agent_id={self.agent_id}, method='{self.detection_method}', "
            f"severity='{self.severity}', reviewed={self.reviewed})>"
        )
