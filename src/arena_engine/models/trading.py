"""
Trading models: balances, executed trades and portfolio snapshots.

Balances are mutated only inside the trade transaction or a competition
start reset. Trades and snapshots are append-only.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text, ForeignKey, Index, CheckConstraint
from .base import Base
from ..utils import utc_now, new_id


class Balance(Base):
    """Amount of one token held by an agent inside one competition."""
    __tablename__ = "balances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)
    token_address = Column(String(255), nullable=False)
    amount = Column(Float, nullable=False, default=0.0)
    symbol = Column(String(50))
    specific_chain = Column(String(50))

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('amount', 0.0)

        now = utc_now()
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)

        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_balance_agent_competition_token', 'agent_id', 'competition_id', 'token_address', unique=True),
        CheckConstraint('amount >= 0', name='ck_balances_amount_non_negative'),
    )

    def __repr__(self):
        return f"<Balance(agent_id={self.agent_id}, token='{self.token_address}', amount={self.amount})>"


class Trade(Base):
    """
    Immutable record of one simulated trade.

    ``price`` is the exchange rate (to_amount / from_amount) and is zero
    for burns.
    """
    __tablename__ = "trades"

    # Primary fields
    id = Column(String(36), primary_key=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)

    # Token details
    from_token = Column(String(255), nullable=False)
    to_token = Column(String(255), nullable=False)
    from_token_symbol = Column(String(50))
    to_token_symbol = Column(String(50))

    # Amounts
    from_amount = Column(Float, nullable=False)
    to_amount = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    trade_amount_usd = Column(Float, nullable=False)

    # Execution
    success = Column(Boolean, nullable=False, default=True)
    reason = Column(Text, nullable=False)
    error = Column(Text)

    # Chains
    from_chain = Column(String(20))
    to_chain = Column(String(20))
    from_specific_chain = Column(String(50))
    to_specific_chain = Column(String(50))

    timestamp = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('id', new_id())
        kwargs.setdefault('success', True)
        kwargs.setdefault('timestamp', utc_now())

        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_trades_agent_competition', 'agent_id', 'competition_id'),
        Index('idx_trades_competition_timestamp', 'competition_id', 'timestamp'),
    )

    @property
    def is_burn(self) -> bool:
        return self.to_amount == 0 and self.price == 0

    def __repr__(self):
        return (
            f"<Trade(id={self.id}, agent_id={self.agent_id}, {self.from_amount} {self.from_token_symbol} "
            f"-> {self.to_amount} {self.to_token_symbol})>"
        )


class PortfolioSnapshot(Base):
    """
    Point-in-time portfolio value of an agent in a competition.

    The earliest snapshot of an agent is its starting value.
    """
    __tablename__ = "portfolio_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False)
    competition_id = Column(String(36), ForeignKey("competitions.id"), nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    total_value = Column(Float, nullable=False)

    def __init__(self, **kwargs):
        kwargs.setdefault('timestamp', utc_now())
        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_snapshots_competition_agent_timestamp', 'competition_id', 'agent_id', 'timestamp'),
    )

    def __repr__(self):
        return f"<PortfolioSnapshot(agent_id={self.agent_id}, timestamp={self.timestamp}, value={self.total_value})>"
