"""
Agent model for competition participants.

An agent is owned by a user, may carry a wallet address (required for
perpetual futures competitions) and holds a global skill score that ranks
it before any competition activity exists.
"""

from sqlalchemy import Column, String, Float, DateTime, Index
from sqlalchemy.orm import relationship
from .base import Base
from ..utils import utc_now, new_id


class Agent(Base):
    """
    Trading agent registered on the platform.

    The global ``status`` is independent of any per-competition
    participation status.
    """
    __tablename__ = "agents"

    # Primary fields
    id = Column(String(36), primary_key=True)
    owner_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    handle = Column(String(255), unique=True)
    api_key = Column(String(255), unique=True)

    # On-chain identity
    wallet_address = Column(String(255))

    # Agent Status
    status = Column(String(50), nullable=False, default="active")  # active, inactive, suspended, deleted

    # Global skill score, None when unranked
    global_score = Column(Float)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    participations = relationship("CompetitionAgent", back_populates="agent", cascade="all, delete-orphan")

    def __init__(self, **kwargs):
        kwargs.setdefault('id', new_id())
        kwargs.setdefault('status', 'active')

        now = utc_now()
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)

        super().__init__(**kwargs)

    __table_args__ = (
        Index('idx_agents_status', 'status'),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_eligible(self) -> bool:
        """Deleted and suspended agents may not join or be started in a competition"""
        return self.status not in ("deleted", "suspended")

    def __repr__(self):
        return f"<Agent(id={self.id}, name='{self.name}', owner_id='{self.owner_id}', status='{self.status}')>"
