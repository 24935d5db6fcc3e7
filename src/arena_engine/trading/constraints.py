"""
Per-competition trading constraints.

Thresholds that gate which destination tokens a trade may buy: minimum pair
age, 24h volume, liquidity and fully-diluted valuation. Reads go through an
injected ``TTLCache``; every write path invalidates the competition's entry.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import TTLCache
from ..config import Config
from ..models.competition import TradingConstraints
from ..repositories.constraints import TradingConstraintsRepository

logger = logging.getLogger(__name__)


class TradingConstraintsInput(BaseModel):
    """Caller-supplied overrides; unset fields fall back to system defaults on create."""

    minimum_pair_age_hours: Optional[float] = Field(default=None, ge=0)
    minimum_24h_volume_usd: Optional[float] = Field(default=None, ge=0)
    minimum_liquidity_usd: Optional[float] = Field(default=None, ge=0)
    minimum_fdv_usd: Optional[float] = Field(default=None, ge=0)
    min_trades_per_day: Optional[int] = Field(default=None, ge=0)

    def has_overrides(self) -> bool:
        return bool(self.model_dump(exclude_none=True))


@dataclass(frozen=True)
class ConstraintThresholds:
    minimum_pair_age_hours: float
    minimum_24h_volume_usd: float
    minimum_liquidity_usd: float
    minimum_fdv_usd: float
    min_trades_per_day: Optional[int] = None

    @classmethod
    def from_record(cls, record: TradingConstraints) -> "ConstraintThresholds":
        return cls(
            minimum_pair_age_hours=float(record.minimum_pair_age_hours),
            minimum_24h_volume_usd=float(record.minimum_24h_volume_usd),
            minimum_liquidity_usd=float(record.minimum_liquidity_usd),
            minimum_fdv_usd=float(record.minimum_fdv_usd),
            min_trades_per_day=record.min_trades_per_day,
        )


class TradingConstraintsService:
    def __init__(self, repository: TradingConstraintsRepository, config: Config, cache: TTLCache):
        self.repository = repository
        self.config = config
        self.cache = cache

    def default_thresholds(self) -> ConstraintThresholds:
        return ConstraintThresholds(
            minimum_pair_age_hours=self.config.default_minimum_pair_age_hours,
            minimum_24h_volume_usd=self.config.default_minimum_24h_volume_usd,
            minimum_liquidity_usd=self.config.default_minimum_liquidity_usd,
            minimum_fdv_usd=self.config.default_minimum_fdv_usd,
        )

    async def create_constraints(self, competition_id: str,
                                 overrides: Optional[TradingConstraintsInput] = None,
                                 session: Optional[AsyncSession] = None) -> TradingConstraints:
        overrides = overrides or TradingConstraintsInput()
        defaults = self.default_thresholds()
        values = {
            "competition_id": competition_id,
            "minimum_pair_age_hours": _pick(overrides.minimum_pair_age_hours, defaults.minimum_pair_age_hours),
            "minimum_24h_volume_usd": _pick(overrides.minimum_24h_volume_usd, defaults.minimum_24h_volume_usd),
            "minimum_liquidity_usd": _pick(overrides.minimum_liquidity_usd, defaults.minimum_liquidity_usd),
            "minimum_fdv_usd": _pick(overrides.minimum_fdv_usd, defaults.minimum_fdv_usd),
            "min_trades_per_day": overrides.min_trades_per_day,
        }

        record = await self.repository.create(values, session=session)
        self.cache.invalidate(competition_id)
        logger.info(f"Created trading constraints for competition {competition_id}")
        return record

    async def get_constraints(self, competition_id: str) -> Optional[ConstraintThresholds]:
        cached = self.cache.get(competition_id)
        if cached is not None:
            return cached

        record = await self.repository.find_by_competition_id(competition_id)
        if record is None:
            return None

        thresholds = ConstraintThresholds.from_record(record)
        self.cache.set(competition_id, thresholds)
        return thresholds

    async def get_constraints_or_defaults(self, competition_id: str) -> ConstraintThresholds:
        thresholds = await self.get_constraints(competition_id)
        if thresholds is None:
            logger.debug(f"No trading constraints for competition {competition_id}, using defaults")
            return self.default_thresholds()
        return thresholds

    async def update_constraints(self, competition_id: str, overrides: TradingConstraintsInput,
                                 session: Optional[AsyncSession] = None) -> Optional[TradingConstraints]:
        values = overrides.model_dump(exclude_none=True)
        if not values:
            return await self.repository.find_by_competition_id(competition_id)

        record = await self.repository.update(competition_id, values, session=session)
        self.cache.invalidate(competition_id)
        if record is not None:
            logger.info(f"Updated trading constraints for competition {competition_id}: {values}")
        return record

    async def upsert_constraints(self, competition_id: str,
                                 overrides: Optional[TradingConstraintsInput] = None) -> TradingConstraints:
        """Create constraints when absent; update only when overrides were supplied."""
        existing = await self.repository.find_by_competition_id(competition_id)
        if existing is None:
            return await self.create_constraints(competition_id, overrides)

        if overrides is not None and overrides.has_overrides():
            updated = await self.update_constraints(competition_id, overrides)
            return updated or existing

        return existing

    async def delete_constraints(self, competition_id: str) -> bool:
        deleted = await self.repository.delete(competition_id)
        self.cache.invalidate(competition_id)
        return deleted


def _pick(value: Optional[float], default: float) -> float:
    return default if value is None else value
