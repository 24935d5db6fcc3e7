import logging
from typing import Any, Dict, Optional

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Database
from ..models.competition import TradingConstraints
from ..utils import utc_now

logger = logging.getLogger(__name__)


class TradingConstraintsRepository:
    def __init__(self, database: Database):
        self.database = database

    async def create(self, values: Dict[str, Any], session: Optional[AsyncSession] = None) -> TradingConstraints:
        async with self.database.session_scope(session) as s:
            constraints = TradingConstraints(**values)
            s.add(constraints)
            await s.flush()
            return constraints

    async def find_by_competition_id(self, competition_id: str) -> Optional[TradingConstraints]:
        async with self.database.session_scope() as s:
            return await s.get(TradingConstraints, competition_id, populate_existing=True)

    async def update(self, competition_id: str, values: Dict[str, Any],
                     session: Optional[AsyncSession] = None) -> Optional[TradingConstraints]:
        async with self.database.session_scope(session) as s:
            result = await s.execute(
                update(TradingConstraints)
                .where(TradingConstraints.competition_id == competition_id)
                .values(updated_at=utc_now(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            return await s.get(TradingConstraints, competition_id, populate_existing=True)

    async def delete(self, competition_id: str) -> bool:
        async with self.database.session_scope() as s:
            result = await s.execute(
                delete(TradingConstraints).where(TradingConstraints.competition_id == competition_id)
            )
            return result.rowcount > 0
