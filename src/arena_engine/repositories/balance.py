"""
Balance and trade persistence.

``create_trade_with_balances`` is the only path that moves tokens between
balances. The debit is a conditional UPDATE (``amount >= :amount``) so two
concurrent trades by the same agent can never both spend the same funds, and
the credit is an INSERT .. ON CONFLICT upsert so two first buys of the same
token add up in a single row.

Token addresses are stored in the form ``normalize_token_address`` returns.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update, delete, and_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ..chains import normalize_token_address
from ..db import Database
from ..errors import PolicyViolationError
from ..models.trading import Balance, Trade
from ..utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class InitialBalance:
    token_address: str
    amount: float
    symbol: str
    specific_chain: str


@dataclass
class TradeWithBalances:
    trade: Trade
    from_balance: float
    to_balance: float


class BalanceRepository:
    def __init__(self, database: Database):
        self.database = database

    async def get_balance(self, agent_id: str, competition_id: str, token_address: str) -> Optional[Balance]:
        token_address = normalize_token_address(token_address)
        async with self.database.session_scope() as s:
            return await s.scalar(
                select(Balance).where(and_(
                    Balance.agent_id == agent_id,
                    Balance.competition_id == competition_id,
                    Balance.token_address == token_address,
                ))
            )

    async def get_agent_balances(self, agent_id: str, competition_id: str) -> List[Balance]:
        async with self.database.session_scope() as s:
            result = await s.execute(
                select(Balance)
                .where(and_(Balance.agent_id == agent_id, Balance.competition_id == competition_id))
                .order_by(Balance.token_address.asc())
            )
            return list(result.scalars().all())

    async def get_balances_for_agents(self, competition_id: str, agent_ids: List[str]) -> Dict[str, List[Balance]]:
        """All balances for a set of agents in one query, grouped by agent"""
        grouped: Dict[str, List[Balance]] = {agent_id: [] for agent_id in agent_ids}
        if not agent_ids:
            return grouped

        async with self.database.session_scope() as s:
            result = await s.execute(
                select(Balance).where(and_(
                    Balance.competition_id == competition_id,
                    Balance.agent_id.in_(agent_ids),
                ))
            )
            for balance in result.scalars().all():
                grouped.setdefault(balance.agent_id, []).append(balance)
        return grouped

    async def reset_agent_balances(self, agent_id: str, competition_id: str,
                                   initial_balances: List[InitialBalance]) -> None:
        """Replace every balance of the agent in the competition with the starting allocation."""
        async with self.database.get_session() as s:
            await s.execute(
                delete(Balance).where(and_(
                    Balance.agent_id == agent_id,
                    Balance.competition_id == competition_id,
                ))
            )
            for initial in initial_balances:
                s.add(Balance(
                    agent_id=agent_id,
                    competition_id=competition_id,
                    token_address=normalize_token_address(initial.token_address),
                    amount=initial.amount,
                    symbol=initial.symbol,
                    specific_chain=initial.specific_chain,
                ))

    async def create_trade_with_balances(self, trade: Trade, to_symbol: Optional[str] = None,
                                         to_specific_chain: Optional[str] = None) -> TradeWithBalances:
        """
        Debit the source balance, credit the destination (skipped for burns)
        and insert the trade in one transaction.

        Raises:
            PolicyViolationError: the source balance no longer covers the amount
        """
        trade.from_token = normalize_token_address(trade.from_token)
        trade.to_token = normalize_token_address(trade.to_token)

        async with self.database.get_session() as s:
            now = utc_now()
            debit = await s.execute(
                update(Balance)
                .where(and_(
                    Balance.agent_id == trade.agent_id,
                    Balance.competition_id == trade.competition_id,
                    Balance.token_address == trade.from_token,
                    Balance.amount >= trade.from_amount,
                ))
                .values(amount=Balance.amount - trade.from_amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if debit.rowcount != 1:
                raise PolicyViolationError(
                    "Insufficient balance",
                    details={"token": trade.from_token, "requested": trade.from_amount},
                )

            if trade.to_amount > 0:
                await s.execute(self._credit_statement(
                    trade.agent_id, trade.competition_id, trade.to_token, trade.to_amount,
                    to_symbol, to_specific_chain, now,
                ))

            s.add(trade)
            await s.flush()

            from_balance = await self._amount(s, trade.agent_id, trade.competition_id, trade.from_token)
            to_balance = await self._amount(s, trade.agent_id, trade.competition_id, trade.to_token)

        logger.debug(
            f"Recorded trade {trade.id}: {trade.from_amount} {trade.from_token} -> "
            f"{trade.to_amount} {trade.to_token}"
        )
        return TradeWithBalances(trade=trade, from_balance=from_balance, to_balance=to_balance)

    def _credit_statement(self, agent_id: str, competition_id: str, token_address: str, amount: float,
                          symbol: Optional[str], specific_chain: Optional[str], now: datetime):
        dialect = postgresql if self.database.engine.dialect.name == "postgresql" else sqlite
        stmt = dialect.insert(Balance).values(
            agent_id=agent_id,
            competition_id=competition_id,
            token_address=token_address,
            amount=amount,
            symbol=symbol,
            specific_chain=specific_chain,
            created_at=now,
            updated_at=now,
        )
        return stmt.on_conflict_do_update(
            index_elements=[Balance.agent_id, Balance.competition_id, Balance.token_address],
            set_={"amount": Balance.amount + stmt.excluded.amount, "updated_at": stmt.excluded.updated_at},
        )

    @staticmethod
    async def _amount(session: AsyncSession, agent_id: str, competition_id: str, token_address: str) -> float:
        amount = await session.scalar(
            select(Balance.amount).where(and_(
                Balance.agent_id == agent_id,
                Balance.competition_id == competition_id,
                Balance.token_address == token_address,
            ))
        )
        return float(amount or 0.0)

    async def get_trades(self, competition_id: str, agent_id: Optional[str] = None,
                         limit: int = 100, offset: int = 0) -> List[Trade]:
        async with self.database.session_scope() as s:
            query = select(Trade).where(Trade.competition_id == competition_id)
            if agent_id:
                query = query.where(Trade.agent_id == agent_id)
            result = await s.execute(
                query.order_by(Trade.timestamp.desc()).limit(limit).offset(offset)
            )
            return list(result.scalars().all())
