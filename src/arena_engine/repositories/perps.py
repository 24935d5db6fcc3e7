"""
Perpetual futures persistence: competition config, synced account
summaries, risk metrics, transfer audit rows and self-funding alerts.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, and_, case, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import Database
from ..models.competition import CompetitionAgent, ParticipationStatus
from ..models.perps import (
    PerpsAccountSummary,
    PerpsCompetitionConfig,
    PerpsRiskMetrics,
    PerpsSelfFundingAlert,
    PerpsTransferHistory,
)
from ..utils import utc_now

logger = logging.getLogger(__name__)

METRIC_COLUMNS = {
    "calmar_ratio": PerpsRiskMetrics.calmar_ratio,
    "sortino_ratio": PerpsRiskMetrics.sortino_ratio,
    "simple_return": PerpsRiskMetrics.simple_return,
}


class PerpsRepository:
    def __init__(self, database: Database):
        self.database = database

    # Config

    async def get_config(self, competition_id: str) -> Optional[PerpsCompetitionConfig]:
        async with self.database.session_scope() as s:
            return await s.get(PerpsCompetitionConfig, competition_id, populate_existing=True)

    async def create_config(self, config: PerpsCompetitionConfig,
                            session: Optional[AsyncSession] = None) -> PerpsCompetitionConfig:
        async with self.database.session_scope(session) as s:
            s.add(config)
            await s.flush()
            return config

    # Account summaries

    async def save_account_summaries(self, summaries: Sequence[PerpsAccountSummary]) -> int:
        if not summaries:
            return 0
        async with self.database.session_scope() as s:
            s.add_all(list(summaries))
        return len(summaries)

    async def get_latest_account_summaries(self, competition_id: str,
                                           agent_ids: Optional[Sequence[str]] = None) -> Dict[str, PerpsAccountSummary]:
        conditions = [PerpsAccountSummary.competition_id == competition_id]
        if agent_ids is not None:
            if not agent_ids:
                return {}
            conditions.append(PerpsAccountSummary.agent_id.in_(list(agent_ids)))

        ranked = (
            select(
                PerpsAccountSummary.id.label("summary_id"),
                func.row_number().over(
                    partition_by=PerpsAccountSummary.agent_id,
                    order_by=(PerpsAccountSummary.timestamp.desc(), PerpsAccountSummary.id.desc()),
                ).label("rn"),
            )
            .where(and_(*conditions))
            .subquery()
        )
        async with self.database.session_scope() as s:
            result = await s.execute(
                select(PerpsAccountSummary)
                .join(ranked, ranked.c.summary_id == PerpsAccountSummary.id)
                .where(ranked.c.rn == 1)
            )
            return {summary.agent_id: summary for summary in result.scalars().all()}

    # Risk metrics

    async def upsert_risk_metrics(self, competition_id: str, agent_id: str, values: Dict[str, Any]) -> PerpsRiskMetrics:
        async with self.database.session_scope() as s:
            metrics = await s.scalar(
                select(PerpsRiskMetrics).where(and_(
                    PerpsRiskMetrics.competition_id == competition_id,
                    PerpsRiskMetrics.agent_id == agent_id,
                ))
            )
            if metrics is None:
                metrics = PerpsRiskMetrics(competition_id=competition_id, agent_id=agent_id, **values)
                s.add(metrics)
            else:
                for key, value in values.items():
                    setattr(metrics, key, value)
                metrics.calculated_at = utc_now()
            await s.flush()
            return metrics

    async def get_risk_metrics(self, competition_id: str,
                               agent_ids: Optional[Sequence[str]] = None) -> Dict[str, PerpsRiskMetrics]:
        async with self.database.session_scope() as s:
            query = select(PerpsRiskMetrics).where(PerpsRiskMetrics.competition_id == competition_id)
            if agent_ids is not None:
                query = query.where(PerpsRiskMetrics.agent_id.in_(list(agent_ids)))
            result = await s.execute(query)
            return {metrics.agent_id: metrics for metrics in result.scalars().all()}

    async def get_risk_adjusted_leaderboard(self, competition_id: str,
                                            evaluation_metric: str = "calmar_ratio",
                                            limit: Optional[int] = None,
                                            offset: int = 0) -> List[Dict[str, Any]]:
        """
        Active agents with their latest equity and risk metrics, fully
        ordered in one query: agents holding the evaluation metric first,
        then by metric value, then by equity.

        Agents without any synced summary are left out.
        """
        metric_column = METRIC_COLUMNS.get(evaluation_metric, PerpsRiskMetrics.calmar_ratio)

        latest = (
            select(
                PerpsAccountSummary.agent_id.label("agent_id"),
                PerpsAccountSummary.total_equity.label("total_equity"),
                PerpsAccountSummary.total_pnl.label("total_pnl"),
                func.row_number().over(
                    partition_by=PerpsAccountSummary.agent_id,
                    order_by=(PerpsAccountSummary.timestamp.desc(), PerpsAccountSummary.id.desc()),
                ).label("rn"),
            )
            .where(PerpsAccountSummary.competition_id == competition_id)
            .subquery()
        )

        has_metric = case((metric_column.is_(None), 0), else_=1)
        query = (
            select(
                CompetitionAgent.agent_id,
                latest.c.total_equity,
                latest.c.total_pnl,
                PerpsRiskMetrics.calmar_ratio,
                PerpsRiskMetrics.sortino_ratio,
                PerpsRiskMetrics.simple_return,
                PerpsRiskMetrics.max_drawdown,
                PerpsRiskMetrics.downside_deviation,
            )
            .select_from(CompetitionAgent)
            .join(latest, and_(latest.c.agent_id == CompetitionAgent.agent_id, latest.c.rn == 1))
            .outerjoin(PerpsRiskMetrics, and_(
                PerpsRiskMetrics.agent_id == CompetitionAgent.agent_id,
                PerpsRiskMetrics.competition_id == competition_id,
            ))
            .where(and_(
                CompetitionAgent.competition_id == competition_id,
                CompetitionAgent.status == ParticipationStatus.ACTIVE.value,
            ))
            .order_by(
                has_metric.desc(),
                metric_column.desc(),
                latest.c.total_equity.desc(),
                CompetitionAgent.agent_id.asc(),
            )
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)

        async with self.database.session_scope() as s:
            result = await s.execute(query)
            rows = []
            for row in result.all():
                rows.append({
                    "agent_id": row.agent_id,
                    "total_equity": float(row.total_equity or 0.0),
                    "total_pnl": row.total_pnl,
                    "calmar_ratio": row.calmar_ratio,
                    "sortino_ratio": row.sortino_ratio,
                    "simple_return": row.simple_return,
                    "max_drawdown": row.max_drawdown,
                    "downside_deviation": row.downside_deviation,
                    "has_risk_metrics": row.calmar_ratio is not None or row.sortino_ratio is not None,
                })

        logger.debug(f"Retrieved {len(rows)} risk-adjusted leaderboard entries for {competition_id}")
        return rows

    # Transfers

    async def save_transfer_history(self, transfers: Sequence[PerpsTransferHistory]) -> int:
        """Insert transfers not already recorded for the competition (keyed by tx hash)."""
        if not transfers:
            return 0

        competition_id = transfers[0].competition_id
        async with self.database.session_scope() as s:
            existing = await s.execute(
                select(PerpsTransferHistory.tx_hash).where(and_(
                    PerpsTransferHistory.competition_id == competition_id,
                    PerpsTransferHistory.tx_hash.in_([t.tx_hash for t in transfers]),
                ))
            )
            seen = set(existing.scalars().all())
            fresh = []
            for transfer in transfers:
                if transfer.tx_hash in seen:
                    continue
                seen.add(transfer.tx_hash)
                fresh.append(transfer)
            s.add_all(fresh)
        return len(fresh)

    async def get_transfers(self, competition_id: str, agent_id: str) -> List[PerpsTransferHistory]:
        async with self.database.session_scope() as s:
            result = await s.execute(
                select(PerpsTransferHistory)
                .where(and_(
                    PerpsTransferHistory.competition_id == competition_id,
                    PerpsTransferHistory.agent_id == agent_id,
                ))
                .order_by(PerpsTransferHistory.transfer_timestamp.asc())
            )
            return list(result.scalars().all())

    # Self-funding alerts

    async def get_alerts_for_agents(self, competition_id: str,
                                    agent_ids: Sequence[str]) -> Dict[str, List[PerpsSelfFundingAlert]]:
        grouped: Dict[str, List[PerpsSelfFundingAlert]] = {}
        if not agent_ids:
            return grouped
        async with self.database.session_scope() as s:
            result = await s.execute(
                select(PerpsSelfFundingAlert).where(and_(
                    PerpsSelfFundingAlert.competition_id == competition_id,
                    PerpsSelfFundingAlert.agent_id.in_(list(agent_ids)),
                ))
            )
            for alert in result.scalars().all():
                grouped.setdefault(alert.agent_id, []).append(alert)
        return grouped

    async def bulk_create_alerts(self, alerts: Sequence[PerpsSelfFundingAlert]) -> int:
        if not alerts:
            return 0
        async with self.database.session_scope() as s:
            s.add_all(list(alerts))
        logger.info(f"Created {len(alerts)} self-funding alerts")
        return len(alerts)

    async def get_alerts(self, competition_id: str, reviewed: Optional[bool] = None) -> List[PerpsSelfFundingAlert]:
        async with self.database.session_scope() as s:
            query = select(PerpsSelfFundingAlert).where(PerpsSelfFundingAlert.competition_id == competition_id)
            if reviewed is not None:
                query = query.where(PerpsSelfFundingAlert.reviewed == reviewed)
            result = await s.execute(query.order_by(PerpsSelfFundingAlert.id.asc()))
            return list(result.scalars().all())
