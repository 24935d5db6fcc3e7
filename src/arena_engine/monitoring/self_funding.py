"""
Self-funding detection for perpetual futures competitions.

Agents must trade only the capital they started with. Two detectors run
per agent and may both fire:

- transfer history: every deposit or withdrawal on the agent wallet after
  the competition started is a violation (confidence always high)
- balance reconciliation: equity not explained by initial capital plus
  PnL beyond a tolerance

Agents are checked concurrently with a bounded fan-out; one agent failing
never aborts the batch. Alerts from the whole batch are written in one
bulk insert for a human reviewer.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..config import Config
from ..models.perps import PerpsSelfFundingAlert, PerpsTransferHistory
from ..perps.provider import AccountSummary, PerpsDataProvider, Transfer, TransferType, supports_transfer_history
from ..repositories.perps import PerpsRepository
from ..utils import as_utc

logger = logging.getLogger(__name__)

DETECTION_TRANSFER_HISTORY = "transfer_history"
DETECTION_BALANCE_RECONCILIATION = "balance_reconciliation"

RECONCILIATION_NOTE = "Unexplained balance discrepancy. May include funding rates or platform-specific fees."


def _moves_wallet_funds(transfer: Transfer, wallet: str) -> bool:
    """Deposits into the wallet and withdrawals out of it; anything else is noise."""
    if transfer.type == TransferType.DEPOSIT:
        return transfer.to_address.lower() == wallet
    if transfer.type == TransferType.WITHDRAW:
        return transfer.from_address.lower() == wallet
    return False


@dataclass
class MonitoredAgent:
    agent_id: str
    wallet_address: str


@dataclass
class SelfFundingDetection:
    """One detector firing for one agent, before it becomes an alert row."""
    agent_id: str
    competition_id: str
    expected_equity: Decimal
    actual_equity: Decimal
    unexplained_amount: Decimal
    detection_method: str
    confidence: str
    severity: str
    note: str
    account_summary: AccountSummary
    evidence: List[Transfer] = field(default_factory=list)


@dataclass
class AgentMonitoringResult:
    agent_id: str
    wallet_address: str
    detections: List[SelfFundingDetection] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class MonitoringResult:
    successful: List[AgentMonitoringResult]
    failed: List[AgentMonitoringResult]
    total_alerts_created: int


class SelfFundingMonitor:
    """
    Detects external capital injected into perps competition accounts.

    Thresholds (USD) come from ``Config``:
        reconciliation_threshold_usd: tolerated unexplained equity
        critical_amount_threshold_usd: above this an alert is critical
        transfer_threshold_usd: transfers at or below this are ignored
    """

    def __init__(self, provider: PerpsDataProvider, repository: PerpsRepository, config: Config):
        self.provider = provider
        self.repository = repository
        self.reconciliation_threshold = Decimal(str(config.reconciliation_threshold_usd))
        self.critical_amount_threshold = Decimal(str(config.critical_amount_threshold_usd))
        self.transfer_threshold = Decimal(str(config.transfer_threshold_usd))
        self.concurrency = config.monitor_concurrency

        logger.info(
            f"Self-funding monitor initialized (reconciliation=${self.reconciliation_threshold}, "
            f"critical=${self.critical_amount_threshold}, transfer=${self.transfer_threshold})"
        )

    async def monitor_agents(self, agents: Sequence[MonitoredAgent], competition_id: str,
                             competition_start_date: datetime, initial_capital: float,
                             threshold: float,
                             account_summaries: Optional[Mapping[str, AccountSummary]] = None) -> MonitoringResult:
        """
        Check a batch of agents and persist every resulting alert.

        Args:
            agents: Agents with their wallet addresses
            competition_id: Competition being monitored
            competition_start_date: Transfers after this moment are violations
            initial_capital: Starting equity of every agent
            threshold: Competition's self-funding threshold, recorded with each alert
            account_summaries: Summaries already fetched this round, by agent id

        Returns:
            MonitoringResult with per-agent outcomes and the number of alerts written
        """
        if not agents:
            return MonitoringResult(successful=[], failed=[], total_alerts_created=0)

        logger.info(f"Starting self-funding monitoring for {len(agents)} agents in competition {competition_id}")

        existing_alerts = await self._get_existing_alerts(competition_id, [a.agent_id for a in agents])
        summaries = account_summaries or {}
        start_date = as_utc(competition_start_date)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(agent: MonitoredAgent) -> AgentMonitoringResult:
            async with semaphore:
                return await self._monitor_agent(
                    agent,
                    summaries.get(agent.agent_id),
                    competition_id,
                    start_date,
                    Decimal(str(initial_capital)),
                    existing_alerts.get(agent.agent_id, []),
                )

        outcomes = await asyncio.gather(*(bounded(agent) for agent in agents), return_exceptions=True)

        successful: List[AgentMonitoringResult] = []
        failed: List[AgentMonitoringResult] = []
        alerts: List[PerpsSelfFundingAlert] = []
        for agent, outcome in zip(agents, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Error monitoring agent {agent.agent_id}: {outcome}")
                failed.append(AgentMonitoringResult(
                    agent_id=agent.agent_id,
                    wallet_address=agent.wallet_address,
                    error=str(outcome) or type(outcome).__name__,
                ))
                continue

            successful.append(outcome)
            alerts.extend(self._to_alert(detection, threshold) for detection in outcome.detections)

        total_alerts_created = 0
        if alerts:
            try:
                total_alerts_created = await self.repository.bulk_create_alerts(alerts)
                logger.warning(f"Created {total_alerts_created} self-funding alerts for competition {competition_id}")
            except Exception as e:
                logger.error(f"Failed to create self-funding alerts for competition {competition_id}: {e}")

        logger.info(
            f"Monitoring complete: {len(successful)} successful, {len(failed)} failed, "
            f"{total_alerts_created} alerts created"
        )
        return MonitoringResult(successful=successful, failed=failed, total_alerts_created=total_alerts_created)

    async def _get_existing_alerts(self, competition_id: str,
                                   agent_ids: List[str]) -> Dict[str, List[PerpsSelfFundingAlert]]:
        try:
            return await self.repository.get_alerts_for_agents(competition_id, agent_ids)
        except Exception as e:
            # Possible duplicate alerts are preferable to missed violations
            logger.error(f"Failed to fetch existing alerts for competition {competition_id}: {e}")
            return {}

    async def _monitor_agent(self, agent: MonitoredAgent, summary: Optional[AccountSummary],
                             competition_id: str, start_date: datetime, initial_capital: Decimal,
                             existing_alerts: List[PerpsSelfFundingAlert]) -> AgentMonitoringResult:
        if any(not alert.reviewed for alert in existing_alerts):
            logger.debug(f"Agent {agent.agent_id} already has unreviewed alerts, skipping")
            return AgentMonitoringResult(agent_id=agent.agent_id, wallet_address=agent.wallet_address)

        # Without an account summary there is no equity to check; this fails the agent
        if summary is None:
            summary = await self.provider.get_account_summary(agent.wallet_address)
        else:
            logger.debug(f"Using pre-fetched account summary for agent {agent.agent_id}")

        detections = []
        if supports_transfer_history(self.provider):
            transfer_detection = await self.check_transfer_history(agent, summary, competition_id, start_date)
            if transfer_detection is not None:
                detections.append(transfer_detection)

        reconciliation = self.check_balance_reconciliation(agent.agent_id, competition_id, summary, initial_capital)
        if reconciliation is not None:
            detections.append(reconciliation)

        return AgentMonitoringResult(
            agent_id=agent.agent_id,
            wallet_address=agent.wallet_address,
            detections=detections,
        )

    async def check_transfer_history(self, agent: MonitoredAgent, summary: AccountSummary,
                                     competition_id: str, start_date: datetime) -> Optional[SelfFundingDetection]:
        """Best effort: provider errors are logged and yield no detection."""
        try:
            transfers = await self.provider.get_transfer_history(agent.wallet_address, start_date)
        except Exception as e:
            logger.error(f"Error fetching transfer history for agent {agent.agent_id}: {e}")
            return None

        if transfers:
            await self._save_transfer_history(transfers, agent.agent_id, competition_id)

        wallet = agent.wallet_address.lower()
        violations = [
            t for t in transfers
            if as_utc(t.timestamp) > start_date
            and _moves_wallet_funds(t, wallet)
            and Decimal(str(t.amount)) > self.transfer_threshold
        ]
        if not violations:
            return None

        deposits = [t for t in violations if t.type == TransferType.DEPOSIT]
        withdrawals = [t for t in violations if t.type == TransferType.WITHDRAW]
        total_deposited = sum((Decimal(str(t.amount)) for t in deposits), Decimal(0))
        total_withdrawn = sum((Decimal(str(t.amount)) for t in withdrawals), Decimal(0))
        total_transferred = total_deposited + total_withdrawn

        parts = []
        if deposits:
            parts.append(f"{len(deposits)} deposit(s) totaling ${total_deposited:.2f}")
        if withdrawals:
            parts.append(f"{len(withdrawals)} withdrawal(s) totaling ${total_withdrawn:.2f}")
        note = (
            f"Mid-competition transfers are PROHIBITED. Found {len(violations)} violation(s): "
            + " and ".join(parts)
        )
        logger.warning(f"Transfer violation detected for agent {agent.agent_id}: {note}")

        return SelfFundingDetection(
            agent_id=agent.agent_id,
            competition_id=competition_id,
            expected_equity=Decimal(str(summary.initial_capital or 0)),
            actual_equity=Decimal(str(summary.total_equity)),
            unexplained_amount=total_transferred,
            detection_method=DETECTION_TRANSFER_HISTORY,
            confidence="high",
            severity="critical" if total_transferred > self.critical_amount_threshold else "warning",
            note=note,
            account_summary=summary,
            evidence=violations,
        )

    def check_balance_reconciliation(self, agent_id: str, competition_id: str, summary: AccountSummary,
                                     initial_capital: Decimal) -> Optional[SelfFundingDetection]:
        actual_equity = Decimal(str(summary.total_equity or 0))
        expected_equity = initial_capital + Decimal(str(summary.total_pnl or 0))
        unexplained = actual_equity - expected_equity

        if abs(unexplained) <= self.reconciliation_threshold:
            return None

        logger.warning(
            f"Balance reconciliation discrepancy for agent {agent_id}: expected ${expected_equity:.2f}, "
            f"actual ${actual_equity:.2f}, unexplained ${unexplained:.2f}"
        )

        critical = abs(unexplained) > self.critical_amount_threshold
        return SelfFundingDetection(
            agent_id=agent_id,
            competition_id=competition_id,
            expected_equity=expected_equity,
            actual_equity=actual_equity,
            unexplained_amount=unexplained,
            detection_method=DETECTION_BALANCE_RECONCILIATION,
            confidence="high" if critical else "medium",
            severity="critical" if critical else "warning",
            note=RECONCILIATION_NOTE,
            account_summary=summary,
        )

    async def _save_transfer_history(self, transfers: List[Transfer], agent_id: str, competition_id: str) -> None:
        records = [
            PerpsTransferHistory(
                agent_id=agent_id,
                competition_id=competition_id,
                type=t.type.value,
                amount=t.amount,
                asset=t.asset,
                from_address=t.from_address,
                to_address=t.to_address,
                tx_hash=t.tx_hash or self._fallback_tx_hash(agent_id, t, index),
                transfer_timestamp=as_utc(t.timestamp),
            )
            for index, t in enumerate(transfers)
        ]
        try:
            saved = await self.repository.save_transfer_history(records)
            logger.info(f"Saved {saved} transfers for agent {agent_id} in competition {competition_id}")
        except Exception as e:
            # Audit trail only; detection continues without it
            logger.error(f"Failed to save transfer history for agent {agent_id}: {e}")

    @staticmethod
    def _fallback_tx_hash(agent_id: str, transfer: Transfer, index: int) -> str:
        return f"{agent_id}-{as_utc(transfer.timestamp).isoformat()}-{transfer.type.value}-{transfer.amount}-{index}"

    @staticmethod
    def _to_alert(detection: SelfFundingDetection, threshold: float) -> PerpsSelfFundingAlert:
        snapshot: Dict[str, Any] = detection.account_summary.model_dump(mode="json")
        snapshot["self_funding_threshold_usd"] = threshold
        return PerpsSelfFundingAlert(
            agent_id=detection.agent_id,
            competition_id=detection.competition_id,
            expected_equity=float(detection.expected_equity),
            actual_equity=float(detection.actual_equity),
            unexplained_amount=float(detection.unexplained_amount),
            account_snapshot=snapshot,
            detection_method=detection.detection_method,
            confidence=detection.confidence,
            severity=detection.severity,
            evidence=[t.model_dump(mode="json", by_alias=True) for t in detection.evidence] or None,
            note=detection.note,
            reviewed=False,
        )

    async def should_monitor_competition(self, competition_id: str) -> bool:
        """Monitoring runs only when the perps config sets a self-funding threshold (0 flags any transfer)."""
        try:
            perps_config = await self.repository.get_config(competition_id)
        except Exception as e:
            logger.error(f"Error reading perps config for competition {competition_id}: {e}")
            return False

        if perps_config is None:
            logger.debug(f"No perps config found for competition {competition_id}")
            return False

        threshold = perps_config.self_funding_threshold_usd
        return threshold is not None and threshold >= 0
