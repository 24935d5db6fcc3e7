"""
Risk-adjusted performance metrics for perpetual futures competitions.

Metrics are computed from an agent's portfolio snapshot series (total
equity over time):

- simple return: last value over first value, minus one
- max drawdown: deepest peak-to-trough decline, a non-positive fraction
- Calmar ratio: simple return over absolute max drawdown
- downside deviation: root mean square of negative period returns (MAR 0)
- Sortino ratio: mean period return over downside deviation

Denominators are floored at ``MIN_DENOMINATOR`` so a flawless equity curve
still yields a finite ratio.
"""

import numpy as np
import pandas as pd
import logging
from typing import Optional, Sequence
from dataclasses import dataclass, asdict
from datetime import datetime

from ..errors import ValidationError
from ..models.trading import PortfolioSnapshot
from ..utils import as_utc

logger = logging.getLogger(__name__)

MIN_DENOMINATOR = 0.0001
MIN_SNAPSHOTS = 2

# Minimum acceptable return per period
MAR = 0.0


@dataclass
class RiskMetricsResult:
    """Risk metrics for one agent, ready to be persisted"""
    simple_return: float
    annualized_return: Optional[float]
    max_drawdown: float
    calmar_ratio: float
    sortino_ratio: float
    downside_deviation: float
    snapshot_count: int

    def to_dict(self) -> dict:
        return asdict(self)


class RiskMetricsCalculator:
    """Computes Calmar and Sortino inputs from snapshot series using pandas."""

    def __init__(self, min_snapshots: int = MIN_SNAPSHOTS):
        self.min_snapshots = min_snapshots

    def _equity_series(self, snapshots: Sequence[PortfolioSnapshot]) -> pd.Series:
        frame = pd.DataFrame(
            [{"timestamp": as_utc(s.timestamp), "value": float(s.total_value)} for s in snapshots]
        )
        frame = frame.sort_values("timestamp", kind="stable")
        return pd.Series(frame["value"].values, index=frame["timestamp"].values)

    @staticmethod
    def simple_return(values: np.ndarray) -> float:
        first, last = values[0], values[-1]
        if first <= 0:
            return 0.0
        return float((last - first) / first)

    @staticmethod
    def max_drawdown(values: np.ndarray) -> float:
        """Most negative (value - running peak) / running peak; 0 when equity never fell"""
        running_peak = np.maximum.accumulate(values)
        with np.errstate(divide="ignore", invalid="ignore"):
            drawdowns = np.where(running_peak > 0, (values - running_peak) / running_peak, 0.0)
        return float(min(drawdowns.min(), 0.0))

    @staticmethod
    def period_returns(equity: pd.Series) -> pd.Series:
        previous = equity.shift(1)
        returns = (equity - previous) / previous
        # Skip the first row and periods starting from zero equity
        return returns[(previous.notna()) & (previous != 0)]

    @staticmethod
    def downside_deviation(returns: pd.Series, mar: float = MAR) -> float:
        if returns.empty:
            return 0.0
        shortfall = np.minimum(returns.values - mar, 0.0)
        return float(np.sqrt(np.mean(shortfall ** 2)))

    @staticmethod
    def calmar_ratio(simple_return: float, max_drawdown: float) -> float:
        return simple_return / max(abs(max_drawdown), MIN_DENOMINATOR)

    @staticmethod
    def sortino_ratio(mean_return: float, downside_deviation: float) -> float:
        if mean_return == 0 and downside_deviation == 0:
            return 0.0
        return mean_return / max(downside_deviation, MIN_DENOMINATOR)

    @staticmethod
    def annualized_return(simple_return: float, start: datetime, end: datetime) -> Optional[float]:
        days = (end - start).total_seconds() / 86400
        if days <= 0 or simple_return <= -1:
            return None
        return float((1 + simple_return) ** (365 / days) - 1)

    def calculate(self, snapshots: Sequence[PortfolioSnapshot]) -> RiskMetricsResult:
        """
        Calculate all risk metrics for one agent's snapshot series.

        Args:
            snapshots: Portfolio snapshots of a single agent in one competition

        Returns:
            RiskMetricsResult

        Raises:
            ValidationError: fewer than two snapshots
        """
        if len(snapshots) < self.min_snapshots:
            raise ValidationError(f"Insufficient data: Need at least {self.min_snapshots} snapshots")

        equity = self._equity_series(snapshots)
        values = equity.values.astype(float)

        simple_return = self.simple_return(values)
        max_drawdown = self.max_drawdown(values)

        returns = self.period_returns(equity)
        mean_return = float(returns.mean()) if not returns.empty else 0.0
        downside_deviation = self.downside_deviation(returns)

        start = pd.Timestamp(equity.index[0]).to_pydatetime()
        end = pd.Timestamp(equity.index[-1]).to_pydatetime()

        result = RiskMetricsResult(
            simple_return=simple_return,
            annualized_return=self.annualized_return(simple_return, start, end),
            max_drawdown=max_drawdown,
            calmar_ratio=self.calmar_ratio(simple_return, max_drawdown),
            sortino_ratio=self.sortino_ratio(mean_return, downside_deviation),
            downside_deviation=downside_deviation,
            snapshot_count=len(values),
        )

        logger.debug(
            f"Risk metrics: return={simple_return:.4%} mdd={max_drawdown:.4%} "
            f"calmar={result.calmar_ratio:.4f} sortino={result.sortino_ratio:.4f}"
        )
        return result
