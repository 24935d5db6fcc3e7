"""
Spot trading simulation: prices, constraints, balances, snapshots and
trade execution.
"""

from .balances import BalanceManager, value_portfolio
from .constraints import ConstraintThresholds, TradingConstraintsInput, TradingConstraintsService
from .execution import TradeExecutionService, TradeResult, calculate_slippage
from .prices import CachedPriceOracle, PriceOracle, PriceReport
from .snapshots import PortfolioSnapshotter

__all__ = [
    "BalanceManager",
    "value_portfolio",
    "ConstraintThresholds",
    "TradingConstraintsInput",
    "TradingConstraintsService",
    "TradeExecutionService",
    "TradeResult",
    "calculate_slippage",
    "CachedPriceOracle",
    "PriceOracle",
    "PriceReport",
    "PortfolioSnapshotter",
]
