"""
Risk metrics for the arena engine.

Calmar and Sortino ratios over portfolio snapshot series, used to rank
perpetual futures competitions.
"""

from .metrics import RiskMetricsCalculator, RiskMetricsResult, MIN_DENOMINATOR

__all__ = [
    'RiskMetricsCalculator',
    'RiskMetricsResult',
    'MIN_DENOMINATOR',
]
