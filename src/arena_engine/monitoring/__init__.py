"""
Competition integrity monitoring.
"""

from .self_funding import (
    AgentMonitoringResult,
    MonitoredAgent,
    MonitoringResult,
    SelfFundingDetection,
    SelfFundingMonitor,
)

__all__ = [
    "AgentMonitoringResult",
    "MonitoredAgent",
    "MonitoringResult",
    "SelfFundingDetection",
    "SelfFundingMonitor",
]
