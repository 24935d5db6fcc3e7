"""
Perpetual futures competitions: external provider boundary and processing.

The processor lives in ``arena_engine.perps.processor``; it depends on the
monitoring package, which itself consumes the provider models exported here.
"""

from .provider import AccountSummary, PerpsDataProvider, Transfer, TransferType, supports_transfer_history

__all__ = [
    "AccountSummary",
    "PerpsDataProvider",
    "Transfer",
    "TransferType",
    "supports_transfer_history",
]
