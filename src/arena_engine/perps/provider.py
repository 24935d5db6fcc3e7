"""
Perpetual futures data provider boundary.

Account equity and wallet transfers for perps competitions come from an
external derivatives venue. The engine talks to it through the
``PerpsDataProvider`` protocol; payloads are validated pydantic models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class TransferType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class AccountSummary(BaseModel):
    """Snapshot of a perps account as reported by the provider."""

    total_equity: float
    initial_capital: Optional[float] = None
    available_balance: Optional[float] = None
    margin_used: Optional[float] = None

    total_pnl: Optional[float] = None
    total_realized_pnl: Optional[float] = None
    total_unrealized_pnl: Optional[float] = None

    total_volume: Optional[float] = None
    total_trades: Optional[int] = None
    total_fees_paid: Optional[float] = None
    open_positions_count: Optional[int] = None

    account_status: str = "active"


class Transfer(BaseModel):
    """Deposit into or withdrawal from an agent wallet."""

    type: TransferType
    amount: float = Field(..., ge=0)
    asset: str = "USDC"
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    timestamp: datetime
    tx_hash: Optional[str] = None
    chain_id: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)


@runtime_checkable
class PerpsDataProvider(Protocol):
    """
    External perps venue.

    Providers may additionally implement
    ``get_transfer_history(wallet_address, since) -> List[Transfer]``;
    transfer-based self-funding detection runs only when they do.
    """

    async def get_account_summary(self, wallet_address: str) -> AccountSummary:
        ...


def supports_transfer_history(provider: PerpsDataProvider) -> bool:
    return callable(getattr(provider, "get_transfer_history", None))

