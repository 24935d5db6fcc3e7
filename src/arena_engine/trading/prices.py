"""
Price oracle boundary.

The engine consumes prices through the ``PriceOracle`` protocol; concrete
providers (DEX aggregators, price APIs) live outside this package.
``CachedPriceOracle`` adds a read-through TTL cache in front of any oracle.

The engine asks for EVM tokens by their lowercase address; oracles must
match EVM addresses without regard to case.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from ..cache import TTLCache
from ..chains import BlockchainType, normalize_token_address

logger = logging.getLogger(__name__)


class PriceReport(BaseModel):
    """Price quote for one token, with the market data used by trading constraints."""

    token: str
    price: float = Field(..., ge=0)
    symbol: str = ""
    chain: Optional[BlockchainType] = None
    specific_chain: Optional[str] = None
    liquidity_usd: Optional[float] = None
    volume_24h_usd: Optional[float] = None
    pair_created_at: Optional[datetime] = None
    fdv_usd: Optional[float] = None

    model_config = ConfigDict(frozen=True)


@runtime_checkable
class PriceOracle(Protocol):
    async def get_price(self, token: str, chain: Optional[BlockchainType] = None,
                        specific_chain: Optional[str] = None) -> Optional[PriceReport]:
        ...

    async def get_bulk_prices(self, tokens: Sequence[str]) -> Dict[str, PriceReport]:
        ...


class CachedPriceOracle:
    """Read-through cache in front of another oracle, keyed by token and chain hint."""

    def __init__(self, oracle: PriceOracle, cache: TTLCache):
        self.oracle = oracle
        self.cache = cache

    @staticmethod
    def _key(token: str, specific_chain: Optional[str]) -> str:
        return f"{normalize_token_address(token)}:{specific_chain or '*'}"

    async def get_price(self, token: str, chain: Optional[BlockchainType] = None,
                        specific_chain: Optional[str] = None) -> Optional[PriceReport]:
        key = self._key(token, specific_chain)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        report = await self.oracle.get_price(token, chain, specific_chain)
        if report is not None:
            self.cache.set(key, report)
        return report

    async def get_bulk_prices(self, tokens: Sequence[str]) -> Dict[str, PriceReport]:
        prices: Dict[str, PriceReport] = {}
        missing: List[str] = []
        for token in tokens:
            cached = self.cache.get(self._key(token, None))
            if cached is not None:
                prices[token] = cached
            else:
                missing.append(token)

        if missing:
            logger.debug(f"Price cache miss for {len(missing)} of {len(tokens)} tokens")
            fetched = await self.oracle.get_bulk_prices(missing)
            for token, report in fetched.items():
                self.cache.set(self._key(token, None), report)
                prices[token] = report

        return prices

