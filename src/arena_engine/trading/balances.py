import logging
from typing import Dict, List, Mapping, Optional, Sequence

from ..chains import normalize_token_address, usdc_address
from ..config import Config
from ..models.competition import CompetitionType
from ..models.trading import Balance
from ..repositories.balance import BalanceRepository, InitialBalance
from .prices import PriceOracle, PriceReport

logger = logging.getLogger(__name__)


def value_portfolio(balances: Sequence[Balance], prices: Mapping[str, PriceReport]) -> float:
    """Sum of amount x price; tokens without a quote contribute nothing."""
    quotes = {normalize_token_address(token): report for token, report in prices.items()}
    total = 0.0
    for balance in balances:
        report = quotes.get(normalize_token_address(balance.token_address))
        if report is None:
            logger.debug(f"No price for {balance.token_address}, excluded from portfolio value")
            continue
        total += float(balance.amount) * report.price
    return total


class BalanceManager:
    """Agent balances inside a competition and their starting allocation."""

    def __init__(self, repository: BalanceRepository, config: Config):
        self.repository = repository
        self.config = config

    def initial_balances(self, competition_type: str) -> List[InitialBalance]:
        # Perps equity lives with the external provider, not in internal balances
        if competition_type != CompetitionType.TRADING.value:
            return []

        allocations = []
        for specific_chain, amount in self.config.initial_balances().items():
            address = usdc_address(specific_chain)
            if address is None:
                logger.warning(f"No USDC address known for chain {specific_chain}, skipping initial balance")
                continue
            allocations.append(InitialBalance(
                token_address=address,
                amount=amount,
                symbol="USDC",
                specific_chain=specific_chain,
            ))
        return allocations

    async def reset_agent_balances(self, agent_id: str, competition_id: str, competition_type: str) -> None:
        allocations = self.initial_balances(competition_type)
        await self.repository.reset_agent_balances(agent_id, competition_id, allocations)
        logger.debug(
            f"Reset balances for agent {agent_id} in competition {competition_id} "
            f"({len(allocations)} tokens)"
        )

    async def get_balance(self, agent_id: str, competition_id: str, token_address: str) -> float:
        balance = await self.repository.get_balance(agent_id, competition_id, token_address)
        return float(balance.amount) if balance else 0.0

    async def get_all_balances(self, agent_id: str, competition_id: str) -> List[Balance]:
        return await self.repository.get_agent_balances(agent_id, competition_id)

    async def get_portfolio_value(self, agent_id: str, competition_id: str, oracle: PriceOracle,
                                  balances: Optional[List[Balance]] = None) -> float:
        balances = balances if balances is not None else await self.get_all_balances(agent_id, competition_id)
        if not balances:
            return 0.0
        prices = await oracle.get_bulk_prices([b.token_address for b in balances])
        return value_portfolio(balances, prices)

    async def get_portfolio_values(self, competition_id: str, agent_ids: List[str],
                                   oracle: PriceOracle) -> Dict[str, float]:
        """Live values for many agents using one balance query and one bulk price fetch"""
        grouped = await self.repository.get_balances_for_agents(competition_id, agent_ids)
        tokens = sorted({b.token_address for balances in grouped.values() for b in balances})
        prices = await oracle.get_bulk_prices(tokens) if tokens else {}
        return {
            agent_id: value_portfolio(grouped.get(agent_id, []), prices)
            for agent_id in agent_ids
        }
