"""
Simulated trade execution.

Validates a spot trade against the competition, chain policy, token
constraints, balance and position size limits, then applies slippage and
commits the balance changes and trade record in one transaction.

Every validation stage raises its own ``ArenaError`` with the violated
threshold in the message. Nothing is written until the final stage.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from ..chains import (
    BlockchainType,
    default_specific_chain,
    detect_blockchain_type,
    exempt_tokens,
    is_stablecoin,
    normalize_token_address,
)
from ..config import Config
from ..errors import ConflictError, NotFoundError, PolicyViolationError, UpstreamError, ValidationError
from ..models.competition import CompetitionStatus, CrossChainTradingType
from ..models.trading import Trade
from ..repositories.balance import BalanceRepository
from ..repositories.competition import CompetitionRepository
from ..utils import as_utc, utc_now
from .balances import BalanceManager
from .constraints import ConstraintThresholds, TradingConstraintsService
from .prices import PriceOracle, PriceReport

logger = logging.getLogger(__name__)

MIN_TRADE_AMOUNT = 0.000001

# Slippage grows 0.05% for every $10k traded, jittered by +/-10%
SLIPPAGE_PER_10K_USD = 0.0005


@dataclass
class TradeResult:
    trade: Trade
    from_balance: float
    to_balance: float


@dataclass
class ResolvedChains:
    from_chain: BlockchainType
    to_chain: BlockchainType
    from_specific_chain: Optional[str]
    to_specific_chain: Optional[str]


def calculate_slippage(from_value_usd: float, random_value: float) -> Tuple[float, float]:
    """
    Returns (effective USD value after slippage, applied slippage fraction).

    ``random_value`` is drawn from [0, 1) and scales the base slippage
    between 90% and 110%.
    """
    base_slippage = (from_value_usd / 10000) * SLIPPAGE_PER_10K_USD
    actual_slippage = base_slippage * (0.9 + random_value * 0.2)
    return from_value_usd * (1 - actual_slippage), actual_slippage


def _usd(value: float) -> str:
    return f"${value:,.2f}"


class TradeExecutionService:
    """Executes simulated spot trades for agents in the active competition."""

    def __init__(self, competitions: CompetitionRepository, balance_repository: BalanceRepository,
                 balances: BalanceManager, constraints: TradingConstraintsService,
                 oracle: PriceOracle, config: Config,
                 random_source: Callable[[], float] = random.random):
        self.competitions = competitions
        self.balance_repository = balance_repository
        self.balances = balances
        self.constraints = constraints
        self.oracle = oracle
        self.config = config
        self.random_source = random_source
        self.exempt_tokens = exempt_tokens()

    async def execute_trade(self, agent_id: str, competition_id: str, from_token: str, to_token: str,
                            from_amount: float, reason: str,
                            from_chain: Optional[BlockchainType] = None,
                            from_specific_chain: Optional[str] = None,
                            to_chain: Optional[BlockchainType] = None,
                            to_specific_chain: Optional[str] = None) -> TradeResult:
        """
        Execute one simulated trade.

        Raises:
            NotFoundError: competition does not exist
            ValidationError: bad input or unresolvable chain
            ConflictError: competition not accepting trades
            PolicyViolationError: inactive agent, chain policy, constraints, balance or size cap
            UpstreamError: a price could not be determined
        """
        competition = await self._check_competition(agent_id, competition_id)

        self._validate_input(from_token, to_token, from_amount, reason)
        from_token = normalize_token_address(from_token)
        to_token = normalize_token_address(to_token)

        chains = self._resolve_chains(from_token, to_token, from_chain, from_specific_chain,
                                      to_chain, to_specific_chain)
        self._check_cross_chain_policy(competition.cross_chain_trading_type, chains)

        from_price, to_price = await self._fetch_prices(from_token, to_token, chains)

        # Fill in specific chains the quotes resolved, then re-apply the policy
        chains.from_specific_chain = chains.from_specific_chain or from_price.specific_chain
        chains.to_specific_chain = chains.to_specific_chain or to_price.specific_chain
        if not chains.from_specific_chain or not chains.to_specific_chain:
            raise ValidationError("Unable to determine specific chain for tokens")
        self._check_cross_chain_policy(competition.cross_chain_trading_type, chains)

        if to_price.price > 0:
            thresholds = await self.constraints.get_constraints_or_defaults(competition_id)
            self.validate_trading_constraints(to_price, to_token, chains.to_specific_chain, thresholds)

        from_value_usd = from_amount * from_price.price
        await self._check_balance_and_size(agent_id, competition_id, from_token, from_amount, from_value_usd)

        to_amount, exchange_rate = self._calculate_amounts(from_amount, from_value_usd, to_price.price)

        trade = Trade(
            agent_id=agent_id,
            competition_id=competition_id,
            from_token=from_token,
            to_token=to_token,
            from_token_symbol=from_price.symbol,
            to_token_symbol=to_price.symbol,
            from_amount=from_amount,
            to_amount=to_amount,
            price=exchange_rate,
            trade_amount_usd=from_value_usd,
            success=True,
            reason=reason,
            from_chain=chains.from_chain.value,
            to_chain=chains.to_chain.value,
            from_specific_chain=chains.from_specific_chain,
            to_specific_chain=chains.to_specific_chain,
            timestamp=utc_now(),
        )

        result = await self.balance_repository.create_trade_with_balances(
            trade, to_symbol=to_price.symbol, to_specific_chain=chains.to_specific_chain
        )

        logger.info(
            f"Agent {agent_id} traded {from_amount} {from_price.symbol} -> {to_amount:.8f} "
            f"{to_price.symbol} (${from_value_usd:.2f}) in competition {competition_id}"
        )
        return TradeResult(trade=result.trade, from_balance=result.from_balance, to_balance=result.to_balance)

    async def _check_competition(self, agent_id: str, competition_id: str):
        competition = await self.competitions.find_by_id(competition_id)
        if competition is None:
            raise NotFoundError(f"Competition not found: {competition_id}")

        if competition.is_perps:
            raise ValidationError(
                "This is a perpetual futures competition. Spot trading is not available."
            )

        if competition.status != CompetitionStatus.ACTIVE.value:
            raise ConflictError(f"Competition is not active (status: {competition.status})")

        if competition.has_ended_by_date:
            raise ConflictError("Competition has ended. Trading is no longer allowed.")

        if not await self.competitions.is_agent_active(competition_id, agent_id):
            raise PolicyViolationError("Agent is not actively participating in this competition")

        return competition

    @staticmethod
    def _validate_input(from_token: str, to_token: str, from_amount: float, reason: str) -> None:
        if from_amount is None or from_amount < MIN_TRADE_AMOUNT:
            raise ValidationError(f"Trade amount too small (minimum: {MIN_TRADE_AMOUNT:f})")

        if not reason or not reason.strip():
            raise ValidationError("Trade reason is required")

        if from_token.lower() == to_token.lower():
            raise ValidationError("Cannot trade between identical tokens")

    @staticmethod
    def _resolve_chains(from_token: str, to_token: str,
                        from_chain: Optional[BlockchainType], from_specific_chain: Optional[str],
                        to_chain: Optional[BlockchainType], to_specific_chain: Optional[str]) -> ResolvedChains:
        resolved_from = BlockchainType(from_chain) if from_chain else detect_blockchain_type(from_token)
        resolved_to = BlockchainType(to_chain) if to_chain else detect_blockchain_type(to_token)
        return ResolvedChains(
            from_chain=resolved_from,
            to_chain=resolved_to,
            from_specific_chain=from_specific_chain or default_specific_chain(resolved_from),
            to_specific_chain=to_specific_chain or default_specific_chain(resolved_to),
        )

    @staticmethod
    def _check_cross_chain_policy(policy: str, chains: ResolvedChains) -> None:
        if policy == CrossChainTradingType.DISALLOW_X_PARENT.value:
            if chains.from_chain != chains.to_chain:
                raise PolicyViolationError(
                    "Cross-parent chain trading is disabled. Both tokens must be on the same parent blockchain."
                )

        elif policy == CrossChainTradingType.DISALLOW_ALL.value:
            different_specific = (
                chains.from_specific_chain is not None
                and chains.to_specific_chain is not None
                and chains.from_specific_chain != chains.to_specific_chain
            )
            if chains.from_chain != chains.to_chain or different_specific:
                raise PolicyViolationError(
                    "Cross-chain trading is disabled. Both tokens must be on the same blockchain."
                )

    async def _fetch_prices(self, from_token: str, to_token: str,
                            chains: ResolvedChains) -> Tuple[PriceReport, PriceReport]:
        try:
            from_price = await self.oracle.get_price(from_token, chains.from_chain, chains.from_specific_chain)
            to_price = await self.oracle.get_price(to_token, chains.to_chain, chains.to_specific_chain)
        except Exception as e:
            logger.error(f"Price lookup failed for {from_token} -> {to_token}: {e}")
            raise UpstreamError("Unable to determine price for tokens") from e

        if from_price is None or to_price is None or from_price.price <= 0:
            raise UpstreamError(
                "Unable to determine price for tokens",
                details={"from_token": from_token, "to_token": to_token},
            )
        return from_price, to_price

    def validate_trading_constraints(self, report: PriceReport, token_address: str,
                                     specific_chain: Optional[str],
                                     thresholds: ConstraintThresholds) -> None:
        """Raise PolicyViolationError when the destination token fails an active threshold."""
        if is_stablecoin(token_address, specific_chain):
            logger.debug(f"All trading constraints exempted for stablecoin: {token_address}")
            return

        if token_address.lower() in self.exempt_tokens:
            logger.debug(f"Constraint check exempted for major token: {token_address} ({specific_chain})")
            return

        if thresholds.minimum_pair_age_hours > 0:
            created_at = as_utc(report.pair_created_at)
            if created_at is None:
                raise PolicyViolationError(
                    f"Cannot get token pair creation time, minimum age is: "
                    f"{thresholds.minimum_pair_age_hours:g} hours"
                )
            age_hours = (utc_now() - created_at).total_seconds() / 3600
            if age_hours < thresholds.minimum_pair_age_hours:
                raise PolicyViolationError(
                    f"Token pair is too young ({age_hours:.2f} hours old, minimum: "
                    f"{thresholds.minimum_pair_age_hours:g} hours)"
                )

        if thresholds.minimum_24h_volume_usd > 0:
            if report.volume_24h_usd is None:
                raise PolicyViolationError("Cannot get token 24h volume data")
            if report.volume_24h_usd < thresholds.minimum_24h_volume_usd:
                raise PolicyViolationError(
                    f"Token has insufficient 24h volume ({_usd(report.volume_24h_usd)}, "
                    f"minimum: {_usd(thresholds.minimum_24h_volume_usd)})"
                )

        if thresholds.minimum_liquidity_usd > 0:
            if report.liquidity_usd is None:
                raise PolicyViolationError("Cannot get token liquidity")
            if report.liquidity_usd < thresholds.minimum_liquidity_usd:
                raise PolicyViolationError(
                    f"Token has insufficient liquidity ({_usd(report.liquidity_usd)}, "
                    f"minimum: {_usd(thresholds.minimum_liquidity_usd)})"
                )

        if thresholds.minimum_fdv_usd > 0:
            if report.fdv_usd is None:
                raise PolicyViolationError("Cannot get token FDV")
            if report.fdv_usd < thresholds.minimum_fdv_usd:
                raise PolicyViolationError(
                    f"Token has insufficient FDV ({_usd(report.fdv_usd)}, "
                    f"minimum: {_usd(thresholds.minimum_fdv_usd)})"
                )

    async def _check_balance_and_size(self, agent_id: str, competition_id: str, from_token: str,
                                      from_amount: float, from_value_usd: float) -> None:
        balances = await self.balances.get_all_balances(agent_id, competition_id)
        current = next((float(b.amount) for b in balances if b.token_address == from_token), 0.0)
        if current < from_amount:
            raise PolicyViolationError(
                "Insufficient balance",
                details={"token": from_token, "available": current, "requested": from_amount},
            )

        portfolio_value = await self.balances.get_portfolio_value(
            agent_id, competition_id, self.oracle, balances=balances
        )
        max_trade_value = portfolio_value * (self.config.max_trade_percentage / 100)
        if from_value_usd > max_trade_value:
            raise PolicyViolationError(
                f"Trade exceeds maximum size ({self.config.max_trade_percentage:g}% of portfolio value)",
                details={"trade_value_usd": from_value_usd, "max_trade_value_usd": max_trade_value},
            )

    def _calculate_amounts(self, from_amount: float, from_value_usd: float, to_price: float) -> Tuple[float, float]:
        # Burn: destination worth nothing, nothing received
        if to_price == 0:
            return 0.0, 0.0

        effective_value_usd, slippage = calculate_slippage(from_value_usd, self.random_source())
        to_amount = effective_value_usd / to_price
        logger.debug(f"Applied slippage {slippage * 100:.4f}% to ${from_value_usd:.2f} trade")
        return to_amount, to_amount / from_amount
