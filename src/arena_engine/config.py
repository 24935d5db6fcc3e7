"""Configuration and environment variable validation for the arena engine."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

CROSS_CHAIN_TRADING_TYPES = ("allowAll", "disallowXParent", "disallowAll")


class Config:
    """Configuration class that loads and validates environment variables."""

    def __init__(self):
        self.load_config()

    def load_config(self):
        """Load and validate all environment variables."""
        # Environment detection
        self.environment = os.getenv("ENVIRONMENT", "development").lower()
        self.is_production = self.environment == "production"
        self.is_development = self.environment == "development"
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        # Database configuration
        self.database_url = os.getenv("DATABASE_URL")
        self.db_echo = os.getenv("DB_ECHO", "false").lower() == "true"
        self.db_pool_size = int(os.getenv("DB_POOL_SIZE", "10"))

        # Trade execution
        self.max_trade_percentage = float(os.getenv("MAX_TRADE_PERCENTAGE", "25"))
        self.cross_chain_trading_type = os.getenv("CROSS_CHAIN_TRADING_TYPE", "disallowAll")

        # Default trading constraints, used when a competition supplies none
        self.default_minimum_pair_age_hours = float(os.getenv("MIN_PAIR_AGE_HOURS", "168"))
        self.default_minimum_24h_volume_usd = float(os.getenv("MIN_24H_VOLUME_USD", "100000"))
        self.default_minimum_liquidity_usd = float(os.getenv("MIN_LIQUIDITY_USD", "100000"))
        self.default_minimum_fdv_usd = float(os.getenv("MIN_FDV_USD", "1000000"))

        # Constraint cache
        self.constraints_cache_ttl_seconds = float(os.getenv("CONSTRAINTS_CACHE_TTL_SECONDS", "60"))
        self.constraints_cache_max_size = int(os.getenv("CONSTRAINTS_CACHE_MAX_SIZE", "10000"))

        # Price quote cache, 0 disables it
        self.price_cache_ttl_seconds = float(os.getenv("PRICE_CACHE_TTL_SECONDS", "10"))

        # Starting allocation for spot competitions, per specific chain
        self.initial_usdc_balance = float(os.getenv("INITIAL_USDC_BALANCE", "5000"))
        self.initial_balance_chains = [
            chain.strip()
            for chain in os.getenv("INITIAL_BALANCE_CHAINS", "eth,base,svm").split(",")
            if chain.strip()
        ]

        # Self-funding monitoring
        self.reconciliation_threshold_usd = float(os.getenv("RECONCILIATION_THRESHOLD_USD", "100"))
        self.critical_amount_threshold_usd = float(os.getenv("CRITICAL_AMOUNT_THRESHOLD_USD", "500"))
        self.transfer_threshold_usd = float(os.getenv("TRANSFER_THRESHOLD_USD", "0"))
        self.monitor_concurrency = int(os.getenv("MONITOR_CONCURRENCY", "10"))

        # Validate configuration based on environment
        self._validate_config()

    def _validate_config(self):
        """Validate configuration and log warnings for potential issues."""
        if self.cross_chain_trading_type not in CROSS_CHAIN_TRADING_TYPES:
            raise ValueError(
                f"CROSS_CHAIN_TRADING_TYPE must be one of {', '.join(CROSS_CHAIN_TRADING_TYPES)}"
            )

        if not 0 < self.max_trade_percentage <= 100:
            raise ValueError("MAX_TRADE_PERCENTAGE must be between 0 and 100")

        if self.monitor_concurrency < 1:
            raise ValueError("MONITOR_CONCURRENCY must be at least 1")

        if self.is_production:
            if not self.database_url:
                raise ValueError("DATABASE_URL must be set in production")

            if self.db_echo:
                logger.warning("DB_ECHO=true in production will log every statement")

        else:
            logger.info("Running in development mode")
            if not self.database_url:
                logger.warning("DATABASE_URL not set - using local default")

    def initial_balances(self) -> Dict[str, float]:
        """USDC amount granted on each configured chain when a spot competition starts."""
        return {chain: self.initial_usdc_balance for chain in self.initial_balance_chains}


# Global config instance
config = Config()
