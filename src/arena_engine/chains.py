"""
Blockchain and token reference data.

Specific chains belong to one of two blockchain families: ``evm`` and
``svm``. Each specific chain carries its well-known token addresses, which
drive stablecoin detection, the constraint exempt list and the starting
allocation of spot competitions.
"""

from enum import Enum
from typing import Dict, Optional, Set


class BlockchainType(str, Enum):
    EVM = "evm"
    SVM = "svm"


SPECIFIC_CHAIN_TOKENS: Dict[str, Dict[str, str]] = {
    "eth": {
        "eth": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "usdc": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        "usdt": "0xdAC17F958D2ee523a2206206994597C13D831ec7",
    },
    "polygon": {
        "matic": "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
        "eth": "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",
        "usdc": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
        "usdt": "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
    },
    "base": {
        "eth": "0x4200000000000000000000000000000000000006",
        "usdc": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "usdt": "0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2",
    },
    "svm": {
        "sol": "So11111111111111111111111111111111111111112",
        "usdc": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        "usdt": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
    },
    "arbitrum": {
        "eth": "0x82af49447d8a07e3bd95bd0d56f35241523fbab1",
        "usdc": "0xaf88d065e77c8cc2239327c5edb3a432268e5831",
        "usdt": "0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9",
    },
    "optimism": {
        "eth": "0x4200000000000000000000000000000000000006",
        "usdc": "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
        "usdt": "0x94b008aa00579c1307b0ef2c499ad98a8ce58e58",
    },
    "avalanche": {
        "avax": "0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7",
        "usdc": "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
    },
}

STABLECOIN_KEYS = ("usdc", "usdt")
WRAPPED_NATIVE_KEYS = ("eth", "sol", "matic", "avax")


def detect_blockchain_type(token_address: str) -> BlockchainType:
    """EVM addresses are 0x-prefixed hex; everything else is treated as SVM."""
    if token_address.lower().startswith("0x"):
        return BlockchainType.EVM
    return BlockchainType.SVM


def normalize_token_address(token_address: str) -> str:
    """
    Canonical stored form of a token address.

    EVM addresses are case-insensitive hex, so checksummed and lowercase
    spellings name the same token and are stored lowercase. SVM base58
    addresses are case-sensitive and pass through unchanged.
    """
    token_address = token_address.strip()
    if detect_blockchain_type(token_address) == BlockchainType.EVM:
        return token_address.lower()
    return token_address


def default_specific_chain(chain: BlockchainType) -> Optional[str]:
    # SVM has a single specific chain; EVM needs a hint or a price lookup
    if chain == BlockchainType.SVM:
        return "svm"
    return None


def is_stablecoin(token_address: str, specific_chain: Optional[str]) -> bool:
    tokens = SPECIFIC_CHAIN_TOKENS.get(specific_chain or "")
    if not tokens:
        return False

    normalized = token_address.lower()
    return any(
        tokens.get(key, "").lower() == normalized
        for key in STABLECOIN_KEYS
    )


def exempt_tokens() -> Set[str]:
    """Major tokens (wrapped natives) that skip trading constraint checks."""
    exempt = set()
    for tokens in SPECIFIC_CHAIN_TOKENS.values():
        for key in WRAPPED_NATIVE_KEYS:
            if key in tokens:
                exempt.add(tokens[key].lower())
    return exempt


def usdc_address(specific_chain: str) -> Optional[str]:
    return SPECIFIC_CHAIN_TOKENS.get(specific_chain, {}).get("usdc")
