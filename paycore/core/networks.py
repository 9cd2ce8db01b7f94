"""
Network classification and token metadata.

Maps the network names the chat layer emits ("ethereum", "Polygon", "sol", ...)
onto a chain family (EVM or Solana) plus the metadata the rest of the pipeline
needs: chain id, native symbol/decimals, explorer URL template and the token
contracts/mints we know how to transfer locally.

Unknown names fall back to ethereum unless strict classification is enabled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from eth_utils import is_hex_address
from solders.pubkey import Pubkey

from ..config import settings
from .errors import UnknownNetworkError

logger = logging.getLogger(__name__)


class ChainFamily(str, Enum):
    """Transaction shape / signing method family."""
    EVM = "evm"
    SOLANA = "solana"


@dataclass(frozen=True)
class NetworkInfo:
    """Canonical metadata for a supported network."""
    name: str
    family: ChainFamily
    chain_id: Union[int, str]
    native_symbol: str
    native_decimals: int
    explorer_template: str
    display_name: str = ""

    @property
    def is_evm(self) -> bool:
        return self.family == ChainFamily.EVM

    @property
    def is_solana(self) -> bool:
        return self.family == ChainFamily.SOLANA

    def explorer_url(self, tx_hash: str) -> str:
        return self.explorer_template.format(tx_hash=tx_hash)


@dataclass(frozen=True)
class TokenInfo:
    """A transferable token on one network."""
    symbol: str
    decimals: int
    address: Optional[str] = None     # ERC-20 contract or SPL mint; None for native
    is_native: bool = False


DEFAULT_NETWORK = "ethereum"

NETWORKS: Dict[str, NetworkInfo] = {
    "ethereum": NetworkInfo(
        name="ethereum",
        family=ChainFamily.EVM,
        chain_id=1,
        native_symbol="ETH",
        native_decimals=18,
        explorer_template="https://etherscan.io/tx/{tx_hash}",
        display_name="Ethereum",
    ),
    "polygon": NetworkInfo(
        name="polygon",
        family=ChainFamily.EVM,
        chain_id=137,
        native_symbol="MATIC",
        native_decimals=18,
        explorer_template="https://polygonscan.com/tx/{tx_hash}",
        display_name="Polygon",
    ),
    "arbitrum": NetworkInfo(
        name="arbitrum",
        family=ChainFamily.EVM,
        chain_id=42161,
        native_symbol="ETH",
        native_decimals=18,
        explorer_template="https://arbiscan.io/tx/{tx_hash}",
        display_name="Arbitrum",
    ),
    "optimism": NetworkInfo(
        name="optimism",
        family=ChainFamily.EVM,
        chain_id=10,
        native_symbol="ETH",
        native_decimals=18,
        explorer_template="https://optimistic.etherscan.io/tx/{tx_hash}",
        display_name="Optimism",
    ),
    "base": NetworkInfo(
        name="base",
        family=ChainFamily.EVM,
        chain_id=8453,
        native_symbol="ETH",
        native_decimals=18,
        explorer_template="https://basescan.org/tx/{tx_hash}",
        display_name="Base",
    ),
    "avalanche": NetworkInfo(
        name="avalanche",
        family=ChainFamily.EVM,
        chain_id=43114,
        native_symbol="AVAX",
        native_decimals=18,
        explorer_template="https://snowtrace.io/tx/{tx_hash}",
        display_name="Avalanche",
    ),
    "solana": NetworkInfo(
        name="solana",
        family=ChainFamily.SOLANA,
        chain_id="solana",
        native_symbol="SOL",
        native_decimals=9,
        explorer_template="https://solscan.io/tx/{tx_hash}",
        display_name="Solana",
    ),
}

NETWORK_ALIASES: Dict[str, str] = {
    "eth": "ethereum",
    "mainnet": "ethereum",
    "ethereum mainnet": "ethereum",
    "matic": "polygon",
    "polygon pos": "polygon",
    "arb": "arbitrum",
    "arbitrum one": "arbitrum",
    "op": "optimism",
    "base mainnet": "base",
    "avax": "avalanche",
    "avalanche c-chain": "avalanche",
    "sol": "solana",
}

# Well-known token contracts/mints per network
TOKENS: Dict[str, Dict[str, TokenInfo]] = {
    "ethereum": {
        "USDC": TokenInfo("USDC", 6, "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"),
        "USDT": TokenInfo("USDT", 6, "0xdac17f958d2ee523a2206206994597c13d831ec7"),
        "DAI": TokenInfo("DAI", 18, "0x6b175474e89094c44da98b954eedeac495271d0f"),
        "WETH": TokenInfo("WETH", 18, "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"),
    },
    "polygon": {
        "USDC": TokenInfo("USDC", 6, "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359"),
        "USDT": TokenInfo("USDT", 6, "0xc2132d05d31c914a87c6611c10748aeb04b58e8f"),
        "WETH": TokenInfo("WETH", 18, "0x7ceb23fd6bc0add59e62ac25578270cff1b9f619"),
    },
    "arbitrum": {
        "USDC": TokenInfo("USDC", 6, "0xaf88d065e77c8cc2239327c5edb3a432268e5831"),
        "USDT": TokenInfo("USDT", 6, "0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9"),
        "WETH": TokenInfo("WETH", 18, "0x82af49447d8a07e3bd95bd0d56f35241523fbab1"),
    },
    "optimism": {
        "USDC": TokenInfo("USDC", 6, "0x0b2c639c533813f4aa9d7837caf62653d097ff85"),
        "WETH": TokenInfo("WETH", 18, "0x4200000000000000000000000000000000000006"),
    },
    "base": {
        "USDC": TokenInfo("USDC", 6, "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"),
        "WETH": TokenInfo("WETH", 18, "0x4200000000000000000000000000000000000006"),
    },
    "avalanche": {
        "USDC": TokenInfo("USDC", 6, "0xb97ef9ef8734c71904d8002f8b6bc66dd9c48a6e"),
    },
    "solana": {
        "USDC": TokenInfo("USDC", 6, "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"),
        "USDT": TokenInfo("USDT", 6, "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"),
    },
}


def _lookup(network: Optional[str]) -> Optional[NetworkInfo]:
    key = (network or "").strip().lower()
    key = NETWORK_ALIASES.get(key, key)
    return NETWORKS.get(key)


def classify_network(network: Optional[str], strict: Optional[bool] = None) -> NetworkInfo:
    """
    Classify a network identifier (case-insensitive).

    Unknown or empty identifiers resolve to ethereum/EVM. With strict
    classification (argument or settings.strict_network_classification)
    they raise UnknownNetworkError instead.

    Examples:
        >>> classify_network("Polygon").family
        <ChainFamily.EVM: 'evm'>
        >>> classify_network("sol").name
        'solana'
        >>> classify_network("ethreum").name
        'ethereum'
    """
    info = _lookup(network)
    if info is not None:
        return info

    if strict is None:
        strict = settings.strict_network_classification
    if strict:
        raise UnknownNetworkError(network or "")

    logger.warning(f"Unknown network {network!r}, falling back to {DEFAULT_NETWORK}")
    return NETWORKS[DEFAULT_NETWORK]


def is_known_network(network: Optional[str]) -> bool:
    return _lookup(network) is not None


def explorer_url(network: Optional[str], tx_hash: str) -> str:
    """Block explorer link for a transaction hash (ethereum for unknown networks)."""
    return classify_network(network, strict=False).explorer_url(tx_hash)


def resolve_token(network: NetworkInfo, symbol: str) -> Optional[TokenInfo]:
    """Look up a token by symbol; the network's native token is always known."""
    upper = (symbol or "").strip().upper()
    if upper == network.native_symbol:
        return TokenInfo(upper, network.native_decimals, None, is_native=True)
    return TOKENS.get(network.name, {}).get(upper)


def is_valid_address(network: NetworkInfo, address: Optional[str]) -> bool:
    """Check an address is well-formed for the network's chain family."""
    if not address:
        return False
    if network.is_evm:
        return is_hex_address(address)
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


__all__ = [
    "ChainFamily",
    "NetworkInfo",
    "TokenInfo",
    "DEFAULT_NETWORK",
    "NETWORKS",
    "TOKENS",
    "classify_network",
    "is_known_network",
    "explorer_url",
    "resolve_token",
    "is_valid_address",
]
