"""
Signing module.

Wallet backends able to sign and broadcast, and the resolver that picks one.
"""

from .providers import (
    WalletHandle,
    ProviderKind,
    TransactionRevertedError,
    SigningProvider,
    WalletConnectEvmProvider,
    CustodialEvmProvider,
    CustodialSolanaProvider,
    FiatRampProvider,
)
from .resolver import resolve

__all__ = [
    "WalletHandle",
    "ProviderKind",
    "TransactionRevertedError",
    "SigningProvider",
    "WalletConnectEvmProvider",
    "CustodialEvmProvider",
    "CustodialSolanaProvider",
    "FiatRampProvider",
    "resolve",
]
