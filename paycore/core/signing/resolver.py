"""
Provider resolution.

Pure selection of the signing provider for a chain family from an
authentication snapshot. No signing, no I/O.
"""

from typing import Union

from ..errors import NoProviderAvailableError
from ..models import AuthSnapshot
from ..networks import ChainFamily
from .providers import (
    CustodialEvmProvider,
    CustodialSolanaProvider,
    SigningProvider,
    WalletConnectEvmProvider,
)


def resolve(family: Union[ChainFamily, str], auth: AuthSnapshot) -> SigningProvider:
    """
    Select the provider that must sign for a chain family.

    Priority (first match wins):
        1. EVM with a connected external session -> WalletConnectEvm
        2. EVM with a custodial EVM wallet -> CustodialEvm
        3. Solana with a custodial Solana wallet -> CustodialSolana

    Raises:
        NoProviderAvailableError: no authenticated wallet can sign for family
    """
    family = ChainFamily(family)

    if family == ChainFamily.EVM:
        if auth.external_session is not None:
            identity = auth.external_session
            return WalletConnectEvmProvider(address=identity.address, handle=identity.handle)
        if auth.custodial_evm is not None:
            identity = auth.custodial_evm
            return CustodialEvmProvider(address=identity.address, handle=identity.handle)

    elif family == ChainFamily.SOLANA:
        if auth.custodial_solana is not None:
            identity = auth.custodial_solana
            return CustodialSolanaProvider(address=identity.address, handle=identity.handle)

    raise NoProviderAvailableError(family.value)
