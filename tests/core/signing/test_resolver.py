import pytest

from paycore.core.errors import NoProviderAvailableError
from paycore.core.models import AuthSnapshot, WalletIdentity
from paycore.core.networks import ChainFamily
from paycore.core.signing import (
    CustodialEvmProvider,
    CustodialSolanaProvider,
    ProviderKind,
    WalletConnectEvmProvider,
    resolve,
)

EXTERNAL = WalletIdentity("0x" + "11" * 20, handle=object())
CUSTODIAL_EVM = WalletIdentity("0x" + "22" * 20, handle=object())
CUSTODIAL_SOL = WalletIdentity("11111111111111111111111111111111", handle=object())


def test_external_session_wins_for_evm():
    auth = AuthSnapshot(external_session=EXTERNAL, custodial_evm=CUSTODIAL_EVM)

    provider = resolve(ChainFamily.EVM, auth)

    assert isinstance(provider, WalletConnectEvmProvider)
    assert provider.address == EXTERNAL.address
    assert provider.handle is EXTERNAL.handle


def test_custodial_evm_without_session():
    provider = resolve("evm", AuthSnapshot(custodial_evm=CUSTODIAL_EVM))

    assert isinstance(provider, CustodialEvmProvider)
    assert provider.kind == ProviderKind.CUSTODIAL_EVM


def test_solana_uses_custodial_solana_even_with_evm_session():
    auth = AuthSnapshot(external_session=EXTERNAL, custodial_solana=CUSTODIAL_SOL)

    provider = resolve(ChainFamily.SOLANA, auth)

    assert isinstance(provider, CustodialSolanaProvider)
    assert provider.family == ChainFamily.SOLANA


def test_solana_without_solana_wallet():
    auth = AuthSnapshot(external_session=EXTERNAL, custodial_evm=CUSTODIAL_EVM)

    with pytest.raises(NoProviderAvailableError) as exc:
        resolve(ChainFamily.SOLANA, auth)

    assert exc.value.family == "solana"


def test_empty_auth():
    auth = AuthSnapshot()

    assert auth.is_empty
    with pytest.raises(NoProviderAvailableError):
        resolve(ChainFamily.EVM, auth)


def test_resolution_is_deterministic():
    auth = AuthSnapshot(external_session=EXTERNAL, custodial_evm=CUSTODIAL_EVM)

    assert resolve(ChainFamily.EVM, auth) == resolve(ChainFamily.EVM, auth)
