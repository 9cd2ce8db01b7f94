"""
Tests for the signing provider variants.
"""

from unittest.mock import AsyncMock

import pytest

from paycore.config import settings
from paycore.core.execution.tx_builder import EvmCall
from paycore.core.signing import (
    CustodialEvmProvider,
    CustodialSolanaProvider,
    FiatRampProvider,
    TransactionRevertedError,
    WalletConnectEvmProvider,
)

SENDER = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20


class FakeWallet:
    """Records requests and answers from a method -> response table."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def request(self, method, params=None):
        self.calls.append((method, params))
        response = self.responses[method]
        if isinstance(response, Exception):
            raise response
        if method == "eth_getTransactionReceipt" and isinstance(response, list):
            return response.pop(0)
        return response


@pytest.fixture
def fast_receipts(monkeypatch):
    monkeypatch.setattr(settings, "evm_confirmation_poll_seconds", 0)
    monkeypatch.setattr(settings, "evm_confirmation_timeout_seconds", 5)


def _call():
    return EvmCall(to=RECIPIENT, value=hex(5 * 10**17), gas_limit=hex(21000))


@pytest.mark.asyncio
async def test_wallet_connect_sends_then_confirms(fast_receipts):
    wallet = FakeWallet({
        "eth_sendTransaction": "0xhash",
        "eth_getTransactionReceipt": [None, {"status": "0x1"}],
    })
    provider = WalletConnectEvmProvider(address=SENDER, handle=wallet)

    tx_hash = await provider.send(_call())
    assert [m for m, _ in wallet.calls] == ["eth_sendTransaction"]
    await provider.confirm(tx_hash)

    assert tx_hash == "0xhash"
    method, params = wallet.calls[0]
    assert method == "eth_sendTransaction"
    assert params[0]["from"] == SENDER
    assert params[0]["value"] == hex(5 * 10**17)
    assert params[0]["gas"] == "0x5208"
    assert [m for m, _ in wallet.calls].count("eth_getTransactionReceipt") == 2


@pytest.mark.asyncio
async def test_wallet_connect_reverted_receipt(fast_receipts):
    wallet = FakeWallet({
        "eth_sendTransaction": "0xhash",
        "eth_getTransactionReceipt": [{"status": "0x0"}],
    })
    provider = WalletConnectEvmProvider(address=SENDER, handle=wallet)

    with pytest.raises(TransactionRevertedError) as exc:
        await provider.confirm(await provider.send(_call()))

    assert exc.value.tx_hash == "0xhash"


@pytest.mark.asyncio
async def test_receipt_polling_failure_still_reports_broadcast():
    wallet = FakeWallet({"eth_getTransactionReceipt": RuntimeError("session dropped")})
    provider = WalletConnectEvmProvider(address=SENDER, handle=wallet)

    assert await provider.wait_for_receipt("0xhash", timeout=1, poll_interval=0) is None


@pytest.mark.asyncio
async def test_receipt_timeout_returns_none():
    wallet = FakeWallet({"eth_getTransactionReceipt": None})
    provider = WalletConnectEvmProvider(address=SENDER, handle=wallet)

    assert await provider.wait_for_receipt("0xhash", timeout=0.01, poll_interval=0) is None


@pytest.mark.asyncio
async def test_custodial_evm_uses_first_account():
    account = "0x" + "33" * 20
    wallet = FakeWallet({
        "eth_requestAccounts": [account],
        "eth_sendTransaction": "0xabc",
    })
    provider = CustodialEvmProvider(address=SENDER, handle=wallet)

    assert await provider.send(_call()) == "0xabc"
    assert wallet.calls[1][1][0]["from"] == account


@pytest.mark.asyncio
async def test_custodial_solana_passes_connection():
    connection = object()
    wallet = FakeWallet({"signAndSendTransaction": {"signature": "5sig"}})
    provider = CustodialSolanaProvider(address="11111111111111111111111111111111", handle=wallet)

    signature = await provider.send("native-tx", connection)

    assert signature == "5sig"
    method, params = wallet.calls[0]
    assert method == "signAndSendTransaction"
    assert params == {"transaction": "native-tx", "connection": connection}


@pytest.mark.asyncio
async def test_custodial_solana_without_signature():
    wallet = FakeWallet({"signAndSendTransaction": {}})
    provider = CustodialSolanaProvider(address="11111111111111111111111111111111", handle=wallet)

    with pytest.raises(ValueError):
        await provider.send("native-tx")


@pytest.mark.asyncio
async def test_fiat_ramp_cannot_broadcast():
    provider = FiatRampProvider(address=SENDER)

    assert not provider.supports_broadcast
    with pytest.raises(NotImplementedError):
        await provider.send(None)


@pytest.fixture
def fast_signature_status(monkeypatch):
    monkeypatch.setattr(settings, "solana_confirmation_poll_seconds", 0)
    monkeypatch.setattr(settings, "solana_confirmation_timeout_seconds", 5)


@pytest.mark.asyncio
async def test_custodial_solana_confirm_polls_status(fast_signature_status):
    connection = AsyncMock()
    connection.get_signature_status = AsyncMock(
        side_effect=[None, {"confirmationStatus": "processed", "err": None}, {"confirmationStatus": "confirmed", "err": None}]
    )
    provider = CustodialSolanaProvider(address="11111111111111111111111111111111", handle=FakeWallet({}))

    await provider.confirm("5sig", connection)

    assert connection.get_signature_status.await_count == 3


@pytest.mark.asyncio
async def test_custodial_solana_failed_signature(fast_signature_status):
    connection = AsyncMock()
    connection.get_signature_status = AsyncMock(
        return_value={"confirmationStatus": "confirmed", "err": {"InstructionError": [0, "Custom"]}}
    )
    provider = CustodialSolanaProvider(address="11111111111111111111111111111111", handle=FakeWallet({}))

    with pytest.raises(TransactionRevertedError) as exc:
        await provider.confirm("5sig", connection)

    assert exc.value.tx_hash == "5sig"


@pytest.mark.asyncio
async def test_custodial_solana_confirm_without_connection():
    provider = CustodialSolanaProvider(address="11111111111111111111111111111111", handle=FakeWallet({}))

    assert await provider.confirm("5sig") is None
