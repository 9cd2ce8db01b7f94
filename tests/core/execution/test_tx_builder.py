"""
Tests for unsigned transaction building (EVM side).
"""

from unittest.mock import AsyncMock

import pytest

from paycore.core.errors import MalformedIntentError, NetworkError
from paycore.core.execution.tx_builder import (
    ERC20_APPROVE_SELECTOR,
    ERC20_TRANSFER_SELECTOR,
    EvmCall,
    TransactionBuilder,
    to_hex_quantity,
    to_minor_units,
)
from paycore.core.models import IntentKind, TransactionIntent
from paycore.core.signing import CustodialEvmProvider, CustodialSolanaProvider
from paycore.db.backend_client import BackendError
from paycore.types.backend import GasEstimatePayload, PreparedTransaction

SENDER = "0x" + "11" * 20
RECIPIENT = "0xAbCdEf0123456789abcdef0123456789ABCDEF01"
POLYGON_USDC = "0x3c499c542cef5e3811e1192ce70d8cc03d5c3359"


@pytest.fixture
def evm_provider():
    return CustodialEvmProvider(address=SENDER)


def _intent(**overrides):
    fields = dict(
        kind=IntentKind.SEND,
        network="ethereum",
        token_symbol="ETH",
        amount_decimal="0.5",
        to_address=RECIPIENT,
    )
    fields.update(overrides)
    return TransactionIntent(**fields)


@pytest.mark.asyncio
async def test_native_send_value_is_hex_wei(evm_provider):
    call = await TransactionBuilder().build(_intent(), evm_provider)

    assert isinstance(call, EvmCall)
    assert call.value == hex(5 * 10**17)
    assert call.to == RECIPIENT.lower()
    assert call.data == "0x"
    assert call.chain_id == 1


@pytest.mark.asyncio
async def test_default_gas_limit_without_estimate(evm_provider):
    call = await TransactionBuilder(default_gas_limit=21000).build(_intent(), evm_provider)

    assert call.gas_limit == hex(21000)
    assert call.gas_price is None
    assert "gasPrice" not in call.to_rpc_params(SENDER)


@pytest.mark.asyncio
async def test_erc20_transfer_targets_token_contract(evm_provider):
    intent = _intent(network="polygon", token_symbol="USDC", amount_decimal="10")

    call = await TransactionBuilder().build(intent, evm_provider)

    assert call.to == POLYGON_USDC
    assert call.value == "0x0"
    assert call.data.startswith(ERC20_TRANSFER_SELECTOR)
    assert RECIPIENT.lower()[2:] in call.data
    assert call.data.endswith(format(10 * 10**6, "064x"))
    assert call.chain_id == 137


@pytest.mark.asyncio
async def test_erc20_approve(evm_provider):
    intent = _intent(kind=IntentKind.APPROVE, token_symbol="USDC", amount_decimal="1")

    call = await TransactionBuilder().build(intent, evm_provider)

    assert call.data.startswith(ERC20_APPROVE_SELECTOR)
    assert call.value == "0x0"


@pytest.mark.asyncio
async def test_native_approve_rejected(evm_provider):
    with pytest.raises(MalformedIntentError):
        await TransactionBuilder().build(_intent(kind=IntentKind.APPROVE), evm_provider)


@pytest.mark.asyncio
async def test_prepared_payload_normalized_to_hex(evm_provider):
    intent = _intent(
        kind=IntentKind.SWAP,
        raw_unsigned_payload={"to": RECIPIENT, "value": 1000, "data": "0xdeadbeef", "gas": 50000},
    )

    call = await TransactionBuilder().build(intent, evm_provider)

    assert call.value == "0x3e8"
    assert call.gas_limit == "0xc350"
    assert call.data == "0xdeadbeef"


@pytest.mark.asyncio
async def test_prepared_payload_with_decimal_value_rejected(evm_provider):
    intent = _intent(raw_unsigned_payload={"to": RECIPIENT, "value": "0.5"})

    with pytest.raises(MalformedIntentError):
        await TransactionBuilder().build(intent, evm_provider)


@pytest.mark.asyncio
async def test_swap_without_backend_rejected(evm_provider):
    with pytest.raises(MalformedIntentError):
        await TransactionBuilder().build(_intent(kind=IntentKind.SWAP), evm_provider)


@pytest.mark.asyncio
async def test_missing_recipient(evm_provider):
    with pytest.raises(MalformedIntentError):
        await TransactionBuilder().build(_intent(to_address=None), evm_provider)


@pytest.mark.asyncio
async def test_family_mismatch_rejected():
    provider = CustodialSolanaProvider(address="11111111111111111111111111111111")

    with pytest.raises(MalformedIntentError):
        await TransactionBuilder().build(_intent(), provider)


@pytest.mark.asyncio
async def test_ramp_intent_not_buildable(evm_provider):
    with pytest.raises(MalformedIntentError):
        await TransactionBuilder().build(_intent(kind=IntentKind.BUY), evm_provider)


@pytest.mark.asyncio
async def test_too_many_decimals(evm_provider):
    intent = _intent(network="polygon", token_symbol="USDC", amount_decimal="1.0000001")

    with pytest.raises(MalformedIntentError):
        await TransactionBuilder().build(intent, evm_provider)


@pytest.mark.asyncio
async def test_gas_estimate_from_backend(evm_provider):
    backend = AsyncMock()
    backend.get_gas_estimate = AsyncMock(
        return_value=GasEstimatePayload(gasLimit="0x7530", gasPrice=10**9)
    )

    call = await TransactionBuilder(backend=backend).build(_intent(), evm_provider)

    assert call.gas_limit == "0x7530"
    assert call.gas_price == hex(10**9)
    network_name, params = backend.get_gas_estimate.await_args.args
    assert network_name == "ethereum"
    assert params["to"] == RECIPIENT.lower()


@pytest.mark.asyncio
async def test_intent_gas_overrides_estimate(evm_provider):
    backend = AsyncMock()
    backend.get_gas_estimate = AsyncMock(
        return_value=GasEstimatePayload(gasLimit="0x7530", gasPrice="0x1")
    )
    intent = _intent(gas_limit=60000)

    call = await TransactionBuilder(backend=backend).build(intent, evm_provider)

    assert call.gas_limit == hex(60000)
    assert call.gas_price == "0x1"


@pytest.mark.asyncio
async def test_gas_estimate_failure_keeps_defaults(evm_provider):
    backend = AsyncMock()
    backend.get_gas_estimate = AsyncMock(side_effect=BackendError("boom", 500))

    call = await TransactionBuilder(backend=backend, default_gas_limit=21000).build(
        _intent(), evm_provider
    )

    assert call.gas_limit == hex(21000)
    assert call.gas_price is None


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, "0x0"),
        (0, "0x0"),
        (21000, "0x5208"),
        ("0x5208", "0x5208"),
        ("21000", "0x5208"),
    ],
)
def test_to_hex_quantity(value, expected):
    assert to_hex_quantity(value) == expected


@pytest.mark.parametrize("value", ["0.5", "1e18", -1, True, 1.5])
def test_to_hex_quantity_rejects_non_integers(value):
    with pytest.raises(MalformedIntentError):
        to_hex_quantity(value)


def test_to_minor_units():
    assert to_minor_units(_intent(amount_decimal="1.5"), 18) == 15 * 10**17
    assert to_minor_units(_intent(amount_decimal=None, amount_minor=42), 18) == 42

    with pytest.raises(MalformedIntentError):
        to_minor_units(_intent(amount_decimal="-1"), 18)
    with pytest.raises(MalformedIntentError):
        to_minor_units(_intent(amount_decimal="abc"), 18)
    with pytest.raises(MalformedIntentError):
        to_minor_units(_intent(amount_decimal=None), 18)


@pytest.mark.asyncio
async def test_swap_uses_backend_prepared_call(evm_provider):
    router = "0x" + "99" * 20
    backend = AsyncMock()
    backend.prepare_transaction = AsyncMock(return_value=PreparedTransaction.model_validate({
        "transaction": {"to": router, "value": "0x0", "data": "0x12345678", "gas": 150000, "gasPrice": "0x3b9aca00"},
    }))
    intent = _intent(kind=IntentKind.SWAP, to_address=None, token_symbol="USDC", amount_decimal="25")

    call = await TransactionBuilder(backend=backend).build(intent, evm_provider)

    assert call.to == router
    assert call.data == "0x12345678"
    assert call.gas_limit == hex(150000)
    request = backend.prepare_transaction.await_args.args[0]
    assert request == {
        "type": "swap",
        "network": "ethereum",
        "fromAddress": SENDER,
        "amount": "25",
        "tokenSymbol": "USDC",
    }
    backend.get_gas_estimate.assert_not_awaited()


@pytest.mark.asyncio
async def test_prepare_rejected_by_backend(evm_provider):
    backend = AsyncMock()
    backend.prepare_transaction = AsyncMock(side_effect=BackendError("Unsupported pair", 400))

    with pytest.raises(MalformedIntentError):
        await TransactionBuilder(backend=backend).build(_intent(kind=IntentKind.STAKE), evm_provider)


@pytest.mark.asyncio
async def test_prepare_backend_down(evm_provider):
    backend = AsyncMock()
    backend.prepare_transaction = AsyncMock(side_effect=BackendError("down", 503))

    with pytest.raises(NetworkError):
        await TransactionBuilder(backend=backend).build(_intent(kind=IntentKind.UNSTAKE), evm_provider)


@pytest.mark.asyncio
async def test_prepare_returns_nothing(evm_provider):
    backend = AsyncMock()
    backend.prepare_transaction = AsyncMock(return_value=PreparedTransaction())

    with pytest.raises(MalformedIntentError):
        await TransactionBuilder(backend=backend).build(_intent(kind=IntentKind.SWAP), evm_provider)
