"""
Tests for Solana transaction handling: decoding, blockhash refresh, local
transfers and the RPC connection.
"""

import base64
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from paycore.core.errors import BlockhashNotFoundError, MalformedIntentError, NetworkError
from paycore.core.execution.solana_rpc import SolanaConnection, SolanaRpcError
from paycore.core.execution.solana_tx import (
    build_sol_transfer,
    decode_transaction,
    encode_transaction,
    recent_blockhash,
    with_blockhash,
)
from paycore.core.execution.tx_builder import TransactionBuilder
from paycore.core.models import IntentKind, TransactionIntent
from paycore.core.signing import CustodialSolanaProvider
from paycore.types.backend import PreparedTransaction

SENDER = str(Pubkey.new_unique())
RECIPIENT = str(Pubkey.new_unique())


def _stale_payload(blockhash):
    tx = build_sol_transfer(SENDER, RECIPIENT, 1_000, blockhash)
    return encode_transaction(tx)


def _connection(blockhash):
    connection = AsyncMock()
    connection.get_latest_blockhash = AsyncMock(return_value=blockhash)
    return connection


def test_decode_base64_payload():
    stale = Hash.new_unique()

    tx = decode_transaction(_stale_payload(stale))

    assert isinstance(tx, (VersionedTransaction, Transaction))
    assert recent_blockhash(tx) == stale


def test_decode_native_passthrough():
    tx = build_sol_transfer(SENDER, RECIPIENT, 1, Hash.new_unique())

    assert decode_transaction(tx) is tx


@pytest.mark.parametrize(
    "payload",
    [
        "not base64!!",
        base64.b64encode(b"\x01\x02\x03").decode(),
        12345,
    ],
)
def test_decode_rejects_garbage(payload):
    with pytest.raises(MalformedIntentError):
        decode_transaction(payload)


def test_with_blockhash_replaces_hash_and_clears_signatures():
    stale, fresh = Hash.new_unique(), Hash.new_unique()
    tx = decode_transaction(_stale_payload(stale))

    refreshed = with_blockhash(tx, fresh)

    assert recent_blockhash(refreshed) == fresh
    assert list(refreshed.message.account_keys) == list(tx.message.account_keys)
    assert all(sig == Signature.default() for sig in refreshed.signatures)


def test_build_sol_transfer_invalid_address():
    with pytest.raises(MalformedIntentError):
        build_sol_transfer("not-a-key", RECIPIENT, 1, Hash.new_unique())


@pytest.mark.asyncio
async def test_builder_always_replaces_payload_blockhash():
    stale, fresh = Hash.new_unique(), Hash.new_unique()
    intent = TransactionIntent(
        kind=IntentKind.SWAP,
        network="solana",
        token_symbol="SOL",
        raw_unsigned_payload=_stale_payload(stale),
    )
    builder = TransactionBuilder(solana_connection=_connection(fresh))

    tx = await builder.build(intent, CustodialSolanaProvider(address=SENDER))

    assert recent_blockhash(tx) == fresh
    assert recent_blockhash(tx) != stale


@pytest.mark.asyncio
async def test_builder_assembles_local_sol_transfer():
    fresh = Hash.new_unique()
    intent = TransactionIntent(
        kind=IntentKind.SEND,
        network="sol",
        token_symbol="SOL",
        amount_decimal="0.25",
        to_address=RECIPIENT,
    )
    builder = TransactionBuilder(solana_connection=_connection(fresh))

    tx = await builder.build(intent, CustodialSolanaProvider(address=SENDER))

    assert recent_blockhash(tx) == fresh
    assert tx.message.account_keys[0] == Pubkey.from_string(SENDER)


@pytest.mark.asyncio
async def test_builder_rejects_spl_without_payload():
    intent = TransactionIntent(
        kind=IntentKind.SEND,
        network="solana",
        token_symbol="USDC",
        amount_decimal="1",
        to_address=RECIPIENT,
    )
    builder = TransactionBuilder(solana_connection=_connection(Hash.new_unique()))

    with pytest.raises(MalformedIntentError):
        await builder.build(intent, CustodialSolanaProvider(address=SENDER))


@pytest.mark.asyncio
async def test_builder_without_connection():
    intent = TransactionIntent(
        kind=IntentKind.SWAP,
        network="solana",
        token_symbol="SOL",
        raw_unsigned_payload=_stale_payload(Hash.new_unique()),
    )

    with pytest.raises(NetworkError):
        await TransactionBuilder().build(intent, CustodialSolanaProvider(address=SENDER))


@pytest.mark.asyncio
async def test_refresh_blockhash():
    first, second = Hash.new_unique(), Hash.new_unique()
    builder = TransactionBuilder(solana_connection=_connection(second))
    tx = build_sol_transfer(SENDER, RECIPIENT, 1, first)

    refreshed = await builder.refresh_blockhash(tx)

    assert recent_blockhash(refreshed) == second


# =============================================================================
# RPC connection
# =============================================================================


def _rpc_transport(handler):
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_get_latest_blockhash():
    fresh = Hash.new_unique()
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": 1, "result": {"value": {"blockhash": str(fresh)}}},
        )

    connection = SolanaConnection("https://rpc.test", transport=_rpc_transport(handler))

    assert await connection.get_latest_blockhash() == fresh
    assert seen["method"] == "getLatestBlockhash"
    assert seen["params"] == [{"commitment": "confirmed"}]
    await connection.close()


@pytest.mark.asyncio
async def test_missing_blockhash():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"value": {}}})

    connection = SolanaConnection("https://rpc.test", transport=_rpc_transport(handler))

    with pytest.raises(BlockhashNotFoundError):
        await connection.get_latest_blockhash()


@pytest.mark.asyncio
async def test_rpc_error_is_network_error():
    def handler(request):
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "node is behind"}}
        )

    connection = SolanaConnection("https://rpc.test", transport=_rpc_transport(handler))

    with pytest.raises(SolanaRpcError) as exc:
        await connection.get_latest_blockhash()
    assert isinstance(exc.value, NetworkError)


@pytest.mark.asyncio
async def test_http_failure_after_retries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    connection = SolanaConnection("https://rpc.test", max_retries=1, transport=_rpc_transport(handler))

    with pytest.raises(NetworkError):
        await connection.get_signature_status("5sig")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_non_json_body_is_network_error():
    def handler(request):
        return httpx.Response(200, text="<html>502 Bad Gateway</html>")

    connection = SolanaConnection("https://rpc.test", max_retries=1, transport=_rpc_transport(handler))

    with pytest.raises(NetworkError) as exc:
        await connection.get_latest_blockhash()
    assert "unreadable" in exc.value.message


@pytest.mark.asyncio
async def test_builder_prepares_spl_transfer_via_backend():
    stale = Hash.new_unique()
    fresh = Hash.new_unique()
    backend = AsyncMock()
    backend.prepare_transaction = AsyncMock(
        return_value=PreparedTransaction(transaction=_stale_payload(stale))
    )
    intent = TransactionIntent(
        kind=IntentKind.SEND,
        network="solana",
        token_symbol="USDC",
        amount_decimal="1",
        to_address=RECIPIENT,
    )
    builder = TransactionBuilder(backend=backend, solana_connection=_connection(fresh))

    tx = await builder.build(intent, CustodialSolanaProvider(address=SENDER))

    assert recent_blockhash(tx) == fresh
    request = backend.prepare_transaction.await_args.args[0]
    assert request["network"] == "solana"
    assert request["fromAddress"] == SENDER
    assert request["toAddress"] == RECIPIENT
