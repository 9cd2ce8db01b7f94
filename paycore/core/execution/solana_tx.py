"""
Solana transaction helpers (solders).

Decoding of backend-prepared payloads, blockhash overwrite and local
assembly of native SOL transfers.
"""

import base64
import binascii
from typing import Any, Union

from solders.hash import Hash
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from ..errors import MalformedIntentError

SolanaTransaction = Union[Transaction, VersionedTransaction]


def decode_transaction(payload: Any) -> SolanaTransaction:
    """
    Turn a raw payload into a native transaction.

    Accepts a native transaction (passed through), raw bytes, or a base64
    string of the serialized wire format (legacy or v0).
    """
    if isinstance(payload, (Transaction, VersionedTransaction)):
        return payload

    if isinstance(payload, str):
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedIntentError(f"Solana payload is not valid base64: {e}") from e
    elif isinstance(payload, (bytes, bytearray)):
        raw = bytes(payload)
    else:
        raise MalformedIntentError(
            f"Unsupported Solana payload type: {type(payload).__name__}"
        )

    # VersionedTransaction parses both legacy and v0 wire formats
    try:
        return VersionedTransaction.from_bytes(raw)
    except ValueError:
        pass
    try:
        return Transaction.from_bytes(raw)
    except ValueError as e:
        raise MalformedIntentError(f"Could not deserialize Solana transaction: {e}") from e


def encode_transaction(tx: SolanaTransaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")


def recent_blockhash(tx: SolanaTransaction) -> Hash:
    return tx.message.recent_blockhash


def _rebuild_message(message: Any, blockhash: Hash) -> Any:
    header = message.header
    if isinstance(message, MessageV0):
        return MessageV0(
            header,
            list(message.account_keys),
            blockhash,
            list(message.instructions),
            list(message.address_table_lookups),
        )
    return Message.new_with_compiled_instructions(
        header.num_required_signatures,
        header.num_readonly_signed_accounts,
        header.num_readonly_unsigned_accounts,
        list(message.account_keys),
        blockhash,
        list(message.instructions),
    )


def with_blockhash(tx: SolanaTransaction, blockhash: Hash) -> SolanaTransaction:
    """
    Return a copy of tx carrying blockhash.

    Existing signatures cover the old message, so they are reset to the
    default placeholder; the wallet signs the rebuilt message.
    """
    message = _rebuild_message(tx.message, blockhash)
    placeholders = [Signature.default()] * message.header.num_required_signatures
    if isinstance(tx, VersionedTransaction):
        return VersionedTransaction.populate(message, placeholders)
    return Transaction.populate(message, placeholders)


def build_sol_transfer(
    from_address: str,
    to_address: str,
    lamports: int,
    blockhash: Hash,
) -> Transaction:
    """Unsigned system-program transfer of lamports."""
    try:
        sender = Pubkey.from_string(from_address)
        recipient = Pubkey.from_string(to_address)
    except ValueError as e:
        raise MalformedIntentError(f"Invalid Solana address: {e}") from e

    ix = transfer(TransferParams(from_pubkey=sender, to_pubkey=recipient, lamports=lamports))
    message = Message.new_with_blockhash([ix], sender, blockhash)
    return Transaction.new_unsigned(message)
