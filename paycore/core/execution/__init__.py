"""
Transaction Execution Layer

Builds provider-native transactions and dispatches them for signing:
- TransactionBuilder: EVM call objects and Solana transactions from intents
- SigningDispatcher: sign-and-broadcast through any SigningProvider
- SolanaConnection: blockhash and signature lookups

Usage:
    from paycore.core.execution import TransactionBuilder, SigningDispatcher

    builder = TransactionBuilder(backend, solana_connection)
    native_tx = await builder.build(intent, provider)

    dispatcher = SigningDispatcher(solana_connection, builder.refresh_blockhash)
    result = await dispatcher.sign_and_broadcast(native_tx, provider)
"""

from .tx_builder import (
    EvmCall,
    NativeTransaction,
    TransactionBuilder,
    to_hex_quantity,
    to_minor_units,
    ERC20_TRANSFER_SELECTOR,
    ERC20_APPROVE_SELECTOR,
)

from .solana_tx import (
    SolanaTransaction,
    decode_transaction,
    encode_transaction,
    with_blockhash,
    build_sol_transfer,
)

from .solana_rpc import (
    SolanaConnection,
    SolanaRpcError,
    get_solana_connection,
)

from .dispatcher import (
    SigningDispatcher,
    SigningTimeoutError,
)

__all__ = [
    # Builder
    "EvmCall",
    "NativeTransaction",
    "TransactionBuilder",
    "to_hex_quantity",
    "to_minor_units",
    "ERC20_TRANSFER_SELECTOR",
    "ERC20_APPROVE_SELECTOR",
    # Solana transactions
    "SolanaTransaction",
    "decode_transaction",
    "encode_transaction",
    "with_blockhash",
    "build_sol_transfer",
    # Solana RPC
    "SolanaConnection",
    "SolanaRpcError",
    "get_solana_connection",
    # Dispatcher
    "SigningDispatcher",
    "SigningTimeoutError",
]
