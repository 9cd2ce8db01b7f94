"""
Unsigned transaction builder.

Normalizes a TransactionIntent into the native shape its provider signs:
an EvmCall (all quantities 0x-hex) or a solders Solana transaction carrying a
freshly fetched blockhash. Amount-unit conversion happens here and nowhere
else.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

from eth_utils import is_hex_address

from ...config import settings
from ...db.backend_client import BackendClient, BackendError
from ..errors import MalformedIntentError, NetworkError
from ..models import IntentKind, RAMP_KINDS, TransactionIntent
from ..networks import ChainFamily, NetworkInfo, TokenInfo, classify_network, resolve_token
from ..signing.providers import SigningProvider
from .solana_rpc import SolanaConnection
from .solana_tx import SolanaTransaction, build_sol_transfer, decode_transaction, with_blockhash

logger = logging.getLogger(__name__)


# Common contract ABIs (minimal for encoding)
ERC20_APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)
ERC20_TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)

LOCAL_KINDS = frozenset({IntentKind.SEND, IntentKind.APPROVE})


def _encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex string (without 0x prefix)."""
    return format(value, "064x")


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    addr = address.lower().replace("0x", "")
    return addr.zfill(64)


def to_hex_quantity(value: Union[int, str, None], field_name: str = "value") -> str:
    """
    Normalize an integer quantity (wei, gas) to 0x-prefixed hex.

    Accepts ints, 0x-hex strings and base-10 integer strings. Fractional
    values are rejected: they mean a human-unit amount leaked through.
    """
    if value is None or value == "":
        return "0x0"
    if isinstance(value, bool):
        raise MalformedIntentError(f"{field_name} must be an integer quantity")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError as e:
            raise MalformedIntentError(
                f"{field_name} must be an integer quantity in smallest units, got {value!r}"
            ) from e
    else:
        raise MalformedIntentError(f"{field_name} has unsupported type {type(value).__name__}")

    if number < 0:
        raise MalformedIntentError(f"{field_name} cannot be negative")
    return hex(number)


def to_minor_units(intent: TransactionIntent, decimals: int) -> int:
    """Convert the intent's amount to integer smallest units."""
    if intent.amount_minor is not None:
        if isinstance(intent.amount_minor, bool) or not isinstance(intent.amount_minor, int):
            raise MalformedIntentError("amount_minor must be an integer")
        if intent.amount_minor < 0:
            raise MalformedIntentError("Amount cannot be negative")
        return intent.amount_minor

    if intent.amount_decimal is None:
        raise MalformedIntentError("Intent has no amount")

    try:
        amount = Decimal(str(intent.amount_decimal).strip())
    except InvalidOperation as e:
        raise MalformedIntentError(f"Invalid amount {intent.amount_decimal!r}") from e

    if not amount.is_finite() or amount < 0:
        raise MalformedIntentError(f"Invalid amount {intent.amount_decimal!r}")

    minor = amount.scaleb(decimals)
    if minor != minor.to_integral_value():
        raise MalformedIntentError(
            f"Amount {intent.amount_decimal} has more than {decimals} decimal places"
        )
    return int(minor)


@dataclass(frozen=True)
class EvmCall:
    """EVM call object handed to an EVM signer. All quantities are 0x-hex."""
    to: str
    value: str = "0x0"
    data: str = "0x"
    gas_limit: str = hex(21000)
    gas_price: Optional[str] = None
    chain_id: Optional[int] = None

    def to_rpc_params(self, from_address: Optional[str] = None) -> Dict[str, Any]:
        """eth_sendTransaction params; the gas limit travels under "gas"."""
        params: Dict[str, Any] = {
            "to": self.to,
            "value": self.value,
            "data": self.data,
            "gas": self.gas_limit,
        }
        if from_address:
            params["from"] = from_address
        if self.gas_price is not None:
            params["gasPrice"] = self.gas_price
        return params

    @property
    def value_wei(self) -> int:
        return int(self.value, 16)


NativeTransaction = Union[EvmCall, SolanaTransaction]


class TransactionBuilder:
    """
    Builds provider-native unsigned transactions.

    Handles:
    - Backend-prepared EVM calls (hex normalization)
    - Local EVM native transfers, ERC20 transfer/approve
    - Backend-prepared Solana transactions (base64 or native)
    - Local SOL transfers
    - Mandatory blockhash refresh for every Solana transaction
    """

    def __init__(
        self,
        backend: Optional[BackendClient] = None,
        solana_connection: Optional[SolanaConnection] = None,
        default_gas_limit: Optional[int] = None,
    ):
        self._backend = backend
        self._solana = solana_connection
        self._default_gas_limit = default_gas_limit or settings.default_gas_limit

    async def build(self, intent: TransactionIntent, provider: SigningProvider) -> NativeTransaction:
        """
        Build the native transaction for intent and provider.

        Raises:
            MalformedIntentError: missing recipient, bad amount, undecodable payload
            NetworkError: blockhash could not be fetched
        """
        if intent.kind in RAMP_KINDS or provider.family is None:
            raise MalformedIntentError("Fiat ramp orders are not built as transactions")

        network = classify_network(intent.network)
        if network.family != provider.family:
            raise MalformedIntentError(
                f"{provider.kind.value} cannot sign for {network.name}"
            )

        if network.family == ChainFamily.SOLANA:
            return await self.build_solana(intent, network, provider.address)
        return await self.build_evm(intent, network, provider.address)

    # =========================================================================
    # EVM
    # =========================================================================

    async def build_evm(
        self,
        intent: TransactionIntent,
        network: NetworkInfo,
        signer_address: Optional[str] = None,
    ) -> EvmCall:
        payload = intent.raw_unsigned_payload
        if payload is None and intent.kind not in LOCAL_KINDS:
            payload = await self._prepare(intent, network, signer_address)
        if payload is not None and not isinstance(payload, dict):
            raise MalformedIntentError("EVM payload must be a call object")

        if payload:
            to = payload.get("to")
            value = to_hex_quantity(payload.get("value"), "value")
            data = payload.get("data") or "0x"
            gas_limit = payload.get("gas") or payload.get("gasLimit") or intent.gas_limit
            gas_price = payload.get("gasPrice") or intent.gas_price
        else:
            to, value, data = self._assemble_evm(intent, network)
            gas_limit = intent.gas_limit
            gas_price = intent.gas_price

        if not to or not is_hex_address(to):
            raise MalformedIntentError(f"Invalid or missing recipient address: {to!r}")
        if not str(data).startswith("0x"):
            raise MalformedIntentError("Call data must be 0x-prefixed hex")

        call = EvmCall(
            to=to.lower(),
            value=value,
            data=data,
            gas_limit=to_hex_quantity(gas_limit, "gas") if gas_limit else hex(self._default_gas_limit),
            gas_price=to_hex_quantity(gas_price, "gasPrice") if gas_price else None,
            chain_id=network.chain_id if isinstance(network.chain_id, int) else None,
        )

        if (not gas_limit or not gas_price) and self._backend is not None:
            call = await self._apply_gas_estimate(
                call, network, keep_limit=bool(gas_limit), keep_price=bool(gas_price)
            )
        return call

    def _assemble_evm(self, intent: TransactionIntent, network: NetworkInfo):
        if intent.kind not in LOCAL_KINDS:
            raise MalformedIntentError(f"{intent.kind.value} requires a prepared transaction")
        if not intent.to_address or not is_hex_address(intent.to_address):
            raise MalformedIntentError(f"Invalid or missing recipient address: {intent.to_address!r}")

        token = self._token_for(intent, network)
        amount = to_minor_units(intent, token.decimals)

        if intent.kind == IntentKind.APPROVE:
            if token.is_native:
                raise MalformedIntentError("Native tokens cannot be approved")
            calldata = (
                ERC20_APPROVE_SELECTOR +
                _encode_address(intent.to_address) +
                _encode_uint256(amount)
            )
            return token.address, "0x0", calldata

        if token.is_native:
            return intent.to_address, hex(amount), "0x"

        # Encode: transfer(address to, uint256 amount)
        calldata = (
            ERC20_TRANSFER_SELECTOR +
            _encode_address(intent.to_address) +
            _encode_uint256(amount)
        )
        return token.address, "0x0", calldata

    async def _apply_gas_estimate(
        self,
        call: EvmCall,
        network: NetworkInfo,
        keep_limit: bool,
        keep_price: bool,
    ) -> EvmCall:
        try:
            estimate = await self._backend.get_gas_estimate(network.name, call.to_rpc_params())
        except BackendError as e:
            logger.info(f"Gas estimate unavailable on {network.name}, using defaults: {e}")
            return call

        gas_limit = call.gas_limit
        gas_price = call.gas_price
        if not keep_limit and estimate.gas_limit:
            gas_limit = to_hex_quantity(estimate.gas_limit, "gas")
        if not keep_price and estimate.gas_price:
            gas_price = to_hex_quantity(estimate.gas_price, "gasPrice")

        return EvmCall(
            to=call.to,
            value=call.value,
            data=call.data,
            gas_limit=gas_limit,
            gas_price=gas_price,
            chain_id=call.chain_id,
        )

    # =========================================================================
    # Solana
    # =========================================================================

    async def build_solana(
        self,
        intent: TransactionIntent,
        network: NetworkInfo,
        signer_address: Optional[str] = None,
    ) -> SolanaTransaction:
        payload = intent.raw_unsigned_payload
        if payload is None and self._assembles_solana(intent, network):
            blockhash = await self._latest_blockhash()
            return self._assemble_solana(intent, network, signer_address, blockhash)
        if payload is None:
            payload = await self._prepare(intent, network, signer_address)

        # The payload blockhash is always replaced
        tx = decode_transaction(payload)
        return with_blockhash(tx, await self._latest_blockhash())

    @staticmethod
    def _assembles_solana(intent: TransactionIntent, network: NetworkInfo) -> bool:
        # Only native SOL sends are built locally
        if intent.kind != IntentKind.SEND or intent.token_contract_or_mint:
            return False
        known = resolve_token(network, intent.token_symbol)
        return known is None or known.is_native

    def _assemble_solana(self, intent, network, signer_address, blockhash) -> SolanaTransaction:
        if intent.kind != IntentKind.SEND:
            raise MalformedIntentError(f"{intent.kind.value} requires a prepared transaction")

        token = self._token_for(intent, network)
        if not token.is_native:
            raise MalformedIntentError(f"{token.symbol} transfers require a prepared transaction")

        sender = intent.from_address or signer_address
        if not sender or not intent.to_address:
            raise MalformedIntentError("Solana transfer needs a sender and a recipient")

        lamports = to_minor_units(intent, token.decimals)
        return build_sol_transfer(sender, intent.to_address, lamports, blockhash)

    # =========================================================================
    # Backend-prepared transactions
    # =========================================================================

    async def _prepare(
        self,
        intent: TransactionIntent,
        network: NetworkInfo,
        signer_address: Optional[str],
    ) -> Any:
        """Fetch the unsigned transaction for an intent that is not built locally."""
        if self._backend is None:
            raise MalformedIntentError(f"{intent.kind.value} requires a prepared transaction")

        request = {
            "type": intent.kind.value,
            "network": network.name,
            "fromAddress": intent.from_address or signer_address,
            "toAddress": intent.to_address,
            "amount": str(intent.amount_decimal) if intent.amount_decimal is not None else None,
            "amountMinor": str(intent.amount_minor) if intent.amount_minor is not None else None,
            "tokenSymbol": intent.token_symbol,
            "tokenAddress": intent.token_contract_or_mint,
        }
        try:
            prepared = await self._backend.prepare_transaction(
                {key: value for key, value in request.items() if value is not None}
            )
        except BackendError as e:
            if e.status_code is not None and 400 <= e.status_code < 500:
                raise MalformedIntentError(f"Backend could not prepare {intent.kind.value}: {e.message}") from e
            raise NetworkError(f"Backend unavailable while preparing {intent.kind.value}: {e.message}") from e

        if not prepared.transaction:
            raise MalformedIntentError(f"Backend returned no transaction for {intent.kind.value}")
        logger.info(f"Using backend-prepared {intent.kind.value} transaction on {network.name}")
        return prepared.transaction

    async def refresh_blockhash(self, tx: SolanaTransaction) -> SolanaTransaction:
        """Overwrite the blockhash of an already-built transaction."""
        return with_blockhash(tx, await self._latest_blockhash())

    async def _latest_blockhash(self):
        if self._solana is None:
            raise NetworkError("No Solana connection configured")
        return await self._solana.get_latest_blockhash()

    @staticmethod
    def _token_for(intent: TransactionIntent, network: NetworkInfo) -> TokenInfo:
        known = resolve_token(network, intent.token_symbol)
        if intent.token_contract_or_mint:
            decimals = intent.token_decimals
            if decimals is None and known is not None:
                decimals = known.decimals
            if decimals is None:
                raise MalformedIntentError(
                    f"Unknown decimals for token {intent.token_contract_or_mint}"
                )
            return TokenInfo(intent.token_symbol.upper(), decimals, intent.token_contract_or_mint)

        if known is None:
            raise MalformedIntentError(
                f"Unknown token {intent.token_symbol!r} on {network.name}"
            )
        if intent.token_decimals is not None and not known.is_native:
            return TokenInfo(known.symbol, intent.token_decimals, known.address)
        return known


__all__ = [
    "EvmCall",
    "NativeTransaction",
    "TransactionBuilder",
    "to_hex_quantity",
    "to_minor_units",
    "ERC20_TRANSFER_SELECTOR",
    "ERC20_APPROVE_SELECTOR",
]
