"""
Settlement pipeline models and types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class IntentKind(str, Enum):
    """What the user asked the chat layer to do."""
    SEND = "send"
    SWAP = "swap"
    STAKE = "stake"
    UNSTAKE = "unstake"
    APPROVE = "approve"
    BUY = "buy"
    SELL = "sell"


RAMP_KINDS = frozenset({IntentKind.BUY, IntentKind.SELL})


class SettlementStatus(str, Enum):
    """Outcome status stored on a transaction record."""
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


class RequestStatus(str, Enum):
    """Payment request lifecycle status."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != RequestStatus.PENDING


@dataclass(frozen=True)
class TransactionIntent:
    """
    A user intent to move funds, immutable once created.

    Exactly one of amount_minor (smallest units) or amount_decimal (human
    units) is normally set. raw_unsigned_payload is whatever the backend
    prepared (an EVM call dict, a base64 Solana transaction, or None for
    locally-assembled transfers).
    """
    kind: IntentKind
    network: str
    token_symbol: str
    amount_decimal: Optional[Union[str, Decimal]] = None
    amount_minor: Optional[int] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    token_contract_or_mint: Optional[str] = None
    token_decimals: Optional[int] = None
    raw_unsigned_payload: Any = field(default=None, compare=False)

    # Backend fee estimates (hex or integer wei)
    gas_limit: Optional[Union[str, int]] = None
    gas_price: Optional[Union[str, int]] = None

    # Set when the intent settles a payment request
    request_id: Optional[str] = None

    @property
    def display_amount(self) -> str:
        if self.amount_decimal is not None:
            return str(self.amount_decimal)
        if self.amount_minor is not None:
            return str(self.amount_minor)
        return "0"

    @classmethod
    def from_preview(cls, preview: Dict[str, Any], request_id: Optional[str] = None) -> "TransactionIntent":
        """
        Build an intent from a backend transaction preview.

        Accepts the chat-message shape (type/amount/tokenSymbol/network/to/
        from/unsignedTransaction/gas/estimatedGas/gasPrice) and the
        request-preview shape where to/from live under "params".
        """
        params = preview.get("params") or {}
        raw_kind = (preview.get("type") or "send").lower()
        if raw_kind == "transfer":
            raw_kind = "send"
        try:
            kind = IntentKind(raw_kind)
        except ValueError:
            kind = IntentKind.SEND

        return cls(
            kind=kind,
            network=preview.get("network") or params.get("network") or "ethereum",
            token_symbol=preview.get("tokenSymbol") or preview.get("token") or params.get("tokenSymbol") or "ETH",
            amount_decimal=preview.get("amount") or params.get("amount"),
            from_address=preview.get("from") or params.get("from"),
            to_address=preview.get("to") or params.get("to"),
            token_contract_or_mint=preview.get("tokenAddress") or params.get("tokenAddress"),
            raw_unsigned_payload=preview.get("unsignedTransaction"),
            gas_limit=preview.get("gas") or preview.get("estimatedGas"),
            gas_price=preview.get("gasPrice"),
            request_id=request_id or preview.get("requestId"),
        )


@dataclass(frozen=True)
class SettlementResult:
    """Result of one signing+broadcast attempt. Never mutated."""
    success: bool
    transaction_hash: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def succeeded(cls, transaction_hash: str) -> "SettlementResult":
        return cls(success=True, transaction_hash=transaction_hash)

    @classmethod
    def failed(
        cls,
        error_kind: Any,
        error_message: str,
        transaction_hash: Optional[str] = None,
    ) -> "SettlementResult":
        kind = getattr(error_kind, "value", error_kind)
        return cls(
            success=False,
            transaction_hash=transaction_hash,
            error_kind=kind,
            error_message=error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "transactionHash": self.transaction_hash,
            "errorKind": self.error_kind,
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True)
class EnrichedTransactionRecord:
    """
    Tracked outcome of a settlement, keyed by the originating message.

    Enrichment produces a new record (dataclasses.replace); refresh_attempted
    flips once, after the single enrichment fetch.
    """
    message_id: str
    network: str
    token_symbol: str
    amount: str
    to_address: Optional[str]
    transaction_hash: Optional[str]
    status: SettlementStatus
    transaction_type: str = IntentKind.SEND.value
    from_address: Optional[str] = None
    explorer_url: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    # Enrichment
    achievement: Optional[Dict[str, Any]] = None
    user_stats: Optional[Dict[str, Any]] = None
    social_proof: Optional[Dict[str, Any]] = None
    personalized_message: Optional[str] = None
    refresh_attempted: bool = False

    # Ledger write state ("settled but unrecorded" when tracked is False)
    tracked: bool = False
    tracking_error: Optional[str] = None

    request_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_enrichment(self) -> bool:
        return bool(self.achievement or self.user_stats or self.social_proof)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messageId": self.message_id,
            "type": self.transaction_type,
            "network": self.network,
            "tokenSymbol": self.token_symbol,
            "amount": self.amount,
            "from": self.from_address,
            "to": self.to_address,
            "hash": self.transaction_hash,
            "status": self.status.value,
            "explorerUrl": self.explorer_url,
            "errorKind": self.error_kind,
            "errorMessage": self.error_message,
            "achievement": self.achievement,
            "userStats": self.user_stats,
            "socialProof": self.social_proof,
            "personalizedMessage": self.personalized_message,
            "refreshAttempted": self.refresh_attempted,
            "tracked": self.tracked,
            "trackingError": self.tracking_error,
            "requestId": self.request_id,
            "timestamp": int(self.created_at.timestamp() * 1000),
        }


@dataclass
class RequestRecipient:
    """One recipient of a payment request and their response."""
    user_id: str
    status: RequestStatus = RequestStatus.PENDING
    username: Optional[str] = None


@dataclass
class PaymentRequest:
    """A sender-initiated ask for payment, mutated only by the lifecycle manager."""
    id: str
    sender_id: str
    amount: str
    token_symbol: str
    network: str
    recipients: List[RequestRecipient] = field(default_factory=list)
    status: RequestStatus = RequestStatus.PENDING
    message: Optional[str] = None
    sender_username: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def recipient(self, user_id: Optional[str]) -> Optional[RequestRecipient]:
        if user_id is None:
            return None
        for recipient in self.recipients:
            if recipient.user_id == user_id:
                return recipient
        return None


@dataclass(frozen=True)
class WalletIdentity:
    """An authenticated wallet: its address and the handle used to reach it."""
    address: str
    handle: Any = field(compare=False, repr=False)


@dataclass(frozen=True)
class AuthSnapshot:
    """
    Point-in-time view of which wallets the user has authenticated.

    Owned and refreshed by the auth layer; the core only reads it.
    """
    external_session: Optional[WalletIdentity] = None
    custodial_evm: Optional[WalletIdentity] = None
    custodial_solana: Optional[WalletIdentity] = None

    @property
    def is_empty(self) -> bool:
        return not (self.external_session or self.custodial_evm or self.custodial_solana)

    def addresses(self) -> Tuple[str, ...]:
        return tuple(
            identity.address
            for identity in (self.external_session, self.custodial_evm, self.custodial_solana)
            if identity is not None
        )
