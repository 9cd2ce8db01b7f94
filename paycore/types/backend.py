"""Wire models for the remote backend's JSON payloads (camelCase on the wire)."""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..core.models import (
    EnrichedTransactionRecord,
    PaymentRequest,
    RequestRecipient,
    RequestStatus,
)

T = TypeVar("T")


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class ApiResponse(WireModel, Generic[T]):
    """Standard backend envelope."""

    success: bool = Field(default=False)
    data: Optional[T] = Field(default=None)
    error: Optional[str] = Field(default=None)
    message: Optional[str] = Field(default=None)

    @property
    def error_text(self) -> str:
        return self.error or self.message or ""


class Achievement(WireModel):
    type: str
    title: str
    description: str = ""
    rarity: str = "common"
    icon: str = ""
    unlocked_at: Optional[int] = Field(default=None, alias="unlockedAt")


class UserStats(WireModel):
    total_transactions: int = Field(default=0, alias="totalTransactions")
    total_value: float = Field(default=0.0, alias="totalValue")
    networks_used: List[str] = Field(default_factory=list, alias="networksUsed")
    streak_days: int = Field(default=0, alias="streakDays")
    rank: Optional[str] = None
    network_stats: Optional[Dict[str, int]] = Field(default=None, alias="networkStats")


class SocialProofStats(WireModel):
    total_users: int = Field(default=0, alias="totalUsers")
    user_rank: int = Field(default=0, alias="userRank")


class SocialProof(WireModel):
    network_rank: str = Field(default="", alias="networkRank")
    global_rank: Optional[str] = Field(default=None, alias="globalRank")
    network_stats: Optional[SocialProofStats] = Field(default=None, alias="networkStats")


class TransactionShareData(WireModel):
    """Enrichment payload returned for a tracked message."""

    type: Optional[str] = None
    amount: Optional[str] = None
    token_symbol: Optional[str] = Field(default=None, alias="tokenSymbol")
    network: Optional[str] = None
    to: Optional[str] = None
    hash: Optional[str] = None
    status: Optional[str] = None
    achievement: Optional[Achievement] = None
    user_stats: Optional[UserStats] = Field(default=None, alias="userStats")
    social_proof: Optional[SocialProof] = Field(default=None, alias="socialProof")
    personalized_message: Optional[str] = Field(default=None, alias="personalizedMessage")

    @property
    def has_enrichment(self) -> bool:
        return bool(self.achievement or self.user_stats or self.social_proof)


class TrackTransactionPayload(WireModel):
    """Body of the idempotent ledger write (keyed by messageId)."""

    message_id: str = Field(alias="messageId")
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    network: str
    from_address: str = Field(default="", alias="from")
    to: Optional[str] = None
    amount: str
    token_symbol: str = Field(alias="tokenSymbol")
    gas_used: Optional[str] = Field(default=None, alias="gasUsed")
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    status: str
    transaction_type: str = Field(alias="transactionType")
    error_kind: Optional[str] = Field(default=None, alias="errorKind")
    request_id: Optional[str] = Field(default=None, alias="requestId")

    @classmethod
    def from_record(cls, record: EnrichedTransactionRecord) -> "TrackTransactionPayload":
        return cls(
            message_id=record.message_id,
            transaction_hash=record.transaction_hash,
            network=record.network,
            from_address=record.from_address or "",
            to=record.to_address,
            amount=record.amount,
            token_symbol=record.token_symbol,
            status=record.status.value,
            transaction_type=record.transaction_type,
            error_kind=record.error_kind,
            request_id=record.request_id,
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RequestUser(WireModel):
    id: Optional[str] = Field(default=None, alias="_id")
    user_id: Optional[str] = Field(default=None, alias="userId")
    username: Optional[str] = None

    @property
    def identifier(self) -> str:
        return self.user_id or self.id or self.username or ""


class RequestRecipientPayload(WireModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    user: Optional[RequestUser] = None
    status: str = "pending"

    def to_domain(self) -> RequestRecipient:
        user_id = self.user_id or (self.user.identifier if self.user else "")
        return RequestRecipient(
            user_id=user_id,
            status=_parse_status(self.status),
            username=self.user.username if self.user else None,
        )


class PaymentRequestPayload(WireModel):
    """Request document as the backend serves it."""

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    sender_id: Optional[str] = Field(default=None, alias="senderId")
    sender: Optional[RequestUser] = None
    recipients: List[RequestRecipientPayload] = Field(default_factory=list)
    amount: str = "0"
    token: Optional[str] = None
    token_symbol: Optional[str] = Field(default=None, alias="tokenSymbol")
    network: str = "ethereum"
    message: Optional[str] = None
    status: str = "pending"
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    def to_domain(self) -> PaymentRequest:
        sender_id = self.sender_id or (self.sender.identifier if self.sender else "")
        return PaymentRequest(
            id=self.id,
            sender_id=sender_id,
            amount=str(self.amount),
            token_symbol=self.token_symbol or self.token or "",
            network=self.network,
            recipients=[recipient.to_domain() for recipient in self.recipients],
            status=_parse_status(self.status),
            message=self.message,
            sender_username=self.sender.username if self.sender else None,
            created_at=self.created_at or datetime.now(timezone.utc),
        )


class RequestPreview(WireModel):
    """Unsigned transaction preview built by the backend for a request."""

    id: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    unsigned_transaction: Any = Field(default=None, alias="unsignedTransaction")
    estimated_fee: Optional[str] = Field(default=None, alias="estimatedFee")
    gas: Optional[Any] = None
    gas_price: Optional[Any] = Field(default=None, alias="gasPrice")
    explanation: Optional[str] = None


class PreparedTransaction(WireModel):
    """Unsigned transaction the backend built for an intent."""

    transaction: Any = Field(
        default=None,
        validation_alias=AliasChoices("transaction", "unsignedTransaction", "serializedTransaction"),
    )
    estimated_fee: Optional[str] = Field(default=None, alias="estimatedFee")


class GasEstimatePayload(WireModel):
    gas_limit: Optional[Any] = Field(default=None, alias="gasLimit")
    gas_price: Optional[Any] = Field(default=None, alias="gasPrice")


class UserLookup(WireModel):
    """Subset of a user profile used for recipient resolution."""

    id: Optional[str] = Field(default=None, alias="_id")
    username: Optional[str] = None
    wallet_address: Optional[str] = Field(default=None, alias="walletAddress")
    wallets: List[Dict[str, Any]] = Field(default_factory=list)

    def address_for(self, network: str) -> Optional[str]:
        for wallet in self.wallets:
            if str(wallet.get("network", "")).lower() == network.lower() and wallet.get("address"):
                return wallet["address"]
        return self.wallet_address


def _parse_status(raw: Optional[str]) -> RequestStatus:
    try:
        return RequestStatus((raw or "pending").lower())
    except ValueError:
        return RequestStatus.PENDING


__all__ = [
    "ApiResponse",
    "Achievement",
    "UserStats",
    "SocialProof",
    "TransactionShareData",
    "TrackTransactionPayload",
    "PaymentRequestPayload",
    "RequestRecipientPayload",
    "RequestPreview",
    "PreparedTransaction",
    "GasEstimatePayload",
    "UserLookup",
]
