"""
Error Classification

Typed failures for the settlement pipeline. Every wallet/RPC exception is
converted into one of these kinds at the signing boundary, so nothing past the
dispatcher ever has to look at a raw SDK error.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import httpx


class ErrorKind(str, Enum):
    """Failure kinds surfaced to the UI/chat layer."""

    NO_PROVIDER_AVAILABLE = "NoProviderAvailable"
    MALFORMED_INTENT = "MalformedIntent"
    UNKNOWN_NETWORK = "UnknownNetwork"
    USER_REJECTED = "UserRejected"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    NETWORK_ERROR = "NetworkError"
    BLOCKHASH_NOT_FOUND = "BlockhashNotFound"
    SENDER_WALLET_MISSING = "SenderWalletMissing"
    ALREADY_PROCESSED = "AlreadyProcessed"
    TRACKING_FAILED = "TrackingFailed"
    UNKNOWN = "Unknown"


RECOVERABLE_KINDS = frozenset({
    ErrorKind.NO_PROVIDER_AVAILABLE,
    ErrorKind.USER_REJECTED,
    ErrorKind.INSUFFICIENT_FUNDS,
    ErrorKind.NETWORK_ERROR,
    ErrorKind.BLOCKHASH_NOT_FOUND,
    ErrorKind.SENDER_WALLET_MISSING,
    ErrorKind.ALREADY_PROCESSED,
    ErrorKind.TRACKING_FAILED,
})

SUGGESTED_ACTIONS: Dict[ErrorKind, str] = {
    ErrorKind.NO_PROVIDER_AVAILABLE: "Connect a wallet or log in to continue",
    ErrorKind.MALFORMED_INTENT: "Ask for a fresh transaction preview",
    ErrorKind.UNKNOWN_NETWORK: "Pick a supported network",
    ErrorKind.USER_REJECTED: "Retry and approve the signature request",
    ErrorKind.INSUFFICIENT_FUNDS: "Add funds or reduce the amount",
    ErrorKind.NETWORK_ERROR: "Check whether the transaction landed before retrying",
    ErrorKind.BLOCKHASH_NOT_FOUND: "Rebuild the transaction with a fresh blockhash",
    ErrorKind.SENDER_WALLET_MISSING: "Decline the request or ask the sender to add a wallet",
    ErrorKind.ALREADY_PROCESSED: "Refresh the request",
    ErrorKind.TRACKING_FAILED: "The transaction settled; history will catch up",
}


@dataclass
class ErrorContext:
    """Additional context about an error."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    recoverable: bool = False
    suggested_action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class PaymentError(Exception):
    """Base class for typed settlement and request failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            kind=self.kind,
            recoverable=self.kind in RECOVERABLE_KINDS,
            suggested_action=SUGGESTED_ACTIONS.get(self.kind),
            details=details,
        )

    @property
    def recoverable(self) -> bool:
        return self.context.recoverable


class NoProviderAvailableError(PaymentError):
    """No authenticated wallet can sign for the requested chain family."""

    kind = ErrorKind.NO_PROVIDER_AVAILABLE

    def __init__(self, family: str):
        super().__init__(f"No wallet available to sign {family} transactions", family=family)
        self.family = family


class MalformedIntentError(PaymentError):
    """Intent or backend payload is missing fields or cannot be decoded."""

    kind = ErrorKind.MALFORMED_INTENT


class UnknownNetworkError(PaymentError):
    """Network identifier is not recognized (strict classification only)."""

    kind = ErrorKind.UNKNOWN_NETWORK

    def __init__(self, network: str):
        super().__init__(f"Unknown network: {network!r}", network=network)
        self.network = network


class UserRejectedError(PaymentError):
    kind = ErrorKind.USER_REJECTED


class InsufficientFundsError(PaymentError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class NetworkError(PaymentError):
    kind = ErrorKind.NETWORK_ERROR


class BlockhashNotFoundError(PaymentError):
    kind = ErrorKind.BLOCKHASH_NOT_FOUND


class SenderWalletMissingError(PaymentError):
    """Request sender has no receiving wallet on the requested network."""

    kind = ErrorKind.SENDER_WALLET_MISSING
    next_actions: Tuple[str, ...] = ("decline",)

    def __init__(self, request_id: str, network: Optional[str] = None):
        super().__init__(
            f"Sender of request {request_id} has no wallet on {network or 'this network'}",
            request_id=request_id,
            network=network,
        )
        self.request_id = request_id


class AlreadyProcessedError(PaymentError):
    """Request was already handled elsewhere; local state was resynced."""

    kind = ErrorKind.ALREADY_PROCESSED

    def __init__(self, request_id: str, current_status: Optional[str] = None):
        super().__init__(
            f"Request {request_id} was already processed"
            + (f" (now {current_status})" if current_status else ""),
            request_id=request_id,
            current_status=current_status,
        )
        self.request_id = request_id
        self.current_status = current_status


class TrackingFailedError(PaymentError):
    """Ledger write failed after a settlement; the settlement itself stands."""

    kind = ErrorKind.TRACKING_FAILED


class InvalidRequestTransitionError(Exception):
    """Raised when a transition out of a terminal request state is attempted."""

    def __init__(self, from_status: str, to_status: str, message: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        self.message = message or f"Cannot transition request from {from_status} to {to_status}"
        super().__init__(self.message)


# EIP-1193 provider error codes
EIP1193_USER_REJECTED = 4001
EIP1193_UNAUTHORIZED = 4100

_USER_REJECTED_PATTERNS = (
    "user rejected",
    "user denied",
    "rejected by user",
    "user cancelled",
    "user canceled",
    "request rejected",
    "cancelled by user",
)
_INSUFFICIENT_PATTERNS = (
    "insufficient funds",
    "insufficient balance",
    "insufficient lamports",
    "exceeds balance",
    "not enough",
)
_BLOCKHASH_PATTERNS = (
    "blockhash not found",
    "block hash not found",
    "blockhashnotfound",
)
_NETWORK_PATTERNS = (
    "timeout",
    "timed out",
    "network",
    "connection",
    "unreachable",
    "econnrefused",
    "socket",
    "rpc",
    "503",
    "502",
)


def _error_code(error: BaseException) -> Optional[int]:
    code = getattr(error, "code", None)
    if code is None and error.args and isinstance(error.args[0], dict):
        code = error.args[0].get("code")
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def classify_provider_error(error: BaseException) -> ErrorKind:
    """
    Map a raw wallet/RPC exception onto the error taxonomy.

    Typed PaymentErrors keep their kind; everything else is classified by
    EIP-1193 code, exception type, then message patterns.
    """
    if isinstance(error, PaymentError):
        return error.kind

    code = _error_code(error)
    if code in (EIP1193_USER_REJECTED, EIP1193_UNAUTHORIZED):
        return ErrorKind.USER_REJECTED

    if isinstance(error, (asyncio.TimeoutError, httpx.TransportError, ConnectionError)):
        return ErrorKind.NETWORK_ERROR

    message = str(error).lower()

    if any(p in message for p in _USER_REJECTED_PATTERNS):
        return ErrorKind.USER_REJECTED
    if any(p in message for p in _INSUFFICIENT_PATTERNS):
        return ErrorKind.INSUFFICIENT_FUNDS
    if any(p in message for p in _BLOCKHASH_PATTERNS):
        return ErrorKind.BLOCKHASH_NOT_FOUND
    if any(p in message for p in _NETWORK_PATTERNS):
        return ErrorKind.NETWORK_ERROR

    return ErrorKind.UNKNOWN
