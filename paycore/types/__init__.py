from .backend import (
    ApiResponse,
    Achievement,
    UserStats,
    SocialProof,
    TransactionShareData,
    TrackTransactionPayload,
    PaymentRequestPayload,
    RequestRecipientPayload,
    RequestPreview,
    GasEstimatePayload,
    UserLookup,
)

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
    "GasEstimatePayload",
    "UserLookup",
]
