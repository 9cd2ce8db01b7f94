from .adapter import (
    RampEventType,
    RampOrderStatus,
    RampParams,
    RampSession,
    FiatRampAdapter,
)

__all__ = [
    "RampEventType",
    "RampOrderStatus",
    "RampParams",
    "RampSession",
    "FiatRampAdapter",
]
