"""
Settlement tracking.

SettlementTracker records outcomes against message ids; SettlementEventChannel
carries outcomes produced outside the dispatcher (fiat ramp) to it.
"""

from .events import SettlementEvent, SettlementEventChannel
from .tracker import SettlementTracker

__all__ = [
    "SettlementEvent",
    "SettlementEventChannel",
    "SettlementTracker",
]
