"""
Payment request lifecycle.

Usage:
    from paycore.core.requests import RequestLifecycleManager

    manager = RequestLifecycleManager(backend)
    outcome = await manager.accept(request_id, settle)
"""

from .lifecycle import (
    TransitionTrigger,
    RequestTransition,
    RequestOutcome,
    RequestStateMachine,
    RequestLifecycleManager,
)

__all__ = [
    "TransitionTrigger",
    "RequestTransition",
    "RequestOutcome",
    "RequestStateMachine",
    "RequestLifecycleManager",
]
