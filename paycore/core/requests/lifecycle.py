"""
Request Lifecycle Manager

State machine for peer-to-peer payment requests. pending is the only
non-terminal state; accepted, declined, expired and cancelled are final.

The backend is the source of truth. Every action re-reads the request first,
and conflicts resync local state to whatever the backend reports before the
conflict is surfaced.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ...db.backend_client import BackendClient, BackendError, BackendUnavailableError
from ...logging_config import settlement_context
from ..errors import (
    AlreadyProcessedError,
    InvalidRequestTransitionError,
    MalformedIntentError,
    NetworkError,
    SenderWalletMissingError,
)
from ..models import (
    PaymentRequest,
    RequestStatus,
    SettlementResult,
    TransactionIntent,
)

logger = logging.getLogger(__name__)

Settle = Callable[[TransactionIntent], Awaitable[SettlementResult]]

_WALLET_MISSING_MARKERS = ("doesn't have a wallet", "does not have a wallet")
_ALREADY_PROCESSED_MARKERS = ("already processed",)


class TransitionTrigger(str, Enum):
    """What caused a request transition."""
    USER_ACTION = "user_action"
    SETTLEMENT = "settlement"
    BACKEND_SYNC = "backend_sync"


@dataclass
class RequestTransition:
    """Record of a request state change."""
    from_status: RequestStatus
    to_status: RequestStatus
    trigger: TransitionTrigger
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromStatus": self.from_status.value,
            "toStatus": self.to_status.value,
            "trigger": self.trigger.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RequestOutcome:
    """Result of an accept attempt."""
    request_id: str
    status: RequestStatus
    settlement: Optional[SettlementResult] = None
    warning: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status == RequestStatus.ACCEPTED


class RequestStateMachine:
    """
    Validated transitions for one payment request.

    Features:
    - Validates transitions against the allowed transition map
    - Keeps per-recipient status alongside the overall status
    - Tracks transition history
    """

    TRANSITIONS: Dict[RequestStatus, Set[RequestStatus]] = {
        RequestStatus.PENDING: {
            RequestStatus.ACCEPTED,
            RequestStatus.DECLINED,
            RequestStatus.EXPIRED,
            RequestStatus.CANCELLED,
        },
        RequestStatus.ACCEPTED: set(),
        RequestStatus.DECLINED: set(),
        RequestStatus.EXPIRED: set(),
        RequestStatus.CANCELLED: set(),
    }

    def __init__(self, request: PaymentRequest):
        self.request = request
        self.history: List[RequestTransition] = []

    @property
    def status(self) -> RequestStatus:
        return self.request.status

    @property
    def is_terminal(self) -> bool:
        return self.request.is_terminal

    def can_transition_to(self, to_status: RequestStatus) -> bool:
        return to_status in self.TRANSITIONS.get(self.status, set())

    def transition_to(
        self,
        to_status: RequestStatus,
        trigger: TransitionTrigger = TransitionTrigger.USER_ACTION,
        reason: Optional[str] = None,
        recipient_id: Optional[str] = None,
    ) -> RequestTransition:
        """
        Move the request to to_status.

        Raises:
            InvalidRequestTransitionError: the request is already terminal
        """
        from_status = self.status
        if not self.can_transition_to(to_status):
            raise InvalidRequestTransitionError(from_status.value, to_status.value)

        transition = RequestTransition(
            from_status=from_status,
            to_status=to_status,
            trigger=trigger,
            reason=reason,
        )
        self.request.status = to_status
        self.history.append(transition)

        recipient = self.request.recipient(recipient_id)
        if recipient is not None:
            recipient.status = to_status

        logger.info(
            f"Request {self.request.id}: {from_status.value} -> {to_status.value}"
            f"{f' ({reason})' if reason else ''}"
        )
        return transition

    def sync(self, latest: PaymentRequest) -> Optional[RequestTransition]:
        """
        Converge on the backend's view of the request.

        pending -> terminal goes through the transition map. A terminal
        cache that disagrees with the backend is replaced outright (the
        backend is authoritative); no local transition is recorded for it.
        """
        local = self.status
        self.request.recipients = latest.recipients
        self.request.message = latest.message

        if latest.status == local:
            return None

        if local == RequestStatus.PENDING:
            return self.transition_to(
                latest.status,
                trigger=TransitionTrigger.BACKEND_SYNC,
                reason="backend status",
            )

        logger.warning(
            f"Request {self.request.id} cache said {local.value}, backend says "
            f"{latest.status.value}; resyncing"
        )
        self.request.status = latest.status
        return None


class RequestLifecycleManager:
    """
    Drives payment requests through create/accept/decline/cancel/expiry.

    Acceptance is gated on a successful settlement: the request only becomes
    accepted after the caller-supplied settle() reports success and the
    backend has recorded the acceptance.
    """

    def __init__(self, backend: BackendClient):
        self._backend = backend
        self._machines: Dict[str, RequestStateMachine] = {}

    def get(self, request_id: str) -> Optional[PaymentRequest]:
        machine = self._machines.get(request_id)
        return machine.request if machine else None

    def history(self, request_id: str) -> List[RequestTransition]:
        machine = self._machines.get(request_id)
        return list(machine.history) if machine else []

    def invalidate(self) -> None:
        """Drop every cached request (e.g. after a restart)."""
        self._machines.clear()

    def _track(self, request: PaymentRequest) -> RequestStateMachine:
        machine = self._machines.get(request.id)
        if machine is None:
            machine = RequestStateMachine(request)
            self._machines[request.id] = machine
        else:
            machine.sync(request)
        return machine

    async def refresh(self, request_id: str) -> PaymentRequest:
        """Re-read a request from the backend and sync the local copy."""
        try:
            payload = await self._backend.get_request(request_id)
        except BackendUnavailableError as e:
            raise NetworkError(f"Could not load request {request_id}: {e}") from e
        except BackendError as e:
            raise MalformedIntentError(f"Could not load request {request_id}: {e}") from e
        return self._track(payload.to_domain()).request

    async def poll(self, request_id: str) -> RequestStatus:
        """
        Current status as the backend reports it.

        Expiry is only ever learned here; it is never computed from
        timestamps locally.
        """
        return (await self.refresh(request_id)).status

    # =========================================================================
    # Sender actions
    # =========================================================================

    async def create(
        self,
        recipients: Sequence[str],
        amount: str,
        token_symbol: str,
        network: str,
        message: Optional[str] = None,
    ) -> PaymentRequest:
        """Create a pending request fanned out to recipients (usernames or ids)."""
        if not recipients:
            raise MalformedIntentError("A request needs at least one recipient")

        data: Dict[str, Any] = {
            "recipients": list(recipients),
            "amount": str(amount),
            "token": token_symbol,
            "network": network,
        }
        if message:
            data["message"] = message

        try:
            payload = await self._backend.create_request(data)
        except BackendUnavailableError as e:
            raise NetworkError(f"Could not create request: {e}") from e
        except BackendError as e:
            raise MalformedIntentError(f"Could not create request: {e}") from e

        request = self._track(payload.to_domain()).request
        logger.info(f"Created request {request.id} for {len(request.recipients)} recipient(s)")
        return request

    async def cancel(self, request_id: str) -> RequestStatus:
        """Cancel a pending request (sender only)."""
        with settlement_context(request_id=request_id):
            await self.refresh(request_id)
            machine = self._machines[request_id]
            if machine.is_terminal:
                raise AlreadyProcessedError(request_id, machine.status.value)

            try:
                await self._backend.cancel_request(request_id)
            except BackendError as e:
                await self._raise_if_processed(request_id, e)
                raise NetworkError(f"Could not cancel request {request_id}: {e}") from e

            machine.transition_to(RequestStatus.CANCELLED, reason="cancelled by sender")
            return machine.status

    async def list_sent(self, page: int = 1, limit: int = 20) -> Tuple[List[PaymentRequest], int]:
        items, total = await self._backend.get_my_requests(page, limit)
        return [self._track(item.to_domain()).request for item in items], total

    async def list_received(self, page: int = 1, limit: int = 20) -> Tuple[List[PaymentRequest], int]:
        items, total = await self._backend.get_received_requests(page, limit)
        return [self._track(item.to_domain()).request for item in items], total

    # =========================================================================
    # Recipient actions
    # =========================================================================

    async def prepare_accept(self, request_id: str) -> TransactionIntent:
        """
        Re-read the request and build the intent that settles it.

        Raises:
            AlreadyProcessedError: the request is no longer pending (local state resynced)
            SenderWalletMissingError: the sender has no wallet on the network
        """
        request = await self.refresh(request_id)
        if request.is_terminal:
            raise AlreadyProcessedError(request_id, request.status.value)

        try:
            preview = await self._backend.build_request_transaction_preview(request_id)
        except BackendError as e:
            text = e.message.lower()
            if any(marker in text for marker in _WALLET_MISSING_MARKERS):
                logger.warning(f"Sender of request {request_id} has no wallet on {request.network}")
                raise SenderWalletMissingError(request_id, request.network) from e
            await self._raise_if_processed(request_id, e)
            if isinstance(e, BackendUnavailableError):
                raise NetworkError(f"Could not build preview for {request_id}: {e}") from e
            raise MalformedIntentError(f"Could not build preview for {request_id}: {e}") from e

        preview_data: Dict[str, Any] = {
            "type": "send",
            "network": request.network,
            "tokenSymbol": request.token_symbol,
            "amount": request.amount,
            "params": preview.params,
            "unsignedTransaction": preview.unsigned_transaction,
            "gas": preview.gas,
            "gasPrice": preview.gas_price,
        }
        intent = TransactionIntent.from_preview(preview_data, request_id=request_id)
        if not intent.to_address:
            raise MalformedIntentError(f"Preview for request {request_id} has no recipient")
        return intent

    async def accept(
        self,
        request_id: str,
        settle: Settle,
        recipient_id: Optional[str] = None,
    ) -> RequestOutcome:
        """
        Accept a request by settling it.

        settle() runs the build/dispatch/track pipeline for the intent. The
        request stays pending when the settlement fails.
        """
        with settlement_context(request_id=request_id):
            intent = await self.prepare_accept(request_id)
            result = await settle(intent)

            machine = self._machines[request_id]
            if not result.success:
                logger.info(f"Settlement for request {request_id} failed, request stays pending")
                return RequestOutcome(request_id, machine.status, result)

            try:
                await self._backend.mark_request_accepted(request_id)
            except BackendError as e:
                # Settled on-chain; only the acceptance write failed
                logger.warning(f"Request {request_id} settled but acceptance was not recorded: {e}")
                if machine.can_transition_to(RequestStatus.ACCEPTED):
                    machine.transition_to(
                        RequestStatus.ACCEPTED,
                        trigger=TransitionTrigger.SETTLEMENT,
                        reason="settled, acceptance unrecorded",
                        recipient_id=recipient_id,
                    )
                return RequestOutcome(
                    request_id,
                    machine.status,
                    result,
                    warning=f"Payment sent but the request was not marked accepted: {e.message}",
                )

            if machine.can_transition_to(RequestStatus.ACCEPTED):
                machine.transition_to(
                    RequestStatus.ACCEPTED,
                    trigger=TransitionTrigger.SETTLEMENT,
                    reason=f"settled {result.transaction_hash}",
                    recipient_id=recipient_id,
                )
            return RequestOutcome(request_id, machine.status, result)

    async def decline(self, request_id: str, recipient_id: Optional[str] = None) -> RequestStatus:
        """
        Decline a pending request.

        Raises:
            AlreadyProcessedError: another recipient (or the sender) got there
                first; local state now matches the backend
        """
        with settlement_context(request_id=request_id):
            request = await self.refresh(request_id)
            if request.is_terminal:
                raise AlreadyProcessedError(request_id, request.status.value)

            try:
                await self._backend.respond_to_request(request_id, "decline")
            except BackendError as e:
                await self._raise_if_processed(request_id, e)
                if isinstance(e, BackendUnavailableError):
                    raise NetworkError(f"Could not decline request {request_id}: {e}") from e
                raise MalformedIntentError(f"Could not decline request {request_id}: {e}") from e

            machine = self._machines[request_id]
            machine.transition_to(
                RequestStatus.DECLINED,
                reason="declined by recipient",
                recipient_id=recipient_id,
            )
            return machine.status

    async def _raise_if_processed(self, request_id: str, error: BackendError) -> None:
        if not any(marker in error.message.lower() for marker in _ALREADY_PROCESSED_MARKERS):
            return
        request = await self.refresh(request_id)
        logger.warning(f"Request {request_id} already processed, now {request.status.value}")
        raise AlreadyProcessedError(request_id, request.status.value) from error


__all__ = [
    "TransitionTrigger",
    "RequestTransition",
    "RequestOutcome",
    "RequestStateMachine",
    "RequestLifecycleManager",
]
