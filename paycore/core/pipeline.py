"""
Payment Pipeline

Facade the chat/UI layer calls into:

    intent -> classify network -> resolve provider -> build -> dispatch -> track

plus payment-request acceptance/decline (which settle through the same path)
and fiat ramp sessions (which report to the tracker through the event
channel).

Resolver and builder failures are returned as failed SettlementResults and
leave no record behind. Dispatch failures are recorded with status failed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple, Union

from ..config import settings
from ..db.backend_client import BackendClient, BackendError, get_backend_client
from ..logging_config import settlement_context
from .errors import ErrorKind, MalformedIntentError, PaymentError
from .execution.dispatcher import SigningDispatcher
from .execution.solana_rpc import SolanaConnection, get_solana_connection
from .execution.tx_builder import TransactionBuilder
from .models import (
    AuthSnapshot,
    EnrichedTransactionRecord,
    RAMP_KINDS,
    RequestStatus,
    SettlementResult,
    SettlementStatus,
    TransactionIntent,
)
from .networks import ChainFamily, NetworkInfo, classify_network, is_valid_address
from .ramp.adapter import FiatRampAdapter, RampParams, RampSession
from .requests.lifecycle import RequestLifecycleManager, RequestOutcome
from .signing.resolver import resolve
from .tracking.events import SettlementEventChannel
from .tracking.tracker import SettlementTracker

logger = logging.getLogger(__name__)


class ContactBook:
    """
    Local, non-authoritative name -> address cache.

    Only consulted when the backend lookup fails and
    settings.contact_lookup_local_fallback is on.
    """

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, ChainFamily], str] = {}

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().lstrip("@").lower()

    def add(self, name: str, address: str, family: ChainFamily = ChainFamily.EVM) -> None:
        self._entries[(self._key(name), family)] = address

    def lookup(self, name: str, family: ChainFamily) -> Optional[str]:
        return self._entries.get((self._key(name), family))

    def __len__(self) -> int:
        return len(self._entries)


class PaymentPipeline:
    """
    Entry point for settlement, request and ramp flows.

    Usage:
        pipeline = get_pipeline()
        await pipeline.start()

        result = await pipeline.submit_intent(intent, "msg-1", auth)
        record = pipeline.get_enriched_record("msg-1")
    """

    def __init__(
        self,
        backend: Optional[BackendClient] = None,
        solana_connection: Optional[SolanaConnection] = None,
        tracker: Optional[SettlementTracker] = None,
        builder: Optional[TransactionBuilder] = None,
        dispatcher: Optional[SigningDispatcher] = None,
        requests: Optional[RequestLifecycleManager] = None,
        channel: Optional[SettlementEventChannel] = None,
        contacts: Optional[ContactBook] = None,
    ):
        self.backend = backend or get_backend_client()
        self.solana = solana_connection or get_solana_connection()
        self.channel = channel or SettlementEventChannel()
        self.tracker = tracker or SettlementTracker(self.backend)
        self.builder = builder or TransactionBuilder(self.backend, self.solana)
        self.dispatcher = dispatcher or SigningDispatcher(
            self.solana, refresh_blockhash=self.builder.refresh_blockhash
        )
        self.requests = requests or RequestLifecycleManager(self.backend)
        self.ramp = FiatRampAdapter(self.channel)
        self.contacts = contacts or ContactBook()
        self._consumer: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start consuming settlement events (fiat ramp) into the tracker."""
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self.tracker.run(self.channel))
            logger.info("Settlement event consumer started")

    async def close(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        await self.tracker.close()
        await self.backend.close()
        await self.solana.close()

    # =========================================================================
    # Settlement
    # =========================================================================

    async def submit_intent(
        self,
        intent: TransactionIntent,
        message_id: str,
        auth: AuthSnapshot,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SettlementResult:
        """
        Settle an intent and record the outcome under message_id.

        cancel_event set before dispatch aborts with no record; set while
        the wallet prompt is open it resolves as UserRejected.
        A message that already has a recorded outcome is not dispatched again
        and its recorded result is returned; failures are retried through
        resubmit_intent.
        """
        with settlement_context(message_id=message_id, request_id=intent.request_id):
            existing = self._existing_result(message_id)
            if existing is not None:
                logger.warning(
                    f"Message {message_id} already has a settlement, not dispatching again"
                    " (use resubmit_intent to retry a failure)"
                )
                return existing

            try:
                if intent.kind in RAMP_KINDS:
                    raise MalformedIntentError("Buy/sell intents go through open_fiat_ramp")
                network = classify_network(intent.network)
                provider = resolve(network.family, auth)
                intent = await self._with_recipient(intent, network)
                native_tx = await self.builder.build(intent, provider)
            except PaymentError as e:
                logger.warning(f"Intent rejected ({e.kind.value}): {e.message}")
                return SettlementResult.failed(e.kind, e.message)

            if cancel_event is not None and cancel_event.is_set():
                logger.info("Intent cancelled before dispatch")
                return SettlementResult.failed(ErrorKind.USER_REJECTED, "Cancelled before signing")

            logger.info(f"Dispatching {intent.kind.value} on {network.name} via {provider.kind.value}")
            result = await self.dispatcher.sign_and_broadcast(native_tx, provider, cancel_event)
            await self.tracker.record(message_id, result, intent, from_address=provider.address)
            return result

    async def resubmit_intent(
        self,
        intent: TransactionIntent,
        message_id: str,
        auth: AuthSnapshot,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SettlementResult:
        """
        Retry an intent whose earlier attempt failed or is unknown.

        The tracker and then the backend ledger are checked for a
        transaction already broadcast under message_id; if one exists it is
        returned instead of broadcasting again.
        """
        with settlement_context(message_id=message_id, request_id=intent.request_id):
            existing = self._existing_result(message_id)
            if existing is not None and existing.success:
                return existing

            try:
                share = await self.backend.get_transaction_share_data(message_id)
            except BackendError as e:
                if e.status_code != 404:
                    logger.warning(f"Cannot verify earlier broadcast: {e}")
                    return SettlementResult.failed(
                        ErrorKind.NETWORK_ERROR,
                        f"Could not check for an earlier broadcast: {e.message}",
                    )
                share = None

            if share is not None and share.hash and share.status != SettlementStatus.FAILED.value:
                logger.info(f"Found earlier broadcast {share.hash}, not resubmitting")
                return SettlementResult.succeeded(share.hash)

            self.tracker.discard_failed(message_id)
            return await self.submit_intent(intent, message_id, auth, cancel_event)

    def _existing_result(self, message_id: str) -> Optional[SettlementResult]:
        record = self.tracker.get(message_id)
        if record is None:
            return None
        if record.status == SettlementStatus.SUCCESS:
            return SettlementResult.succeeded(record.transaction_hash)
        return SettlementResult.failed(
            record.error_kind or ErrorKind.UNKNOWN,
            record.error_message or "Earlier attempt failed",
            record.transaction_hash,
        )

    async def _with_recipient(self, intent: TransactionIntent, network: NetworkInfo) -> TransactionIntent:
        if intent.raw_unsigned_payload is not None or not intent.to_address:
            return intent
        if is_valid_address(network, intent.to_address):
            return intent
        address = await self.resolve_recipient(intent.to_address, network)
        return replace(intent, to_address=address)

    async def resolve_recipient(self, identifier: str, network: Union[NetworkInfo, str]) -> str:
        """
        Resolve a username, ENS name or contact to an address on network.

        Addresses pass through. Names go to the backend; if the backend
        lookup fails and the local fallback is enabled, the contact book is
        consulted with a warning.

        Raises:
            MalformedIntentError: the identifier cannot be resolved
        """
        if isinstance(network, str):
            network = classify_network(network)
        if is_valid_address(network, identifier):
            return identifier

        name = identifier.strip().lstrip("@")
        try:
            user = await self.backend.get_user_by_username(name)
        except BackendError as e:
            if settings.contact_lookup_local_fallback:
                address = self.contacts.lookup(name, network.family)
                if address:
                    logger.warning(f"Backend lookup for {identifier} failed ({e}), using local contact")
                    return address
            raise MalformedIntentError(f"Could not resolve recipient {identifier}: {e}") from e

        address = user.address_for(network.name) if user else None
        if not address or not is_valid_address(network, address):
            raise MalformedIntentError(f"{identifier} has no wallet on {network.name}")
        return address

    # =========================================================================
    # Records
    # =========================================================================

    def get_enriched_record(self, message_id: str) -> Optional[EnrichedTransactionRecord]:
        return self.tracker.get(message_id)

    async def refresh_enriched_record(self, message_id: str) -> Optional[EnrichedTransactionRecord]:
        """Run the single enrichment fetch if it has not happened yet."""
        return await self.tracker.refresh_enrichment(message_id)

    async def retry_tracking(self, message_id: str) -> Optional[EnrichedTransactionRecord]:
        return await self.tracker.retry_tracking(message_id)

    # =========================================================================
    # Requests
    # =========================================================================

    async def accept_request(
        self,
        request_id: str,
        message_id: str,
        auth: AuthSnapshot,
        recipient_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RequestOutcome:
        """
        Accept a payment request by paying it.

        Raises:
            AlreadyProcessedError: the request is no longer pending
            SenderWalletMissingError: decline is the only way forward
        """
        async def settle(intent: TransactionIntent) -> SettlementResult:
            return await self.submit_intent(intent, message_id, auth, cancel_event)

        return await self.requests.accept(request_id, settle, recipient_id=recipient_id)

    async def decline_request(self, request_id: str, recipient_id: Optional[str] = None) -> RequestStatus:
        return await self.requests.decline(request_id, recipient_id=recipient_id)

    # =========================================================================
    # Fiat ramp
    # =========================================================================

    def open_fiat_ramp(
        self,
        params: Union[RampParams, Dict[str, Any]],
        message_id: Optional[str] = None,
    ) -> RampSession:
        if isinstance(params, dict):
            params = RampParams.from_dict(params)
        return self.ramp.open(params, message_id)

    def stats(self) -> Dict[str, Any]:
        return {
            "tracker": self.tracker.stats(),
            "ramp": self.ramp.stats(),
            "pending_events": self.channel.pending,
            "consumer_running": self._consumer is not None and not self._consumer.done(),
        }


_pipeline: Optional[PaymentPipeline] = None


def get_pipeline() -> PaymentPipeline:
    """Get the shared pipeline instance."""
    global _pipeline
    if _pipeline is None:
        _pipeline = PaymentPipeline()
    return _pipeline


__all__ = [
    "ContactBook",
    "PaymentPipeline",
    "get_pipeline",
]
