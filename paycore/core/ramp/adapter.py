"""
Fiat Ramp Adapter

Adapts the buy/sell widget's order events (ORDER_CREATED -> ORDER_PROCESSING
-> ORDER_COMPLETED | ORDER_FAILED) into SettlementEvents for the tracker.
Orders are correlated by the partnerOrderId handed to the widget at open time.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from ...config import settings
from ..errors import ErrorKind, MalformedIntentError
from ..models import IntentKind, SettlementResult, TransactionIntent
from ..tracking.events import SettlementEvent, SettlementEventChannel

logger = logging.getLogger(__name__)


class RampEventType(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_PROCESSING = "ORDER_PROCESSING"
    ORDER_COMPLETED = "ORDER_COMPLETED"
    ORDER_FAILED = "ORDER_FAILED"


TERMINAL_EVENTS = frozenset({RampEventType.ORDER_COMPLETED, RampEventType.ORDER_FAILED})


class RampOrderStatus(str, Enum):
    OPEN = "open"
    CREATED = "created"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_STATUS_FOR_EVENT = {
    RampEventType.ORDER_CREATED: RampOrderStatus.CREATED,
    RampEventType.ORDER_PROCESSING: RampOrderStatus.PROCESSING,
    RampEventType.ORDER_COMPLETED: RampOrderStatus.COMPLETED,
    RampEventType.ORDER_FAILED: RampOrderStatus.FAILED,
}


@dataclass(frozen=True)
class RampParams:
    """Widget parameters requested by the chat layer."""
    wallet_address: str
    crypto_currency: Optional[str] = None
    fiat_amount: Optional[str] = None
    fiat_currency: Optional[str] = None
    is_buy: bool = True
    network: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RampParams":
        """Accept the backend's camelCase transakParams shape."""
        is_buy = data.get("isBuy", data.get("is_buy"))
        return cls(
            wallet_address=data.get("walletAddress") or data.get("wallet_address") or "",
            crypto_currency=data.get("defaultCryptoCurrency") or data.get("crypto_currency"),
            fiat_amount=data.get("defaultFiatAmount") or data.get("fiat_amount"),
            fiat_currency=data.get("defaultFiatCurrency") or data.get("fiat_currency"),
            is_buy=True if is_buy is None else bool(is_buy),
            network=data.get("network"),
        )


@dataclass
class RampSession:
    """One widget opening and the order it produces."""
    partner_order_id: str
    wallet_address: str
    crypto_currency: str
    fiat_amount: str
    fiat_currency: str
    is_buy: bool
    network: Optional[str] = None
    message_id: Optional[str] = None
    status: RampOrderStatus = RampOrderStatus.OPEN
    order_id: Optional[str] = None
    settled: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def product(self) -> str:
        return "BUY" if self.is_buy else "SELL"

    def widget_config(self) -> Dict[str, Any]:
        """Parameters for the ramp widget."""
        config: Dict[str, Any] = {
            "apiKey": settings.transak_api_key,
            "environment": settings.transak_environment,
            "defaultCryptoCurrency": self.crypto_currency,
            "defaultFiatAmount": float(Decimal(self.fiat_amount)),
            "defaultFiatCurrency": self.fiat_currency,
            "walletAddress": self.wallet_address,
            "productsAvailed": self.product,
            "partnerOrderId": self.partner_order_id,
            "hideMenu": True,
        }
        if self.network:
            config["network"] = self.network
        return config


class FiatRampAdapter:
    """
    Turns ramp order events into settlement events.

    Terminal events are processed once per order; repeats (widget and
    webhook both reporting completion) are ignored. A settled session leaves
    the open map and only its partnerOrderId is remembered, for the last
    settings.ramp_settled_retention orders. Sessions left open longer than
    settings.ramp_session_ttl_seconds are dropped on the next open().
    """

    def __init__(self, channel: SettlementEventChannel):
        self._channel = channel
        self._sessions: Dict[str, RampSession] = {}
        self._settled: OrderedDict[str, None] = OrderedDict()

    def open(self, params: RampParams, message_id: Optional[str] = None) -> RampSession:
        """
        Start a ramp session.

        Raises:
            MalformedIntentError: no wallet address or an invalid fiat amount
        """
        if not params.wallet_address:
            raise MalformedIntentError("Wallet address is required to open the fiat ramp")

        fiat_amount = str(params.fiat_amount or settings.ramp_default_fiat_amount)
        try:
            amount = Decimal(fiat_amount)
        except InvalidOperation as e:
            raise MalformedIntentError(f"Invalid fiat amount {fiat_amount!r}") from e
        if not amount.is_finite() or amount <= 0:
            raise MalformedIntentError(f"Fiat amount must be a positive number, got {fiat_amount}")

        self._drop_expired()

        session = RampSession(
            partner_order_id=self._new_partner_order_id(),
            wallet_address=params.wallet_address,
            crypto_currency=params.crypto_currency or settings.ramp_default_crypto_currency,
            fiat_amount=fiat_amount,
            fiat_currency=params.fiat_currency or settings.ramp_default_fiat_currency,
            is_buy=params.is_buy,
            network=params.network,
            message_id=message_id,
        )
        self._sessions[session.partner_order_id] = session

        if not message_id:
            logger.warning(f"Ramp session {session.partner_order_id} opened without a messageId")
        logger.info(f"Opened {session.product} ramp session {session.partner_order_id}")
        return session

    def _new_partner_order_id(self) -> str:
        partner_order_id = f"{settings.ramp_partner_prefix}-{int(time.time() * 1000)}"
        while partner_order_id in self._sessions or partner_order_id in self._settled:
            partner_order_id = f"{partner_order_id}-{secrets.token_hex(2)}"
        return partner_order_id

    def get_session(self, partner_order_id: str) -> Optional[RampSession]:
        return self._sessions.get(partner_order_id)

    def handle_event(
        self,
        partner_order_id: str,
        event_type: str,
        order: Optional[Dict[str, Any]] = None,
    ) -> Optional[SettlementEvent]:
        """
        Apply one widget event to its session.

        Returns the published SettlementEvent for the first terminal event of
        an order with a messageId, otherwise None. Never raises on unknown
        orders or event types.
        """
        order = order or {}
        if partner_order_id in self._settled:
            logger.debug(f"Ramp event {event_type} for settled order {partner_order_id}, ignoring")
            return None

        session = self._sessions.get(partner_order_id)
        if session is None:
            logger.warning(f"Ramp event {event_type} for unknown order {partner_order_id}")
            return None

        try:
            event = RampEventType(str(event_type).upper())
        except ValueError:
            logger.debug(f"Ignoring ramp event {event_type} for {partner_order_id}")
            return None

        if order.get("id"):
            session.order_id = str(order["id"])

        if event not in TERMINAL_EVENTS:
            session.status = _STATUS_FOR_EVENT[event]
            logger.info(f"Ramp order {partner_order_id} {session.status.value}")
            return None

        session.settled = True
        session.status = _STATUS_FOR_EVENT[event]
        self._retire(partner_order_id)

        if not session.message_id:
            logger.warning(
                f"Ramp order {partner_order_id} {session.status.value} without a messageId, "
                "skipping tracking"
            )
            return None

        settlement = SettlementEvent(
            message_id=session.message_id,
            result=self._result_for(event, session, order),
            intent=self._intent_for(session, order),
            from_address=session.wallet_address,
            source="ramp",
        )
        self._channel.publish(settlement)
        logger.info(f"Ramp order {partner_order_id} {session.status.value}, queued for tracking")
        return settlement

    def handle_webhook(self, payload: Dict[str, Any]) -> Optional[SettlementEvent]:
        """
        Feed a provider webhook body to the adapter.

        Accepts {"eventID", "webhookData"} and {"event", "data"} envelopes;
        the order must carry partnerOrderId.
        """
        event_type = payload.get("eventID") or payload.get("event") or ""
        order = payload.get("webhookData") or payload.get("data") or {}
        partner_order_id = order.get("partnerOrderId") or payload.get("partnerOrderId")
        if not partner_order_id:
            logger.warning(f"Ramp webhook {event_type} without partnerOrderId")
            return None
        return self.handle_event(partner_order_id, event_type, order)

    @staticmethod
    def _order_hash(session: RampSession, order: Dict[str, Any]) -> str:
        return order.get("transactionHash") or order.get("id") or session.partner_order_id

    def _result_for(
        self, event: RampEventType, session: RampSession, order: Dict[str, Any]
    ) -> SettlementResult:
        tx_hash = self._order_hash(session, order)
        if event == RampEventType.ORDER_COMPLETED:
            return SettlementResult.succeeded(tx_hash)
        reason = order.get("statusReason") or order.get("status") or "Ramp order failed"
        return SettlementResult.failed(ErrorKind.UNKNOWN, str(reason), tx_hash)

    def _intent_for(self, session: RampSession, order: Dict[str, Any]) -> TransactionIntent:
        amount = order.get("cryptoAmount") or order.get("amount") or "0"
        return TransactionIntent(
            kind=IntentKind.BUY if session.is_buy else IntentKind.SELL,
            network=order.get("network") or session.network or "ethereum",
            token_symbol=order.get("cryptoCurrency") or session.crypto_currency,
            amount_decimal=str(amount),
            from_address=session.wallet_address,
            to_address=order.get("walletAddress") or session.wallet_address,
        )

    def _retire(self, partner_order_id: str) -> None:
        self._sessions.pop(partner_order_id, None)
        self._settled[partner_order_id] = None
        while len(self._settled) > settings.ramp_settled_retention:
            self._settled.popitem(last=False)

    def _drop_expired(self) -> None:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=settings.ramp_session_ttl_seconds)
        expired = [pid for pid, s in self._sessions.items() if s.created_at < cutoff]
        for pid in expired:
            del self._sessions[pid]
        if expired:
            logger.info(f"Dropped {len(expired)} ramp sessions open since before {cutoff.isoformat()}")

    def stats(self) -> Dict[str, int]:
        return {
            "open": len(self._sessions),
            "settled": len(self._settled),
        }


__all__ = [
    "RampEventType",
    "RampOrderStatus",
    "RampParams",
    "RampSession",
    "FiatRampAdapter",
]
