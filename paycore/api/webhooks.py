"""
Webhook API Endpoints

Receive fiat ramp order events and hand them to the ramp adapter, which
forwards terminal outcomes to the settlement tracker.
"""

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel
from typing import Optional
import logging

from ..core.pipeline import get_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks")


class WebhookResponse(BaseModel):
    """Response after processing a webhook."""

    success: bool
    settled: bool = False
    message_id: Optional[str] = None
    message: Optional[str] = None


@router.post("/ramp", response_model=WebhookResponse)
async def ramp_webhook(request: Request):
    """
    Receive fiat ramp order events.

    Non-terminal and unknown events are acknowledged without settling.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        logger.warning(f"Invalid ramp webhook body: {e}")
        raise HTTPException(status_code=400, detail="Body must be JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    # Access log fields
    order = payload.get("webhookData") or payload.get("data") or {}
    if isinstance(order, dict):
        request.state.partner_order_id = order.get("partnerOrderId") or payload.get("partnerOrderId")
    request.state.ramp_event = payload.get("eventID") or payload.get("event")

    try:
        event = get_pipeline().ramp.handle_webhook(payload)
    except Exception as e:
        logger.error(f"Error processing ramp webhook: {e}", exc_info=True)
        # Return 200 to avoid retries for processing errors
        return WebhookResponse(success=False, message=str(e))

    if event is None:
        return WebhookResponse(success=True)
    return WebhookResponse(success=True, settled=True, message_id=event.message_id)
