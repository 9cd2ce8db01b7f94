"""
HTTP access logging for the webhook surface.

Ramp webhook lines carry the partnerOrderId and event the route recorded on
request.state, so a provider delivery can be matched to its ramp session.
Health checks log at debug level only.
"""

import time
import uuid
from typing import Any, Dict

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("http")

QUIET_PATHS = frozenset({"/healthz"})
WEBHOOK_PREFIX = "/webhooks/"

# request.state attribute -> log field
_WEBHOOK_FIELDS = {
    "partner_order_id": "partner_order_id",
    "ramp_event": "ramp_event",
}


def _webhook_fields(request: Request) -> Dict[str, Any]:
    fields = {"webhook": request.url.path[len(WEBHOOK_PREFIX):]}
    for attr, key in _WEBHOOK_FIELDS.items():
        value = getattr(request.state, attr, None)
        if value:
            fields[key] = value
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access line per request, keyed by x-request-id."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        http_request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]

        # "request_id" is reserved for payment requests in settlement logs
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(http_request_id=http_request_id)

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = http_request_id
            return response
        finally:
            fields: Dict[str, Any] = {
                "method": request.method,
                "path": path,
                "status": status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 1),
            }
            if path.startswith(WEBHOOK_PREFIX):
                fields.update(_webhook_fields(request))

            if status_code >= 500:
                logger.error("http_request", **fields)
            elif status_code >= 400:
                logger.warning("http_request", **fields)
            elif path in QUIET_PATHS:
                logger.debug("http_request", **fields)
            else:
                logger.info("http_request", **fields)
