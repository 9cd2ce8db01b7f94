"""
Backend client for the remote payments API.

Async httpx client for the backend that owns the transaction ledger, payment
requests, enrichment data and user lookup. Every endpoint answers with the
standard envelope {success, data, error, message}.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel

from ..config import settings
from ..types.backend import (
    ApiResponse,
    GasEstimatePayload,
    PaymentRequestPayload,
    PreparedTransaction,
    RequestPreview,
    TrackTransactionPayload,
    TransactionShareData,
    UserLookup,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class BackendError(Exception):
    """Backend answered with an error (HTTP error status or success=false)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendUnavailableError(BackendError):
    """Backend could not be reached after retries."""
    pass


class BackendClient:
    """
    Async client for the payments backend.

    Example usage:
        client = BackendClient(base_url="https://api.example.com", token="...")

        await client.track_transaction(TrackTransactionPayload(...))
        share = await client.get_transaction_share_data("msg-1")
        request = await client.get_request("req-1")

    Transient failures (transport errors, 5xx, 429) are retried with
    exponential backoff; other 4xx responses fail immediately.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.backend_api_url).rstrip("/")
        self.token = token if token is not None else settings.backend_api_token
        self.timeout = timeout if timeout is not None else settings.backend_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.backend_max_retries
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else settings.backend_retry_base_delay_seconds
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        """Get headers for backend requests."""
        headers = {
            "Content-Type": "application/json",
            "Platform": settings.platform,
            "App-Version": settings.app_version,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _is_retryable(status_code: int) -> bool:
        return status_code >= 500 or status_code == 429

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return body.get("error") or body.get("message") or f"HTTP {response.status_code}"
        return f"HTTP {response.status_code}"

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        client = await self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.request(method, path, json=json, params=params)
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    raise BackendUnavailableError(
                        f"No response from backend: {e}"
                    ) from e
                delay = self.retry_base_delay * (2 ** attempt)
                logger.info(f"Retrying {method} {path} ({attempt + 1}/{self.max_retries}) in {delay}s")
                await asyncio.sleep(delay)
                continue

            if response.status_code < 400:
                return response

            if not self._is_retryable(response.status_code) or attempt >= self.max_retries:
                raise BackendError(self._error_message(response), response.status_code)

            delay = self.retry_base_delay * (2 ** attempt)
            logger.info(
                f"Retrying {method} {path} after HTTP {response.status_code} "
                f"({attempt + 1}/{self.max_retries}) in {delay}s"
            )
            await asyncio.sleep(delay)

        raise BackendUnavailableError("Max retries exceeded")

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse[Any]:
        """
        Execute a backend call and unwrap the envelope.

        Raises:
            BackendError: HTTP error or success=false
            BackendUnavailableError: transport failure after retries
        """
        response = await self._send(method, path, json=json, params=params)
        try:
            envelope = ApiResponse[Any].model_validate(response.json())
        except ValueError as e:
            raise BackendError(f"Invalid backend response: {e}", response.status_code) from e

        if not envelope.success:
            raise BackendError(envelope.error_text or "Backend request failed", response.status_code)
        return envelope

    # =========================================================================
    # Transactions
    # =========================================================================

    async def prepare_transaction(self, intent_payload: Dict[str, Any]) -> PreparedTransaction:
        """Ask the backend for an unsigned transaction for an intent."""
        envelope = await self.request("POST", "api/transactions/prepare", json=intent_payload)
        data = envelope.data
        if not isinstance(data, dict):
            data = {"transaction": data}
        return _parse(PreparedTransaction, data)

    async def get_gas_estimate(self, network: str, call: Dict[str, Any]) -> GasEstimatePayload:
        """Gas limit/price estimate for an EVM call."""
        envelope = await self.request(
            "POST",
            "api/transactions/gas-estimate",
            json={"network": network, "transaction": call},
        )
        return _parse(GasEstimatePayload, envelope.data or {})

    async def track_transaction(self, payload: TrackTransactionPayload) -> None:
        """Record a settled transaction; idempotent by messageId on the backend."""
        await self.request("POST", "api/transactions/track", json=payload.to_wire())

    async def get_transaction_share_data(self, message_id: str) -> Optional[TransactionShareData]:
        """Enrichment (achievement, stats, social proof) for a tracked message."""
        envelope = await self.request("GET", f"api/transactions/share/{message_id}")
        if not envelope.data:
            return None
        return _parse(TransactionShareData, envelope.data)

    # =========================================================================
    # Payment requests
    # =========================================================================

    async def get_request(self, request_id: str) -> PaymentRequestPayload:
        envelope = await self.request("GET", f"api/requests/{request_id}")
        return _parse(PaymentRequestPayload, _unwrap(envelope.data, "request"))

    async def create_request(self, data: Dict[str, Any]) -> PaymentRequestPayload:
        envelope = await self.request("POST", "api/requests", json=data)
        return _parse(PaymentRequestPayload, _unwrap(envelope.data, "request"))

    async def respond_to_request(self, request_id: str, action: str) -> Dict[str, Any]:
        """Respond as a recipient ("accept" or "decline")."""
        envelope = await self.request(
            "POST", f"api/requests/{request_id}/respond", json={"action": action}
        )
        return envelope.data or {}

    async def build_request_transaction_preview(self, request_id: str) -> RequestPreview:
        envelope = await self.request("POST", f"api/requests/{request_id}/preview")
        return _parse(RequestPreview, _unwrap(envelope.data, "transaction"))

    async def mark_request_accepted(self, request_id: str) -> Dict[str, Any]:
        envelope = await self.request("POST", f"api/requests/{request_id}/accept")
        return envelope.data or {}

    async def cancel_request(self, request_id: str) -> Dict[str, Any]:
        envelope = await self.request("DELETE", f"api/requests/{request_id}")
        return envelope.data or {}

    async def get_my_requests(
        self, page: int = 1, limit: int = 20
    ) -> Tuple[List[PaymentRequestPayload], int]:
        """Requests the current user sent."""
        return await self._list_requests("api/requests/my-requests", page, limit)

    async def get_received_requests(
        self, page: int = 1, limit: int = 20
    ) -> Tuple[List[PaymentRequestPayload], int]:
        """Requests sent to the current user."""
        return await self._list_requests("api/requests/received", page, limit)

    async def _list_requests(
        self, path: str, page: int, limit: int
    ) -> Tuple[List[PaymentRequestPayload], int]:
        envelope = await self.request("GET", path, params={"page": page, "limit": limit})
        data = envelope.data or {}
        items = [_parse(PaymentRequestPayload, item) for item in data.get("requests", [])]
        return items, int(data.get("total", len(items)))

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user_by_username(self, username: str) -> Optional[UserLookup]:
        envelope = await self.request("GET", "api/users/lookup", params={"username": username})
        data = _unwrap(envelope.data, "user")
        if not data:
            return None
        return _parse(UserLookup, data)


def _parse(model: Type[M], data: Any) -> M:
    """Validate a payload; a malformed body is a backend error, not a crash."""
    try:
        return model.model_validate(data)
    except ValueError as e:
        raise BackendError(f"Malformed {model.__name__} from backend: {e}") from e


def _unwrap(data: Any, key: str) -> Any:
    """Some endpoints nest the document under a key ({"request": {...}})."""
    if isinstance(data, dict) and isinstance(data.get(key), dict):
        return data[key]
    return data


_backend_client: Optional[BackendClient] = None


def get_backend_client() -> BackendClient:
    """Get the shared backend client instance."""
    global _backend_client
    if _backend_client is None:
        _backend_client = BackendClient()
    return _backend_client


__all__ = [
    "BackendClient",
    "BackendError",
    "BackendUnavailableError",
    "get_backend_client",
]
