"""
Solana RPC connection.

Thin JSON-RPC client used for blockhash refresh and signature lookups. It is
also handed to the custodial Solana wallet as the live connection for
signAndSendTransaction.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx
from solders.hash import Hash

from ..errors import BlockhashNotFoundError, NetworkError


class SolanaRpcError(NetworkError):
    """Error returned by a Solana RPC node."""
    pass


class SolanaConnection:
    """
    Async Solana JSON-RPC connection.

    Usage:
        connection = SolanaConnection("https://api.mainnet-beta.solana.com")
        blockhash = await connection.get_latest_blockhash()
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: str = "confirmed",
        max_retries: int = 3,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.max_retries = max_retries
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _rpc_call(self, method: str, params: List[Any]) -> Dict[str, Any]:
        """Make an RPC call to the Solana node."""
        client = await self._get_client()

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }

        for attempt in range(self.max_retries):
            try:
                response = await client.post(
                    self.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
                data = response.json()

                if "error" in data:
                    error_msg = data["error"].get("message", str(data["error"]))
                    raise SolanaRpcError(f"RPC error: {error_msg}")

                return data

            except httpx.HTTPStatusError as e:
                if attempt == self.max_retries - 1:
                    raise NetworkError(f"Solana RPC HTTP error: {e.response.status_code}") from e
                await asyncio.sleep(0.5 * (attempt + 1))
            except httpx.TransportError as e:
                if attempt == self.max_retries - 1:
                    raise NetworkError(f"Solana RPC unreachable: {e}") from e
                await asyncio.sleep(0.5 * (attempt + 1))
            except ValueError as e:
                # Non-JSON body (proxy error page, truncated reply)
                if attempt == self.max_retries - 1:
                    raise NetworkError(f"Solana RPC returned an unreadable response: {e}") from e
                await asyncio.sleep(0.5 * (attempt + 1))

        raise NetworkError("Solana RPC max retries exceeded")

    async def get_latest_blockhash(self) -> Hash:
        """Fetch the latest blockhash at the configured commitment."""
        data = await self._rpc_call(
            "getLatestBlockhash", [{"commitment": self.commitment}]
        )
        value = (data.get("result") or {}).get("value") or {}
        blockhash = value.get("blockhash")
        if not blockhash:
            raise BlockhashNotFoundError("RPC returned no blockhash")
        return Hash.from_string(blockhash)

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        """Status of a signature, or None when the cluster has never seen it."""
        data = await self._rpc_call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = (data.get("result") or {}).get("value") or [None]
        return statuses[0]


_solana_connection: Optional[SolanaConnection] = None


def get_solana_connection(rpc_url: Optional[str] = None) -> SolanaConnection:
    """
    Get the shared Solana connection.

    RPC URL resolution order:
    1. Explicit rpc_url parameter
    2. settings.resolve_solana_rpc_url() (SOLANA_RPC_URL, Alchemy, public RPC)
    """
    global _solana_connection

    if _solana_connection is None:
        from ...config import settings

        _solana_connection = SolanaConnection(
            rpc_url=rpc_url or settings.resolve_solana_rpc_url(),
            commitment=settings.solana_commitment,
            timeout_s=settings.solana_rpc_timeout_seconds,
        )

    return _solana_connection


__all__ = [
    "SolanaConnection",
    "SolanaRpcError",
    "get_solana_connection",
]
