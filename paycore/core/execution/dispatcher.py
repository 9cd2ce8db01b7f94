"""
Signing dispatcher.

Sends a built transaction through its provider and converts whatever comes
back into a SettlementResult. Raw wallet and RPC exceptions stop here.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from ...config import settings
from ..errors import ErrorKind, UserRejectedError, classify_provider_error
from ..models import SettlementResult
from ..networks import ChainFamily
from ..signing.providers import SigningProvider, TransactionRevertedError
from .solana_rpc import SolanaConnection

logger = logging.getLogger(__name__)

BlockhashRefresher = Callable[[Any], Awaitable[Any]]


class SigningTimeoutError(Exception):
    """The wallet did not answer within the configured signing timeout."""
    pass


class SigningDispatcher:
    """
    Polymorphic sign-and-broadcast.

    Every provider variant goes through the same path and yields the same
    SettlementResult shape. A Solana BlockhashNotFound rejection is handled
    here by refreshing the blockhash and resending, up to
    settings.solana_blockhash_retries times.
    """

    def __init__(
        self,
        solana_connection: Optional[SolanaConnection] = None,
        refresh_blockhash: Optional[BlockhashRefresher] = None,
        signing_timeout: Optional[float] = None,
        blockhash_retries: Optional[int] = None,
    ):
        self._solana = solana_connection
        self._refresh_blockhash = refresh_blockhash
        self._signing_timeout = (
            signing_timeout if signing_timeout is not None else settings.signing_timeout_seconds
        )
        self._blockhash_retries = (
            blockhash_retries if blockhash_retries is not None else settings.solana_blockhash_retries
        )

    async def sign_and_broadcast(
        self,
        native_tx: Any,
        provider: SigningProvider,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SettlementResult:
        """
        Sign and broadcast native_tx through provider.

        cancel_event models the user closing the signing prompt; it resolves
        the pending signature as UserRejected. Once the wallet returns a hash
        the result always carries it, whatever happens while confirming.
        Cancelling the calling task propagates as usual.
        """
        if not provider.supports_broadcast:
            return SettlementResult.failed(
                ErrorKind.MALFORMED_INTENT,
                "Fiat ramp orders settle through the ramp adapter",
            )

        connection = self._solana if provider.family == ChainFamily.SOLANA else None
        refreshes = 0

        while True:
            try:
                tx_hash = await self._await_signature(
                    provider.send(native_tx, connection), cancel_event
                )
            except asyncio.CancelledError:
                raise
            except TransactionRevertedError as e:
                logger.warning(f"Transaction {e.tx_hash} reverted on-chain")
                return SettlementResult.failed(ErrorKind.UNKNOWN, str(e), e.tx_hash)
            except SigningTimeoutError as e:
                logger.warning(f"{provider.kind.value} signing timed out")
                return SettlementResult.failed(ErrorKind.NETWORK_ERROR, str(e))
            except Exception as e:
                kind = classify_provider_error(e)

                if kind == ErrorKind.BLOCKHASH_NOT_FOUND:
                    if refreshes < self._blockhash_retries and self._refresh_blockhash is not None:
                        refreshes += 1
                        logger.info(f"Blockhash expired, rebuilding ({refreshes}/{self._blockhash_retries})")
                        try:
                            native_tx = await self._refresh_blockhash(native_tx)
                        except Exception as refresh_error:
                            logger.warning(f"Blockhash refresh failed: {refresh_error}")
                            return SettlementResult.failed(ErrorKind.NETWORK_ERROR, str(refresh_error))
                        continue
                    # Never surfaced as BlockhashNotFound
                    kind = ErrorKind.NETWORK_ERROR

                logger.warning(f"{provider.kind.value} settlement failed ({kind.value}): {e}")
                return SettlementResult.failed(kind, str(e) or kind.value)

            logger.info(f"{provider.kind.value} broadcast {tx_hash}")
            return await self._confirm(provider, tx_hash, connection)

    async def _confirm(self, provider: SigningProvider, tx_hash: str, connection: Any) -> SettlementResult:
        # Past this point the hash is final: cancel and signing timeout no longer apply
        try:
            await provider.confirm(tx_hash, connection)
        except asyncio.CancelledError:
            raise
        except TransactionRevertedError as e:
            logger.warning(f"Transaction {e.tx_hash} reverted on-chain")
            return SettlementResult.failed(ErrorKind.UNKNOWN, str(e), e.tx_hash)
        except Exception as e:
            logger.warning(f"Could not confirm {tx_hash}, reporting as broadcast: {e}")
        return SettlementResult.succeeded(tx_hash)

    async def _await_signature(
        self,
        send: Awaitable[str],
        cancel_event: Optional[asyncio.Event],
    ) -> str:
        if cancel_event is None and self._signing_timeout is None:
            return await send

        send_task = asyncio.ensure_future(send)
        waiters = {send_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self._signing_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            send_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if send_task in done:
            return send_task.result()

        send_task.cancel()
        if cancel_task is not None and cancel_task in done:
            raise UserRejectedError("Signing cancelled by user")
        raise SigningTimeoutError(
            f"No signature after {self._signing_timeout}s; check whether the transaction landed"
        )


__all__ = [
    "SigningDispatcher",
    "SigningTimeoutError",
]
