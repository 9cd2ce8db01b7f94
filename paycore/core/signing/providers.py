"""
Signing providers.

A closed set of wallet backends that can sign and broadcast a transaction.
The resolver picks exactly one per intent; everything downstream talks to the
provider through send() and never inspects which wallet it is.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, List, Optional, Protocol

from ...config import settings
from ..networks import ChainFamily

logger = logging.getLogger(__name__)


class WalletHandle(Protocol):
    """EIP-1193 style request interface exposed by every wallet backend."""

    async def request(self, method: str, params: Any = None) -> Any:
        ...


class ProviderKind(str, Enum):
    WALLET_CONNECT_EVM = "wallet_connect_evm"
    CUSTODIAL_EVM = "custodial_evm"
    CUSTODIAL_SOLANA = "custodial_solana"
    FIAT_RAMP = "fiat_ramp"


class TransactionRevertedError(Exception):
    """Transaction was mined but reverted; the hash is final."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction {tx_hash} reverted")
        self.tx_hash = tx_hash


@dataclass(frozen=True)
class SigningProvider(ABC):
    """A wallet able to sign for one chain family."""

    address: str
    handle: Any = field(default=None, compare=False, repr=False)

    kind: ClassVar[ProviderKind]
    family: ClassVar[Optional[ChainFamily]] = None

    @property
    def supports_broadcast(self) -> bool:
        return self.family is not None

    @abstractmethod
    async def send(self, native_tx: Any, connection: Any = None) -> str:
        """
        Sign and broadcast a provider-native transaction.

        Returns the transaction hash (or signature). Raw wallet exceptions
        propagate; the dispatcher classifies them.
        """

    async def confirm(self, tx_hash: str, connection: Any = None) -> None:
        """
        Wait for a broadcast transaction to land, where the wallet can tell.

        Runs after the hash is known and is never cancelled by the user.
        Raises TransactionRevertedError for a reverted transaction.
        """
        return None


@dataclass(frozen=True)
class WalletConnectEvmProvider(SigningProvider):
    """External wallet connected over a WalletConnect session."""

    kind: ClassVar[ProviderKind] = ProviderKind.WALLET_CONNECT_EVM
    family: ClassVar[Optional[ChainFamily]] = ChainFamily.EVM

    async def send(self, native_tx: Any, connection: Any = None) -> str:
        return await self.handle.request(
            "eth_sendTransaction", [native_tx.to_rpc_params(self.address)]
        )

    async def confirm(self, tx_hash: str, connection: Any = None) -> None:
        await self.wait_for_receipt(tx_hash)

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Optional[dict]:
        """
        Poll the session for the receipt of a broadcast transaction.

        A reverted receipt raises TransactionRevertedError. Timeouts and
        polling failures return None: the transaction is already broadcast.
        """
        timeout = settings.evm_confirmation_timeout_seconds if timeout is None else timeout
        poll_interval = settings.evm_confirmation_poll_seconds if poll_interval is None else poll_interval
        if timeout <= 0:
            return None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await self.handle.request("eth_getTransactionReceipt", [tx_hash])
            except Exception as e:
                logger.warning(f"Receipt polling failed for {tx_hash}: {e}")
                return None

            if receipt:
                if receipt.get("status") in ("0x0", 0, "0"):
                    raise TransactionRevertedError(tx_hash)
                return receipt

            if loop.time() >= deadline:
                logger.warning(f"No receipt for {tx_hash} after {timeout}s, reporting as broadcast")
                return None
            await asyncio.sleep(poll_interval)


@dataclass(frozen=True)
class CustodialEvmProvider(SigningProvider):
    """Embedded EVM wallet hosted by the auth provider."""

    kind: ClassVar[ProviderKind] = ProviderKind.CUSTODIAL_EVM
    family: ClassVar[Optional[ChainFamily]] = ChainFamily.EVM

    async def send(self, native_tx: Any, connection: Any = None) -> str:
        accounts: List[str] = await self.handle.request("eth_requestAccounts", []) or []
        sender = accounts[0] if accounts else self.address
        return await self.handle.request(
            "eth_sendTransaction", [native_tx.to_rpc_params(sender)]
        )


@dataclass(frozen=True)
class CustodialSolanaProvider(SigningProvider):
    """Embedded Solana wallet hosted by the auth provider."""

    kind: ClassVar[ProviderKind] = ProviderKind.CUSTODIAL_SOLANA
    family: ClassVar[Optional[ChainFamily]] = ChainFamily.SOLANA

    async def send(self, native_tx: Any, connection: Any = None) -> str:
        result = await self.handle.request(
            "signAndSendTransaction",
            {"transaction": native_tx, "connection": connection},
        )
        signature = result.get("signature") if isinstance(result, dict) else result
        if not signature:
            raise ValueError("Wallet returned no signature")
        return str(signature)

    async def confirm(self, tx_hash: str, connection: Any = None) -> None:
        """
        Poll the signature status until the cluster confirms it.

        A status carrying an err raises TransactionRevertedError. Timeouts
        and lookup failures return quietly: the signature is already sent.
        """
        if connection is None:
            return None

        timeout = settings.solana_confirmation_timeout_seconds
        poll_interval = settings.solana_confirmation_poll_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                status = await connection.get_signature_status(tx_hash)
            except Exception as e:
                logger.warning(f"Signature status lookup failed for {tx_hash}: {e}")
                return None

            if status:
                if status.get("err"):
                    raise TransactionRevertedError(tx_hash)
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return None

            if loop.time() >= deadline:
                logger.warning(f"{tx_hash} not confirmed after {timeout}s, reporting as broadcast")
                return None
            await asyncio.sleep(poll_interval)


@dataclass(frozen=True)
class FiatRampProvider(SigningProvider):
    """Buy/sell widget; completes asynchronously through the ramp adapter."""

    kind: ClassVar[ProviderKind] = ProviderKind.FIAT_RAMP

    async def send(self, native_tx: Any, connection: Any = None) -> str:
        raise NotImplementedError("Fiat ramp orders settle through the ramp adapter")


__all__ = [
    "WalletHandle",
    "ProviderKind",
    "TransactionRevertedError",
    "SigningProvider",
    "WalletConnectEvmProvider",
    "CustodialEvmProvider",
    "CustodialSolanaProvider",
    "FiatRampProvider",
]
