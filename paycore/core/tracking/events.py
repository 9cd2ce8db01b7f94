"""
Settlement events.

Producers that settle outside the dispatcher (the fiat ramp) publish a
SettlementEvent on a channel; the tracker consumes the channel. There is no
callback slot to register or unregister.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from ..models import SettlementResult, TransactionIntent


@dataclass(frozen=True)
class SettlementEvent:
    """A settlement outcome waiting to be recorded."""
    message_id: str
    result: SettlementResult
    intent: TransactionIntent
    from_address: Optional[str] = None
    source: str = "ramp"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SettlementEventChannel:
    """Unbounded asyncio queue of SettlementEvents with one consumer."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[SettlementEvent] = asyncio.Queue()
        self.published = 0

    def publish(self, event: SettlementEvent) -> None:
        self._queue.put_nowait(event)
        self.published += 1

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> SettlementEvent:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every published event has been processed."""
        await self._queue.join()

    async def events(self) -> AsyncIterator[SettlementEvent]:
        while True:
            yield await self._queue.get()


__all__ = [
    "SettlementEvent",
    "SettlementEventChannel",
]
