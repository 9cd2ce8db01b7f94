"""
Settlement Tracker

Single writer of transaction-outcome records. Each record is keyed by the
originating message id and written to the backend ledger at most once per
call site; enrichment (achievement, stats, social proof) is fetched at most
once per record, guarded by refresh_attempted.

The local records are a cache. The backend ledger is the system of record.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Optional

import httpx

from ...config import settings
from ...db.backend_client import BackendClient, BackendError
from ...types.backend import TrackTransactionPayload
from ..models import (
    EnrichedTransactionRecord,
    RAMP_KINDS,
    SettlementResult,
    SettlementStatus,
    TransactionIntent,
)
from ..networks import classify_network
from .events import SettlementEventChannel

logger = logging.getLogger(__name__)


class SettlementTracker:
    """
    Records settlement outcomes and enriches them exactly once.

    Usage:
        tracker = SettlementTracker(backend)
        record = await tracker.record("msg-1", result, intent)
        record = await tracker.wait_for_enrichment("msg-1")
    """

    def __init__(
        self,
        backend: BackendClient,
        enrichment_timeout: Optional[float] = None,
    ):
        self._backend = backend
        self._enrichment_timeout = (
            enrichment_timeout
            if enrichment_timeout is not None
            else settings.enrichment_timeout_seconds
        )
        self._records: Dict[str, EnrichedTransactionRecord] = {}
        self._enrichment_tasks: Dict[str, asyncio.Task] = {}

        self.ledger_writes = 0
        self.tracking_failures = 0
        self.enrichment_fetches = 0

    def get(self, message_id: str) -> Optional[EnrichedTransactionRecord]:
        return self._records.get(message_id)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    async def record(
        self,
        message_id: str,
        result: SettlementResult,
        intent: TransactionIntent,
        from_address: Optional[str] = None,
    ) -> EnrichedTransactionRecord:
        """
        Persist a settlement outcome against message_id.

        A second call for the same message_id returns the existing record
        without writing to the ledger or scheduling another enrichment.
        Ledger failures never hide the settlement: the record is kept with
        tracked=False and a tracking_error.
        """
        existing = self._records.get(message_id)
        if existing is not None:
            logger.debug(f"Message {message_id} already tracked, skipping")
            return existing

        # Claimed before the first await so concurrent callers see it
        record = self._build_record(message_id, result, intent, from_address)
        self._records[message_id] = record

        record = await self._persist(record)
        if record.tracked and result.success:
            self._schedule_enrichment(message_id)
        return record

    def _build_record(
        self,
        message_id: str,
        result: SettlementResult,
        intent: TransactionIntent,
        from_address: Optional[str],
    ) -> EnrichedTransactionRecord:
        network = classify_network(intent.network, strict=False)
        explorer = None
        if result.transaction_hash and intent.kind not in RAMP_KINDS:
            explorer = network.explorer_url(result.transaction_hash)

        return EnrichedTransactionRecord(
            message_id=message_id,
            network=network.name,
            token_symbol=intent.token_symbol,
            amount=intent.display_amount,
            to_address=intent.to_address,
            transaction_hash=result.transaction_hash,
            status=SettlementStatus.SUCCESS if result.success else SettlementStatus.FAILED,
            transaction_type=intent.kind.value,
            from_address=from_address or intent.from_address,
            explorer_url=explorer,
            error_kind=result.error_kind,
            error_message=result.error_message,
            request_id=intent.request_id,
        )

    async def _persist(self, record: EnrichedTransactionRecord) -> EnrichedTransactionRecord:
        try:
            await self._backend.track_transaction(TrackTransactionPayload.from_record(record))
        except (BackendError, httpx.HTTPError) as e:
            self.tracking_failures += 1
            logger.warning(
                f"Tracking failed for message {record.message_id} "
                f"(hash={record.transaction_hash}): {e}"
            )
            updated = replace(record, tracked=False, tracking_error=str(e))
        else:
            self.ledger_writes += 1
            updated = replace(record, tracked=True, tracking_error=None)

        # Enrichment may have landed while the write was in flight
        current = self._records.get(record.message_id, record)
        updated = replace(current, tracked=updated.tracked, tracking_error=updated.tracking_error)
        self._records[record.message_id] = updated
        return updated

    async def retry_tracking(self, message_id: str) -> Optional[EnrichedTransactionRecord]:
        """
        Re-send the ledger write for a settled-but-unrecorded record.

        Only the write is retried; the transaction itself never is.
        """
        record = self._records.get(message_id)
        if record is None or record.tracked:
            return record

        record = await self._persist(record)
        if record.tracked and record.status == SettlementStatus.SUCCESS:
            self._schedule_enrichment(message_id)
        return record

    def discard_failed(self, message_id: str) -> bool:
        """
        Forget a failed record so a resubmission can be recorded.

        Successful records are never discarded.
        """
        record = self._records.get(message_id)
        if record is None or record.status != SettlementStatus.FAILED:
            return False
        del self._records[message_id]
        logger.info(f"Discarded failed record for message {message_id}")
        return True

    # =========================================================================
    # Enrichment
    # =========================================================================

    def _schedule_enrichment(self, message_id: str) -> None:
        record = self._records.get(message_id)
        if record is None or record.refresh_attempted or message_id in self._enrichment_tasks:
            return

        task = asyncio.create_task(self._enrich(message_id))
        self._enrichment_tasks[message_id] = task
        task.add_done_callback(lambda _t: self._enrichment_tasks.pop(message_id, None))

    async def _enrich(self, message_id: str) -> EnrichedTransactionRecord:
        share = None
        try:
            share = await asyncio.wait_for(
                self._backend.get_transaction_share_data(message_id),
                timeout=self._enrichment_timeout,
            )
        except (BackendError, httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.warning(f"Enrichment fetch failed for message {message_id}: {e}")
        except Exception as e:
            logger.warning(f"Enrichment fetch failed for message {message_id}: {e}", exc_info=True)
        finally:
            self.enrichment_fetches += 1
            self._mark_attempted(message_id)

        current = self._records[message_id]
        if share is not None and share.has_enrichment:
            current = replace(
                current,
                achievement=_dump(share.achievement),
                user_stats=_dump(share.user_stats),
                social_proof=_dump(share.social_proof),
                personalized_message=share.personalized_message or current.personalized_message,
            )
            self._records[message_id] = current
            logger.info(f"Enriched message {message_id}")
        return current

    def _mark_attempted(self, message_id: str) -> None:
        record = self._records.get(message_id)
        if record is not None and not record.refresh_attempted:
            self._records[message_id] = replace(record, refresh_attempted=True)

    async def refresh_enrichment(self, message_id: str) -> Optional[EnrichedTransactionRecord]:
        """
        Run the single enrichment fetch now, if it has not happened yet.

        Refuses (returns the record unchanged) once refresh_attempted is set.
        """
        record = self._records.get(message_id)
        if record is None:
            return None
        if record.refresh_attempted:
            logger.debug(f"Enrichment already attempted for message {message_id}")
            return record

        self._schedule_enrichment(message_id)
        return await asyncio.shield(self._enrichment_tasks[message_id])

    async def wait_for_enrichment(self, message_id: str) -> Optional[EnrichedTransactionRecord]:
        """Wait for an in-flight enrichment fetch, then return the record."""
        task = self._enrichment_tasks.get(message_id)
        if task is not None:
            await asyncio.shield(task)
        return self._records.get(message_id)

    # =========================================================================
    # Event consumption
    # =========================================================================

    async def run(self, channel: SettlementEventChannel) -> None:
        """Consume settlement events until cancelled."""
        async for event in channel.events():
            try:
                await self.record(
                    event.message_id,
                    event.result,
                    event.intent,
                    from_address=event.from_address,
                )
            except Exception as e:
                logger.error(f"Error recording {event.source} event {event.message_id}: {e}", exc_info=True)
            finally:
                channel.task_done()

    async def close(self) -> None:
        """Cancel in-flight enrichment fetches."""
        tasks = list(self._enrichment_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        return {
            "records": len(self._records),
            "ledger_writes": self.ledger_writes,
            "tracking_failures": self.tracking_failures,
            "enrichment_fetches": self.enrichment_fetches,
            "enrichment_in_flight": len(self._enrichment_tasks),
            "unrecorded": sum(1 for r in self._records.values() if not r.tracked),
        }


def _dump(model: Any) -> Optional[Dict[str, Any]]:
    if model is None:
        return None
    return model.model_dump(by_alias=True, exclude_none=True)


__all__ = [
    "SettlementTracker",
]
