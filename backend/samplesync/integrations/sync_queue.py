"""Persisted sync queue with per-sample ordering, retry backoff and terminal failure.

Item lifecycle::

    pending -> processing -> completed
                          -> pending   (retryable failure, attempts < max)
                          -> failed    (attempts exhausted or not retryable)

Completed and failed are terminal and never picked up again automatically.
An item left in ``processing`` by a crashed worker stays there until an
operator requeues it; it also holds back later items for the same sample.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from samplesync.core.exceptions import is_retryable
from samplesync.db.sample_store import SampleStore
from samplesync.integrations.lims_domain import (
    QueueItemStatus,
    SyncDirection,
    SyncOperation,
    SyncQueueItem,
    format_timestamp,
)

logger = logging.getLogger(__name__)

# Candidate rows read per page, as a multiple of the batch size
_PAGE_SIZE_FACTOR = 4


class SyncQueue:
    """Queue of pending sync operations backed by the ``sync_queue`` table."""

    def __init__(
        self,
        store: SampleStore,
        max_attempts: int = 3,
        retry_base_seconds: float = 30.0,
    ) -> None:
        """Initialize the queue.

        Args:
            store: Repository holding the queue rows.
            max_attempts: Attempts allowed per item before it is marked failed.
            retry_base_seconds: Backoff after the first failed attempt; doubles
                with every further attempt.
        """
        self._store = store
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds

    @staticmethod
    def ordering_key(item: SyncQueueItem) -> str:
        """Items sharing this key must complete in creation order."""
        return item.sample_id or f"external:{item.external_id}"

    async def enqueue(
        self,
        sample_id: str,
        operation: SyncOperation,
        direction: SyncDirection,
        external_id: str = "",
        payload: dict[str, Any] | None = None,
    ) -> SyncQueueItem:
        """Append a new pending item. Duplicates for the same sample are allowed.

        Args:
            sample_id: Local sample id, or "" for an inbound item with no local copy yet.
            operation: create, update or delete.
            direction: Outbound or inbound.
            external_id: LIMS entity id, if known.
            payload: Partial sample fields carried with the item.

        Returns:
            The stored queue item.
        """
        item = SyncQueueItem(
            sample_id=sample_id,
            external_id=external_id,
            operation=operation,
            direction=direction,
            payload=payload or {},
            max_attempts=self.max_attempts,
        )
        item = await self._store.insert_queue_item(item)
        logger.info(
            "Sync item queued",
            extra={
                "queue_id": item.id,
                "sample_id": sample_id,
                "operation": operation.value,
                "direction": direction.value,
            },
        )
        return item

    async def claim_batch(
        self, batch_size: int, now: datetime | None = None
    ) -> list[SyncQueueItem]:
        """Claim up to ``batch_size`` due pending items, oldest first.

        At most one item per sample is claimed, and never one that has an
        older pending or processing item for the same sample. Candidates are
        read page by page, so a sample with a blocked head and a long backlog
        holds back only its own items. Each claim is a conditional update on
        ``status == pending`` so concurrent workers cannot claim the same
        item. Claiming counts as an attempt.

        Args:
            batch_size: Maximum number of items to claim.
            now: Current time, for backoff checks.

        Returns:
            The claimed items, now in ``processing``.
        """
        now = now or datetime.now(UTC)
        page_size = max(batch_size * _PAGE_SIZE_FACTOR, 1)
        blocked: set[str] = set()
        claimed: list[SyncQueueItem] = []
        offset = 0

        while len(claimed) < batch_size:
            page = await self._store.list_queue_items(
                [QueueItemStatus.PENDING, QueueItemStatus.PROCESSING],
                limit=page_size,
                offset=offset,
            )
            for item in page:
                if len(claimed) >= batch_size:
                    break
                key = self.ordering_key(item)
                if key in blocked:
                    continue
                blocked.add(key)
                if await self._try_claim(item, now):
                    claimed.append(item)

            if len(page) < page_size:
                break
            offset += page_size

        return claimed

    async def _try_claim(self, item: SyncQueueItem, now: datetime) -> bool:
        if item.status == QueueItemStatus.PROCESSING:
            return False
        if item.next_attempt_at is not None and item.next_attempt_at > now:
            return False

        attempts = item.attempts + 1
        won = await self._store.claim_queue_item(
            item.id,
            {
                "status": QueueItemStatus.PROCESSING.value,
                "attempts": attempts,
                "last_attempt_at": format_timestamp(now),
            },
        )
        if not won:
            logger.debug("Sync item claimed by another worker", extra={"queue_id": item.id})
            return False

        item.status = QueueItemStatus.PROCESSING
        item.attempts = attempts
        item.last_attempt_at = now
        return True

    async def mark_completed(self, item: SyncQueueItem) -> None:
        """Move a processing item to completed."""
        now = datetime.now(UTC)
        item.status = QueueItemStatus.COMPLETED
        item.completed_at = now
        item.last_error = None
        item.next_attempt_at = None
        await self._store.update_queue_item(
            item.id,
            {
                "status": item.status.value,
                "completed_at": format_timestamp(now),
                "last_error": None,
                "next_attempt_at": None,
            },
        )

    async def mark_failed_attempt(self, item: SyncQueueItem, error: Exception) -> bool:
        """Record a failed attempt.

        Retryable errors go back to pending with exponential backoff while
        attempts remain. Anything else becomes failed.

        Returns:
            True if the item is now terminally failed.
        """
        now = datetime.now(UTC)
        retryable = is_retryable(error)
        item.last_error = str(error)

        if retryable and item.attempts < item.max_attempts:
            delay = self.retry_base_seconds * 2 ** max(item.attempts - 1, 0)
            item.status = QueueItemStatus.PENDING
            item.next_attempt_at = now + timedelta(seconds=delay)
            terminal = False
        else:
            item.status = QueueItemStatus.FAILED
            item.next_attempt_at = None
            terminal = True

        await self._store.update_queue_item(
            item.id,
            {
                "status": item.status.value,
                "last_error": item.last_error,
                "next_attempt_at": format_timestamp(item.next_attempt_at),
            },
        )

        log = logger.error if terminal else logger.warning
        log(
            "Sync item failed" if terminal else "Sync item will be retried",
            extra={
                "queue_id": item.id,
                "sample_id": item.sample_id,
                "attempts": item.attempts,
                "max_attempts": item.max_attempts,
                "retryable": retryable,
                "error": item.last_error,
            },
        )
        return terminal

    async def list_items(
        self, status: QueueItemStatus | None = None, limit: int = 100
    ) -> list[SyncQueueItem]:
        """List queue items oldest first."""
        return await self._store.list_queue_items([status] if status else None, limit=limit)

    async def counts(self) -> dict[str, int]:
        """Count items per status."""
        return {
            status.value: await self._store.count_queue_items(status)
            for status in QueueItemStatus
        }

    async def requeue(self, statuses: list[QueueItemStatus] | None = None) -> int:
        """Force items back to pending with a fresh attempt budget.

        Defaults to failed items. Pass ``processing`` to release items left
        behind by a crashed worker.

        Returns:
            Number of items requeued.
        """
        statuses = statuses or [QueueItemStatus.FAILED]
        count = await self._store.reset_queue_items(
            statuses,
            {
                "status": QueueItemStatus.PENDING.value,
                "attempts": 0,
                "next_attempt_at": None,
                "last_error": None,
            },
        )
        logger.info(
            "Sync items requeued",
            extra={"count": count, "statuses": [s.value for s in statuses]},
        )
        return count

    async def clear(self, statuses: list[QueueItemStatus] | None = None) -> int:
        """Delete queue items. Defaults to pending and failed items.

        Returns:
            Number of items removed.
        """
        statuses = statuses or [QueueItemStatus.PENDING, QueueItemStatus.FAILED]
        count = await self._store.delete_queue_items(statuses)
        logger.info(
            "Sync queue cleared",
            extra={"count": count, "statuses": [s.value for s in statuses]},
        )
        return count
