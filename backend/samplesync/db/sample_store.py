"""Supabase repository for synced samples, the sync queue and sync metadata.

Tables:
- ``synced_samples``: one row per SyncedSample
- ``sync_queue``: one row per SyncQueueItem
- ``sync_metadata``: a single row with id ``sync-metadata``

All queries go through the Supabase circuit breaker. Any failure other than
an open circuit is logged and re-raised as DatabaseError.
"""

import logging
import uuid
from datetime import UTC, datetime
from typing import Any, cast

from samplesync.core.exceptions import ConflictError, DatabaseError
from samplesync.core.resilience import CircuitBreakerOpen, supabase_circuit_breaker
from samplesync.db.supabase import SupabaseClient
from samplesync.integrations.lims_domain import (
    METADATA_ID,
    QueueItemStatus,
    SyncedSample,
    SyncQueueItem,
)
from supabase import Client

logger = logging.getLogger(__name__)

SAMPLES_TABLE = "synced_samples"
QUEUE_TABLE = "sync_queue"
METADATA_TABLE = "sync_metadata"


async def _execute(query: Any) -> Any:
    return query.execute()


class SampleStore:
    """Async repository over the sync tables."""

    def __init__(self, client: Client | None = None) -> None:
        """Initialize the store.

        Args:
            client: Supabase client. Defaults to the shared singleton,
                resolved lazily on first use.
        """
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = SupabaseClient.get_client()
        return self._client

    async def _run(self, operation: str, query: Any, **log_extra: Any) -> Any:
        try:
            return await supabase_circuit_breaker.call(_execute, query)
        except CircuitBreakerOpen as e:
            raise DatabaseError("Database temporarily unavailable") from e
        except Exception as e:
            logger.exception(
                "Database operation failed",
                extra={"operation": operation, **log_extra},
            )
            raise DatabaseError(f"Failed to {operation}: {e}") from e

    # ========
    # Samples
    # ========

    async def _get_one_sample(self, column: str, value: str) -> SyncedSample | None:
        response = await self._run(
            f"fetch sample by {column}",
            self.client.table(SAMPLES_TABLE).select("*").eq(column, value).limit(1),
            **{column: value},
        )
        rows = cast(list[dict[str, Any]], response.data or [])
        return SyncedSample.from_record(rows[0]) if rows else None

    async def get_sample(self, sample_id: str) -> SyncedSample | None:
        """Fetch a sample by local id."""
        return await self._get_one_sample("id", sample_id)

    async def get_sample_by_registry_code(self, registry_code: str) -> SyncedSample | None:
        """Fetch a sample by LIMS registry code."""
        return await self._get_one_sample("registry_code", registry_code)

    async def get_sample_by_external_id(self, external_id: str) -> SyncedSample | None:
        """Fetch a sample by LIMS entity id."""
        return await self._get_one_sample("external_id", external_id)

    async def insert_sample(self, sample: SyncedSample) -> SyncedSample:
        """Insert a new sample, assigning a local id if it has none.

        Returns:
            The sample as stored.
        """
        if not sample.id:
            sample.id = str(uuid.uuid4())
        await self._run(
            "insert sample",
            self.client.table(SAMPLES_TABLE).insert(sample.to_record()),
            sample_id=sample.id,
        )
        return sample

    async def save_sample(
        self, sample: SyncedSample, expected_version: int | None = None
    ) -> SyncedSample:
        """Overwrite a stored sample.

        Args:
            sample: The sample with its new state.
            expected_version: If given, the write only succeeds while the
                stored ``sync_version`` still equals this value.

        Returns:
            The sample as stored.

        Raises:
            ConflictError: The sample was deleted or its version changed
                concurrently.
        """
        query = self.client.table(SAMPLES_TABLE).update(sample.to_record()).eq("id", sample.id)
        if expected_version is not None:
            query = query.eq("sync_version", expected_version)
        response = await self._run("update sample", query, sample_id=sample.id)
        if not response.data:
            raise ConflictError(
                f"Sample {sample.id} was modified or deleted concurrently",
                resource="sample",
            )
        return sample

    async def delete_sample(self, sample_id: str) -> bool:
        """Delete a sample. Returns False if it did not exist."""
        response = await self._run(
            "delete sample",
            self.client.table(SAMPLES_TABLE).delete().eq("id", sample_id),
            sample_id=sample_id,
        )
        return bool(response.data)

    async def list_samples(
        self, limit: int = 100, offset: int = 0, status: str | None = None
    ) -> list[SyncedSample]:
        """List samples by registry code."""
        query = self.client.table(SAMPLES_TABLE).select("*")
        if status:
            query = query.eq("status", status)
        response = await self._run(
            "list samples",
            query.order("registry_code").range(offset, offset + limit - 1),
        )
        rows = cast(list[dict[str, Any]], response.data or [])
        return [SyncedSample.from_record(row) for row in rows]

    async def count_samples(self) -> int:
        """Count all samples."""
        response = await self._run(
            "count samples",
            self.client.table(SAMPLES_TABLE).select("id", count="exact").limit(1),
        )
        return int(response.count or 0)

    # ===========
    # Sync queue
    # ===========

    async def insert_queue_item(self, item: SyncQueueItem) -> SyncQueueItem:
        """Append an item to the queue, assigning id and creation time if missing."""
        if not item.id:
            item.id = str(uuid.uuid4())
        if item.created_at is None:
            item.created_at = datetime.now(UTC)
        await self._run(
            "enqueue sync item",
            self.client.table(QUEUE_TABLE).insert(item.to_record()),
            queue_id=item.id,
            sample_id=item.sample_id,
        )
        return item

    async def list_queue_items(
        self,
        statuses: list[QueueItemStatus] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[SyncQueueItem]:
        """List queue items oldest first, optionally filtered by status."""
        query = self.client.table(QUEUE_TABLE).select("*")
        if statuses:
            query = query.in_("status", [s.value for s in statuses])
        response = await self._run(
            "list sync queue", query.order("created_at").range(offset, offset + limit - 1)
        )
        rows = cast(list[dict[str, Any]], response.data or [])
        return [SyncQueueItem.from_record(row) for row in rows]

    async def claim_queue_item(self, item_id: str, changes: dict[str, Any]) -> bool:
        """Apply ``changes`` only while the item is still pending.

        Returns:
            True if this caller won the claim.
        """
        response = await self._run(
            "claim sync item",
            self.client.table(QUEUE_TABLE)
            .update(changes)
            .eq("id", item_id)
            .eq("status", QueueItemStatus.PENDING.value),
            queue_id=item_id,
        )
        return bool(response.data)

    async def update_queue_item(self, item_id: str, changes: dict[str, Any]) -> None:
        """Apply ``changes`` to a queue item unconditionally."""
        await self._run(
            "update sync item",
            self.client.table(QUEUE_TABLE).update(changes).eq("id", item_id),
            queue_id=item_id,
        )

    async def count_queue_items(self, status: QueueItemStatus) -> int:
        """Count queue items in one status."""
        response = await self._run(
            "count sync queue",
            self.client.table(QUEUE_TABLE)
            .select("id", count="exact")
            .eq("status", status.value)
            .limit(1),
        )
        return int(response.count or 0)

    async def delete_queue_items(self, statuses: list[QueueItemStatus]) -> int:
        """Delete every queue item in the given statuses. Returns the count removed."""
        response = await self._run(
            "clear sync queue",
            self.client.table(QUEUE_TABLE).delete().in_("status", [s.value for s in statuses]),
        )
        return len(response.data or [])

    async def reset_queue_items(
        self, statuses: list[QueueItemStatus], changes: dict[str, Any]
    ) -> int:
        """Apply ``changes`` to every queue item in the given statuses."""
        response = await self._run(
            "requeue sync items",
            self.client.table(QUEUE_TABLE).update(changes).in_("status", [s.value for s in statuses]),
        )
        return len(response.data or [])

    # ==============
    # Sync metadata
    # ==============

    async def get_metadata(self) -> dict[str, Any] | None:
        """Fetch the sync metadata row, or None if it was never written."""
        response = await self._run(
            "fetch sync metadata",
            self.client.table(METADATA_TABLE).select("*").eq("id", METADATA_ID).limit(1),
        )
        rows = cast(list[dict[str, Any]], response.data or [])
        return rows[0] if rows else None

    async def merge_metadata(self, changes: dict[str, Any]) -> None:
        """Merge ``changes`` into the sync metadata row, creating it if needed."""
        await self._run(
            "update sync metadata",
            self.client.table(METADATA_TABLE).upsert({"id": METADATA_ID, **changes}),
        )


# Singleton instance
_sample_store: SampleStore | None = None


def get_sample_store() -> SampleStore:
    """Get or create the sample store singleton."""
    global _sample_store
    if _sample_store is None:
        _sample_store = SampleStore()
    return _sample_store
