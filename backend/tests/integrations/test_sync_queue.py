"""Tests for the persisted sync queue."""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from samplesync.core.exceptions import LimsTransportError, LimsValidationError
from samplesync.integrations.lims_domain import (
    QueueItemStatus,
    SyncDirection,
    SyncOperation,
)
from samplesync.integrations.sync_queue import SyncQueue


async def _enqueue(queue: SyncQueue, sample_id: str, **kwargs: Any) -> Any:
    return await queue.enqueue(
        sample_id,
        kwargs.pop("operation", SyncOperation.UPDATE),
        kwargs.pop("direction", SyncDirection.TO_EXTERNAL),
        **kwargs,
    )


class TestClaimBatch:
    """Tests for claiming due work."""

    @pytest.mark.asyncio
    async def test_claims_oldest_first_and_counts_attempt(
        self, sync_queue: SyncQueue, fake_store: Any
    ) -> None:
        first = await _enqueue(sync_queue, "sample-a")
        second = await _enqueue(sync_queue, "sample-b")

        claimed = await sync_queue.claim_batch(10)

        assert [i.id for i in claimed] == [first.id, second.id]
        assert all(i.status == QueueItemStatus.PROCESSING for i in claimed)
        assert all(i.attempts == 1 for i in claimed)
        assert fake_store.queue[first.id]["status"] == "processing"

    @pytest.mark.asyncio
    async def test_one_item_per_sample_per_batch(self, sync_queue: SyncQueue) -> None:
        first = await _enqueue(sync_queue, "sample-a")
        await _enqueue(sync_queue, "sample-a")
        other = await _enqueue(sync_queue, "sample-b")

        claimed = await sync_queue.claim_batch(10)

        assert [i.id for i in claimed] == [first.id, other.id]

    @pytest.mark.asyncio
    async def test_processing_item_blocks_later_items_for_same_sample(
        self, sync_queue: SyncQueue
    ) -> None:
        await _enqueue(sync_queue, "sample-a")
        await sync_queue.claim_batch(10)
        await _enqueue(sync_queue, "sample-a")

        assert await sync_queue.claim_batch(10) == []

    @pytest.mark.asyncio
    async def test_stuck_sample_backlog_does_not_starve_other_samples(
        self, sync_queue: SyncQueue
    ) -> None:
        await _enqueue(sync_queue, "sample-a")
        await sync_queue.claim_batch(1)
        for _ in range(10):
            await _enqueue(sync_queue, "sample-a")
        other = await _enqueue(sync_queue, "sample-b")

        claimed = await sync_queue.claim_batch(2)

        assert [i.sample_id for i in claimed] == ["sample-b"]
        assert claimed[0].id == other.id

    @pytest.mark.asyncio
    async def test_backed_off_sample_backlog_does_not_starve_other_samples(
        self, fake_store: Any
    ) -> None:
        queue = SyncQueue(fake_store, max_attempts=3, retry_base_seconds=60.0)
        await _enqueue(queue, "sample-a")
        [head] = await queue.claim_batch(1)
        await queue.mark_failed_attempt(head, LimsTransportError("timeout"))
        for _ in range(10):
            await _enqueue(queue, "sample-a")
        await _enqueue(queue, "sample-b")
        await _enqueue(queue, "sample-c")

        claimed = await queue.claim_batch(1)

        assert [i.sample_id for i in claimed] == ["sample-b"]

    @pytest.mark.asyncio
    async def test_backoff_delays_item_and_its_followers(
        self, fake_store: Any
    ) -> None:
        queue = SyncQueue(fake_store, max_attempts=3, retry_base_seconds=60.0)
        item = await _enqueue(queue, "sample-a")
        await _enqueue(queue, "sample-a")
        [claimed] = await queue.claim_batch(10)
        await queue.mark_failed_attempt(claimed, LimsTransportError("timeout"))

        assert await queue.claim_batch(10) == []

        later = datetime.now(UTC) + timedelta(seconds=61)
        [retried] = await queue.claim_batch(10, now=later)
        assert retried.id == item.id
        assert retried.attempts == 2

    @pytest.mark.asyncio
    async def test_respects_batch_size(self, sync_queue: SyncQueue) -> None:
        for n in range(5):
            await _enqueue(sync_queue, f"sample-{n}")

        assert len(await sync_queue.claim_batch(2)) == 2

    @pytest.mark.asyncio
    async def test_inbound_items_without_local_id_are_keyed_by_external_id(
        self, sync_queue: SyncQueue
    ) -> None:
        await _enqueue(
            sync_queue, "", direction=SyncDirection.TO_LOCAL, external_id="bfi_1"
        )
        await _enqueue(
            sync_queue, "", direction=SyncDirection.TO_LOCAL, external_id="bfi_1"
        )
        await _enqueue(
            sync_queue, "", direction=SyncDirection.TO_LOCAL, external_id="bfi_2"
        )

        claimed = await sync_queue.claim_batch(10)

        assert [i.external_id for i in claimed] == ["bfi_1", "bfi_2"]


class TestFailures:
    """Tests for retry bounds and terminal failure."""

    @pytest.mark.asyncio
    async def test_retryable_failure_returns_to_pending(self, sync_queue: SyncQueue) -> None:
        await _enqueue(sync_queue, "sample-a")
        [item] = await sync_queue.claim_batch(10)

        terminal = await sync_queue.mark_failed_attempt(item, LimsTransportError("502"))

        assert terminal is False
        assert item.status == QueueItemStatus.PENDING
        assert item.next_attempt_at is not None
        assert item.last_error == "502"

    @pytest.mark.asyncio
    async def test_item_fails_after_max_attempts(
        self, sync_queue: SyncQueue, fake_store: Any
    ) -> None:
        queued = await _enqueue(sync_queue, "sample-a")
        outcomes = []

        for _ in range(5):
            claimed = await sync_queue.claim_batch(10)
            if not claimed:
                break
            outcomes.append(
                await sync_queue.mark_failed_attempt(claimed[0], LimsTransportError("down"))
            )

        assert outcomes == [False, False, True]
        record = fake_store.queue[queued.id]
        assert record["status"] == "failed"
        assert record["attempts"] == 3
        assert await sync_queue.claim_batch(10) == []

    @pytest.mark.asyncio
    async def test_non_retryable_failure_is_terminal_immediately(
        self, sync_queue: SyncQueue
    ) -> None:
        await _enqueue(sync_queue, "sample-a")
        [item] = await sync_queue.claim_batch(10)

        terminal = await sync_queue.mark_failed_attempt(
            item, LimsValidationError("bad field", status_code=400)
        )

        assert terminal is True
        assert item.status == QueueItemStatus.FAILED

    @pytest.mark.asyncio
    async def test_completed_items_are_never_picked_up_again(self, sync_queue: SyncQueue) -> None:
        await _enqueue(sync_queue, "sample-a")
        [item] = await sync_queue.claim_batch(10)
        await sync_queue.mark_completed(item)

        assert item.completed_at is not None
        assert await sync_queue.claim_batch(10) == []


class TestOperatorActions:
    """Tests for requeue, clear and counts."""

    @pytest.mark.asyncio
    async def test_requeue_resets_failed_items(self, sync_queue: SyncQueue) -> None:
        await _enqueue(sync_queue, "sample-a")
        [item] = await sync_queue.claim_batch(10)
        await sync_queue.mark_failed_attempt(item, LimsValidationError("bad", status_code=400))

        assert await sync_queue.requeue() == 1

        [retried] = await sync_queue.claim_batch(10)
        assert retried.attempts == 1

    @pytest.mark.asyncio
    async def test_requeue_can_release_stuck_processing_items(
        self, sync_queue: SyncQueue
    ) -> None:
        await _enqueue(sync_queue, "sample-a")
        await sync_queue.claim_batch(10)

        count = await sync_queue.requeue([QueueItemStatus.PROCESSING])

        assert count == 1
        assert len(await sync_queue.claim_batch(10)) == 1

    @pytest.mark.asyncio
    async def test_counts_and_clear(self, sync_queue: SyncQueue) -> None:
        await _enqueue(sync_queue, "sample-a")
        await _enqueue(sync_queue, "sample-b")
        [item, _] = await sync_queue.claim_batch(10)
        await sync_queue.mark_completed(item)

        counts = await sync_queue.counts()
        assert counts == {"pending": 0, "processing": 1, "completed": 1, "failed": 0}

        assert await sync_queue.clear([QueueItemStatus.COMPLETED]) == 1
        assert (await sync_queue.counts())["completed"] == 0

    @pytest.mark.asyncio
    async def test_list_items_filters_by_status(self, sync_queue: SyncQueue) -> None:
        await _enqueue(sync_queue, "sample-a", payload={"status": "received"})
        await _enqueue(sync_queue, "sample-b")
        await sync_queue.claim_batch(1)

        pending = await sync_queue.list_items(QueueItemStatus.PENDING)

        assert [i.sample_id for i in pending] == ["sample-b"]
