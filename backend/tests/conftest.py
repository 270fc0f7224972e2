"""Shared fixtures for sample sync tests."""

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from samplesync.core.cache import Cache
from samplesync.core.config import Settings
from samplesync.core.exceptions import ConflictError
from samplesync.core.resilience import lims_circuit_breaker, supabase_circuit_breaker
from samplesync.integrations.lims_client import LimsClient
from samplesync.integrations.lims_domain import (
    ExternalSample,
    QueueItemStatus,
    SyncedSample,
    SyncQueueItem,
)
from samplesync.integrations.sample_sync import SampleSyncService
from samplesync.integrations.sync_queue import SyncQueue


class FakeSampleStore:
    """In-memory stand-in for SampleStore.

    Rows are kept as plain records and converted on every read, like the
    Supabase tables, so callers never share objects with the store.
    """

    def __init__(self) -> None:
        self.samples: dict[str, dict[str, Any]] = {}
        self.queue: dict[str, dict[str, Any]] = {}
        self.metadata: dict[str, Any] | None = None
        self.metadata_writes: list[dict[str, Any]] = []
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    # Samples

    async def get_sample(self, sample_id: str) -> SyncedSample | None:
        record = self.samples.get(sample_id)
        return SyncedSample.from_record(record) if record else None

    async def _find_sample(self, column: str, value: str) -> SyncedSample | None:
        for record in self.samples.values():
            if value and record.get(column) == value:
                return SyncedSample.from_record(record)
        return None

    async def get_sample_by_registry_code(self, registry_code: str) -> SyncedSample | None:
        return await self._find_sample("registry_code", registry_code)

    async def get_sample_by_external_id(self, external_id: str) -> SyncedSample | None:
        return await self._find_sample("external_id", external_id)

    async def insert_sample(self, sample: SyncedSample) -> SyncedSample:
        if not sample.id:
            sample.id = self._new_id("sample")
        self.samples[sample.id] = sample.to_record()
        return sample

    async def save_sample(
        self, sample: SyncedSample, expected_version: int | None = None
    ) -> SyncedSample:
        stored = self.samples.get(sample.id)
        if stored is None or (
            expected_version is not None and stored["sync_version"] != expected_version
        ):
            raise ConflictError(f"Sample {sample.id} was modified or deleted concurrently")
        self.samples[sample.id] = sample.to_record()
        return sample

    async def delete_sample(self, sample_id: str) -> bool:
        return self.samples.pop(sample_id, None) is not None

    async def list_samples(
        self, limit: int = 100, offset: int = 0, status: str | None = None
    ) -> list[SyncedSample]:
        records = sorted(self.samples.values(), key=lambda r: r["registry_code"])
        if status:
            records = [r for r in records if r["status"] == status]
        return [SyncedSample.from_record(r) for r in records[offset : offset + limit]]

    async def count_samples(self) -> int:
        return len(self.samples)

    # Queue

    async def insert_queue_item(self, item: SyncQueueItem) -> SyncQueueItem:
        if not item.id:
            item.id = self._new_id("queue")
        if item.created_at is None:
            item.created_at = datetime.now(UTC)
        self.queue[item.id] = item.to_record()
        return item

    async def list_queue_items(
        self,
        statuses: list[QueueItemStatus] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[SyncQueueItem]:
        wanted = {s.value for s in statuses} if statuses else None
        records = [r for r in self.queue.values() if wanted is None or r["status"] in wanted]
        records.sort(key=lambda r: r["created_at"])
        return [SyncQueueItem.from_record(r) for r in records[offset : offset + limit]]

    async def claim_queue_item(self, item_id: str, changes: dict[str, Any]) -> bool:
        record = self.queue.get(item_id)
        if record is None or record["status"] != QueueItemStatus.PENDING.value:
            return False
        record.update(changes)
        return True

    async def update_queue_item(self, item_id: str, changes: dict[str, Any]) -> None:
        self.queue[item_id].update(changes)

    async def count_queue_items(self, status: QueueItemStatus) -> int:
        return sum(1 for r in self.queue.values() if r["status"] == status.value)

    async def delete_queue_items(self, statuses: list[QueueItemStatus]) -> int:
        wanted = {s.value for s in statuses}
        doomed = [k for k, r in self.queue.items() if r["status"] in wanted]
        for key in doomed:
            del self.queue[key]
        return len(doomed)

    async def reset_queue_items(
        self, statuses: list[QueueItemStatus], changes: dict[str, Any]
    ) -> int:
        wanted = {s.value for s in statuses}
        matched = [r for r in self.queue.values() if r["status"] in wanted]
        for record in matched:
            record.update(changes)
        return len(matched)

    # Metadata

    async def get_metadata(self) -> dict[str, Any] | None:
        return dict(self.metadata) if self.metadata is not None else None

    async def merge_metadata(self, changes: dict[str, Any]) -> None:
        self.metadata_writes.append(dict(changes))
        self.metadata = {**(self.metadata or {"id": "sync-metadata"}), **changes}

    # Helpers for assertions

    def queue_items(self, status: QueueItemStatus | None = None) -> list[SyncQueueItem]:
        return [
            SyncQueueItem.from_record(r)
            for r in self.queue.values()
            if status is None or r["status"] == status.value
        ]


def build_lims_fields(
    sample_id: str = "42",
    client_name: str = "Acme Labs",
    sample_type: str = "Soil",
    sample_format: str = "Tube",
    sample_date: str = "2024-03-01",
    status: str = "pending",
) -> dict[str, dict[str, str]]:
    """Build a LIMS ``fields`` object."""
    return {
        "Sample ID": {"value": sample_id},
        "Client Name": {"value": client_name},
        "Sample Type": {"value": sample_type},
        "Sample Format": {"value": sample_format},
        "Sample Date": {"value": sample_date},
        "Sample Status": {"value": status},
    }


def build_external(
    external_id: str = "bfi_001",
    registry_code: str = "EBM042",
    modified_at: datetime | None = None,
    **field_overrides: str,
) -> ExternalSample:
    """Build an ExternalSample as the LIMS client would return it."""
    return ExternalSample(
        id=external_id,
        registry_code=registry_code,
        name=registry_code,
        schema_id="ts_NJDS3UwU",
        fields=build_lims_fields(**field_overrides),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        modified_at=modified_at or datetime(2024, 1, 1, tzinfo=UTC),
    )


@pytest.fixture(autouse=True)
def reset_circuit_breakers() -> None:
    """Start every test with closed circuits."""
    lims_circuit_breaker.reset()
    supabase_circuit_breaker.reset()


@pytest.fixture
def test_settings() -> Settings:
    """Settings pointing at a fake LIMS."""
    return Settings(
        LIMS_API_URL="https://lims.example.com/api/v2",
        LIMS_API_KEY="sk_test",
        LIMS_FOLDER_ID="lib_samples",
        LIMS_TASK_MAX_ATTEMPTS=3,
        LIMS_TASK_BASE_DELAY_SECONDS=0.0,
    )


@pytest.fixture
def fake_store() -> FakeSampleStore:
    return FakeSampleStore()


@pytest.fixture
def mock_lims() -> MagicMock:
    """LimsClient double with every async operation mocked."""
    lims = MagicMock(spec=LimsClient)
    lims.fetch_by_id = AsyncMock(return_value=None)
    lims.fetch_by_registry_code = AsyncMock(return_value=None)
    lims.create = AsyncMock()
    lims.update = AsyncMock()
    lims.delete = AsyncMock(return_value=True)
    lims.bulk_create = AsyncMock(return_value="task_create")
    lims.bulk_update = AsyncMock(return_value="task_update")
    lims.wait_for_task = AsyncMock()
    return lims


@pytest.fixture
def sync_queue(fake_store: FakeSampleStore) -> SyncQueue:
    return SyncQueue(fake_store, max_attempts=3, retry_base_seconds=0.0)  # type: ignore[arg-type]


@pytest.fixture
def service(
    fake_store: FakeSampleStore,
    mock_lims: MagicMock,
    sync_queue: SyncQueue,
    test_settings: Settings,
) -> SampleSyncService:
    """SampleSyncService wired to the in-memory store and mocked LIMS."""
    return SampleSyncService(
        store=fake_store,  # type: ignore[arg-type]
        lims=mock_lims,
        queue=sync_queue,
        cache=Cache("test_sync_status", default_ttl=30),
        config=test_settings,
    )


@pytest.fixture
def lims_fields() -> Any:
    """Factory for LIMS ``fields`` objects."""
    return build_lims_fields


@pytest.fixture
def make_external() -> Any:
    """Factory for ExternalSample instances."""
    return build_external
