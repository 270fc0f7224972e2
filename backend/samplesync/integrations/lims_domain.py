"""Domain models for two-way LIMS sample synchronization.

This module provides the domain models shared by the field mapper, the LIMS
client, the conflict resolver, the sync queue and the sample sync service.

Key models:
- SyncedSample: Canonical local sample record with sync bookkeeping
- ExternalSample: A LIMS custom entity as returned by the REST API
- SyncQueueItem: Durable unit of pending sync work
- SyncMetadata: Singleton process-wide sync state
- ConflictResult: Transient conflict detection outcome
- TaskStatus: State of a LIMS long-running bulk task

Enums:
- SampleStatus: Lab workflow status of a sample
- SampleOrigin: Whether a sample was created locally or in the LIMS
- SyncOperation: create, update or delete
- SyncDirection: to-external (outbound) or to-local (inbound)
- QueueItemStatus: pending, processing, completed, failed
- TaskState: PENDING, RUNNING, SUCCEEDED, FAILED
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Business fields compared by the conflict resolver and editable through the API
BUSINESS_FIELDS: tuple[str, ...] = (
    "client_name",
    "sample_type",
    "sample_format",
    "sample_date",
    "status",
)

METADATA_ID = "sync-metadata"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp as stored in Supabase or sent by the LIMS.

    Empty strings and None map to None. A trailing ``Z`` is accepted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a timestamp for storage."""
    return value.isoformat() if value else None


class SampleStatus(str, Enum):
    """Lab workflow status of a sample."""

    PENDING = "pending"
    COLLECTED = "collected"
    RECEIVED = "received"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    ERROR = "error"


class SampleOrigin(str, Enum):
    """Where a sample record was first created."""

    WEBAPP = "webapp"
    LIMS = "lims"


class SyncOperation(str, Enum):
    """Kind of change carried by a queue item."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncDirection(str, Enum):
    """Direction of a queued sync operation."""

    TO_EXTERNAL = "to-external"  # local → LIMS
    TO_LOCAL = "to-local"  # LIMS → local


class QueueItemStatus(str, Enum):
    """Lifecycle state of a sync queue item."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"  # terminal
    FAILED = "failed"  # terminal


class TaskState(str, Enum):
    """State of a LIMS long-running task."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass
class SyncedSample:
    """Canonical local sample record.

    ``external_id`` is empty until the first successful outbound create and
    never changes afterwards. ``sync_version`` increases on every accepted
    update, local or external.
    """

    sample_id: str
    registry_code: str
    client_name: str
    sample_type: str
    sample_date: str
    status: SampleStatus = SampleStatus.PENDING
    sample_format: str = ""
    id: str = ""
    external_id: str = ""
    last_modified: datetime | None = None
    last_synced_to_external: datetime | None = None
    last_synced_from_external: datetime | None = None
    sync_version: int = 1
    origin: SampleOrigin = SampleOrigin.WEBAPP
    created_at: datetime | None = None
    created_by: str | None = None
    order_id: str | None = None

    @property
    def is_locally_dirty(self) -> bool:
        """True when the local copy holds a change not yet pushed to the LIMS."""
        if self.last_synced_to_external is None:
            return True
        if self.last_synced_from_external is None:
            return False
        return self.last_synced_to_external < self.last_synced_from_external

    def business_fields(self) -> dict[str, Any]:
        """Return the business field snapshot used for comparison."""
        return {
            "client_name": self.client_name,
            "sample_type": self.sample_type,
            "sample_format": self.sample_format,
            "sample_date": self.sample_date,
            "status": self.status.value,
        }

    def to_record(self) -> dict[str, Any]:
        """Convert to a Supabase row."""
        record: dict[str, Any] = {
            "sample_id": self.sample_id,
            "registry_code": self.registry_code,
            "external_id": self.external_id,
            "client_name": self.client_name,
            "sample_type": self.sample_type,
            "sample_format": self.sample_format,
            "sample_date": self.sample_date,
            "status": self.status.value,
            "last_modified": format_timestamp(self.last_modified),
            "last_synced_to_external": format_timestamp(self.last_synced_to_external),
            "last_synced_from_external": format_timestamp(self.last_synced_from_external),
            "sync_version": self.sync_version,
            "origin": self.origin.value,
            "created_at": format_timestamp(self.created_at),
            "created_by": self.created_by,
            "order_id": self.order_id,
        }
        if self.id:
            record["id"] = self.id
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "SyncedSample":
        """Build from a Supabase row."""
        return cls(
            id=record["id"],
            sample_id=record.get("sample_id") or "",
            registry_code=record.get("registry_code") or "",
            external_id=record.get("external_id") or "",
            client_name=record.get("client_name") or "",
            sample_type=record.get("sample_type") or "",
            sample_format=record.get("sample_format") or "",
            sample_date=record.get("sample_date") or "",
            status=SampleStatus(record.get("status") or SampleStatus.PENDING.value),
            last_modified=parse_timestamp(record.get("last_modified")),
            last_synced_to_external=parse_timestamp(record.get("last_synced_to_external")),
            last_synced_from_external=parse_timestamp(record.get("last_synced_from_external")),
            sync_version=int(record.get("sync_version") or 1),
            origin=SampleOrigin(record.get("origin") or SampleOrigin.WEBAPP.value),
            created_at=parse_timestamp(record.get("created_at")),
            created_by=record.get("created_by"),
            order_id=record.get("order_id"),
        )


@dataclass
class ExternalSample:
    """A LIMS custom entity."""

    id: str
    registry_code: str
    name: str = ""
    schema_id: str = ""
    folder_id: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    modified_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ExternalSample":
        """Build from a LIMS ``customEntity`` JSON object."""
        return cls(
            id=data["id"],
            registry_code=data.get("entityRegistryId") or "",
            name=data.get("name") or "",
            schema_id=data.get("schemaId") or "",
            folder_id=data.get("folderId"),
            fields=data.get("fields") or {},
            created_at=parse_timestamp(data.get("createdAt")),
            modified_at=parse_timestamp(data.get("modifiedAt")),
        )


@dataclass
class SyncQueueItem:
    """Durable unit of pending sync work."""

    sample_id: str  # local id
    operation: SyncOperation
    direction: SyncDirection
    id: str = ""
    external_id: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 3
    status: QueueItemStatus = QueueItemStatus.PENDING
    last_error: str | None = None
    created_at: datetime | None = None
    last_attempt_at: datetime | None = None
    next_attempt_at: datetime | None = None
    completed_at: datetime | None = None

    def to_record(self) -> dict[str, Any]:
        """Convert to a Supabase row."""
        record: dict[str, Any] = {
            "sample_id": self.sample_id,
            "external_id": self.external_id,
            "operation": self.operation.value,
            "direction": self.direction.value,
            "payload": self.payload,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "status": self.status.value,
            "last_error": self.last_error,
            "created_at": format_timestamp(self.created_at),
            "last_attempt_at": format_timestamp(self.last_attempt_at),
            "next_attempt_at": format_timestamp(self.next_attempt_at),
            "completed_at": format_timestamp(self.completed_at),
        }
        if self.id:
            record["id"] = self.id
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "SyncQueueItem":
        """Build from a Supabase row."""
        return cls(
            id=record["id"],
            sample_id=record.get("sample_id") or "",
            external_id=record.get("external_id") or "",
            operation=SyncOperation(record["operation"]),
            direction=SyncDirection(record["direction"]),
            payload=record.get("payload") or {},
            attempts=int(record.get("attempts") or 0),
            max_attempts=int(record.get("max_attempts") or 3),
            status=QueueItemStatus(record.get("status") or QueueItemStatus.PENDING.value),
            last_error=record.get("last_error"),
            created_at=parse_timestamp(record.get("created_at")),
            last_attempt_at=parse_timestamp(record.get("last_attempt_at")),
            next_attempt_at=parse_timestamp(record.get("next_attempt_at")),
            completed_at=parse_timestamp(record.get("completed_at")),
        )


@dataclass
class ImportProgress:
    """Counters for an in-flight or finished bulk import."""

    total: int = 0
    processed: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "processed": self.processed, "errors": self.errors}


@dataclass
class SyncErrorRecord:
    """A terminal sync failure kept in metadata for operator review."""

    timestamp: datetime
    sample_id: str
    operation: str
    error: str
    external_id: str = ""
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "sample_id": self.sample_id,
            "external_id": self.external_id,
            "operation": self.operation,
            "error": self.error,
            "retryable": self.retryable,
        }


@dataclass
class SyncMetadata:
    """Singleton process-wide sync state. Merged in place, never deleted."""

    last_webhook_received: datetime | None = None
    last_polled_at: datetime | None = None
    last_successful_sync: datetime | None = None
    last_import_completed: datetime | None = None
    import_in_progress: bool = False
    import_progress: ImportProgress = field(default_factory=ImportProgress)
    sync_errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: dict[str, Any] | None) -> "SyncMetadata":
        """Build from the ``sync_metadata`` row, or defaults when absent."""
        if not record:
            return cls()
        progress = record.get("import_progress") or {}
        return cls(
            last_webhook_received=parse_timestamp(record.get("last_webhook_received")),
            last_polled_at=parse_timestamp(record.get("last_polled_at")),
            last_successful_sync=parse_timestamp(record.get("last_successful_sync")),
            last_import_completed=parse_timestamp(record.get("last_import_completed")),
            import_in_progress=bool(record.get("import_in_progress")),
            import_progress=ImportProgress(
                total=int(progress.get("total", 0)),
                processed=int(progress.get("processed", 0)),
                errors=int(progress.get("errors", 0)),
            ),
            sync_errors=list(record.get("sync_errors") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_webhook_received": format_timestamp(self.last_webhook_received),
            "last_polled_at": format_timestamp(self.last_polled_at),
            "last_successful_sync": format_timestamp(self.last_successful_sync),
            "last_import_completed": format_timestamp(self.last_import_completed),
            "import_in_progress": self.import_in_progress,
            "import_progress": self.import_progress.to_dict(),
            "sync_errors": self.sync_errors,
        }


@dataclass
class ConflictResult:
    """Outcome of comparing a local sample with its LIMS counterpart.

    Transient: computed, acted on and logged, never stored.
    """

    has_conflict: bool
    local_fields: dict[str, Any]
    external_fields: dict[str, Any]
    local_modified_at: datetime | None
    external_modified_at: datetime | None
    differing_fields: list[str] = field(default_factory=list)


@dataclass
class TaskStatus:
    """State of a LIMS long-running task."""

    task_id: str
    state: TaskState
    data: dict[str, Any] = field(default_factory=dict)
    error: Any = None

    @property
    def is_finished(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED)

    @property
    def entities(self) -> list[dict[str, Any]]:
        """Entities reported by a succeeded bulk task."""
        return list(self.data.get("customEntities") or [])


@dataclass
class SyncStatusSummary:
    """Read-only sync health snapshot for the admin console."""

    total_samples: int
    pending_sync: int
    failed_sync: int
    last_sync: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_samples": self.total_samples,
            "pending_sync": self.pending_sync,
            "failed_sync": self.failed_sync,
            "last_sync": format_timestamp(self.last_sync),
        }
