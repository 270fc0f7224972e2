"""Two-way sample synchronization between the local store and the LIMS.

SampleSyncService is the only writer of sync bookkeeping on SyncedSample
(external id, sync timestamps, sync_version). Business fields reach it from
the admin API (outbound) or from the LIMS (inbound).

- create_sample pushes to the LIMS synchronously so the caller learns the
  external id immediately; failures surface to the caller.
- update_sample and delete_sample write locally and queue the outbound work.
- process_queue drains queued work in both directions.
- import_all walks the whole LIMS listing and upserts by registry code.
- handle_inbound_notification applies LIMS change notifications.

Concurrent writers are tolerated through optimistic ``sync_version`` checks
on every save rather than locks.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from samplesync.core.cache import Cache
from samplesync.core.config import Settings, settings
from samplesync.core.exceptions import (
    ConflictError,
    NotFoundError,
    TaskTimeoutError,
    ValidationError,
    is_retryable,
)
from samplesync.db.sample_store import SampleStore, get_sample_store
from samplesync.integrations.conflict_resolver import detect_conflict, should_apply_external
from samplesync.integrations.field_mapper import (
    from_external_fields,
    parse_status,
    to_external_fields,
)
from samplesync.integrations.lims_client import LimsClient, get_lims_client
from samplesync.integrations.lims_domain import (
    BUSINESS_FIELDS,
    ExternalSample,
    ImportProgress,
    QueueItemStatus,
    SampleOrigin,
    SampleStatus,
    SyncDirection,
    SyncedSample,
    SyncErrorRecord,
    SyncMetadata,
    SyncOperation,
    SyncQueueItem,
    SyncStatusSummary,
    format_timestamp,
)
from samplesync.integrations.sync_queue import SyncQueue

logger = logging.getLogger(__name__)

# Import progress is written to metadata after every this many records
IMPORT_PROGRESS_INTERVAL = 10

_REQUIRED_CREATE_FIELDS = ("sample_id", "client_name", "sample_type", "sample_date")
_EDITABLE_FIELDS = frozenset(BUSINESS_FIELDS) | {"order_id"}
_CREATE_FIELDS = _EDITABLE_FIELDS | {"sample_id"}

_STATUS_CACHE_KEY = "sync_status"


class InboundEvent:
    """LIMS notification event types."""

    CREATED = "entity.created"
    UPDATED = "entity.updated"
    DELETED = "entity.deleted"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SampleSyncService:
    """Orchestrates the field mapper, LIMS client, conflict resolver and sync queue."""

    def __init__(
        self,
        store: SampleStore,
        lims: LimsClient,
        queue: SyncQueue,
        cache: Cache,
        config: Settings | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Repository for samples, queue rows and metadata.
            lims: LIMS REST client.
            queue: Sync queue.
            cache: Cache handle for derived status; invalidated on every write.
            config: Settings for prefix, batch size and error history.
        """
        config = config or settings
        self._store = store
        self._lims = lims
        self._queue = queue
        self._cache = cache
        self.id_prefix = config.LIMS_ID_PREFIX
        self.id_width = config.LIMS_ID_WIDTH
        self.batch_size = config.SYNC_QUEUE_BATCH_SIZE
        self.error_history_limit = config.SYNC_ERROR_HISTORY_LIMIT

    @property
    def queue(self) -> SyncQueue:
        return self._queue

    # =========================
    # Identity and validation
    # =========================

    def registry_code_for(self, sample_id: str) -> str:
        """Derive the LIMS registry code for a numeric sample id ("42" -> "EBM042").

        Raises:
            ValidationError: If the sample id is not a non-negative integer.
        """
        raw = str(sample_id).strip()
        if not raw.isdigit():
            raise ValidationError("Sample ID must be numeric", field="sample_id")
        return f"{self.id_prefix}{str(int(raw)).zfill(self.id_width)}"

    def _sample_id_from_code(self, registry_code: str) -> str:
        digits = registry_code[len(self.id_prefix):]
        return str(int(digits)) if digits.isdigit() else digits

    def _validate_fields(self, fields: dict[str, Any], creating: bool) -> dict[str, Any]:
        allowed = _CREATE_FIELDS if creating else _EDITABLE_FIELDS
        unknown = sorted(set(fields) - allowed)
        if unknown:
            raise ValidationError(
                f"Unsupported sample fields: {', '.join(unknown)}",
                details={"fields": unknown},
            )

        clean: dict[str, Any] = {}
        for name, value in fields.items():
            if name == "status":
                status = parse_status(value)
                if status is None:
                    raise ValidationError(f"Invalid sample status: {value}", field="status")
                clean[name] = status
            elif name == "order_id":
                clean[name] = value or None
            else:
                clean[name] = "" if value is None else str(value).strip()

        required = _REQUIRED_CREATE_FIELDS if creating else ()
        for name in required:
            if not clean.get(name):
                raise ValidationError(f"{name} is required", field=name)
        for name in ("client_name", "sample_type", "sample_date"):
            if name in clean and not clean[name]:
                raise ValidationError(f"{name} must not be empty", field=name)
        return clean

    @staticmethod
    def _payload(fields: dict[str, Any]) -> dict[str, Any]:
        return {
            k: v.value if isinstance(v, SampleStatus) else v for k, v in fields.items()
        }

    async def _require_sample(self, local_id: str) -> SyncedSample:
        sample = await self._store.get_sample(local_id)
        if sample is None:
            raise NotFoundError("Sample", local_id)
        return sample

    # ======
    # Reads
    # ======

    async def get_sample(self, local_id: str) -> SyncedSample:
        """Fetch a sample by local id.

        Raises:
            NotFoundError: If the sample does not exist.
        """
        return await self._require_sample(local_id)

    async def get_sample_by_registry_code(self, registry_code: str) -> SyncedSample | None:
        return await self._store.get_sample_by_registry_code(registry_code)

    async def list_samples(
        self, limit: int = 100, offset: int = 0, status: str | None = None
    ) -> list[SyncedSample]:
        return await self._store.list_samples(limit=limit, offset=offset, status=status)

    # ===============
    # Local mutation
    # ===============

    async def create_sample(self, fields: dict[str, Any], created_by: str | None = None) -> str:
        """Create a sample locally and in the LIMS.

        The outbound create runs synchronously; if it fails the error is
        raised and the local record stays without an external id.

        Args:
            fields: sample_id, client_name, sample_type, sample_date and
                optionally sample_format, status and order_id.
            created_by: Id of the user creating the sample.

        Returns:
            The new local sample id.

        Raises:
            ValidationError: Missing or malformed fields.
            ConflictError: A sample with the same registry code exists.
        """
        clean = self._validate_fields(fields, creating=True)
        registry_code = self.registry_code_for(clean["sample_id"])
        if await self._store.get_sample_by_registry_code(registry_code):
            raise ConflictError(f"Sample {registry_code} already exists", resource="sample")

        now = _utcnow()
        sample = SyncedSample(
            sample_id=str(int(clean["sample_id"])),
            registry_code=registry_code,
            client_name=clean["client_name"],
            sample_type=clean["sample_type"],
            sample_format=clean.get("sample_format", ""),
            sample_date=clean["sample_date"],
            status=clean.get("status", SampleStatus.PENDING),
            order_id=clean.get("order_id"),
            last_modified=now,
            created_at=now,
            created_by=created_by,
            origin=SampleOrigin.WEBAPP,
        )
        sample = await self._store.insert_sample(sample)
        self._cache.invalidate()
        logger.info(
            "Sample created locally",
            extra={"sample_id": sample.id, "registry_code": registry_code},
        )

        await self.sync_to_external(sample.id)
        return sample.id

    async def update_sample(self, local_id: str, partial: dict[str, Any]) -> SyncedSample:
        """Apply a local edit and queue its outbound propagation.

        Raises:
            NotFoundError: If the sample does not exist.
            ValidationError: Unsupported or malformed fields.
            ConflictError: The sample changed concurrently.
        """
        clean = self._validate_fields(partial, creating=False)
        sample = await self._require_sample(local_id)
        expected_version = sample.sync_version

        for name, value in clean.items():
            setattr(sample, name, value)
        sample.last_modified = _utcnow()
        sample.last_synced_to_external = None
        sample.sync_version += 1
        await self._store.save_sample(sample, expected_version=expected_version)
        self._cache.invalidate()

        await self._queue.enqueue(
            sample.id,
            SyncOperation.UPDATE,
            SyncDirection.TO_EXTERNAL,
            external_id=sample.external_id,
            payload=self._payload(clean),
        )
        return sample

    async def delete_sample(self, local_id: str) -> None:
        """Delete a sample locally, queueing the LIMS delete if it was ever pushed.

        Raises:
            NotFoundError: If the sample does not exist.
        """
        sample = await self._require_sample(local_id)
        if sample.external_id:
            await self._queue.enqueue(
                sample.id,
                SyncOperation.DELETE,
                SyncDirection.TO_EXTERNAL,
                external_id=sample.external_id,
                payload={"registry_code": sample.registry_code},
            )
        await self._store.delete_sample(sample.id)
        self._cache.invalidate()
        logger.info(
            "Sample deleted locally",
            extra={"sample_id": sample.id, "registry_code": sample.registry_code},
        )

    # =========
    # Outbound
    # =========

    async def sync_to_external(self, local_id: str) -> SyncedSample:
        """Push a sample's current fields to the LIMS.

        Without an external id the sample is created remotely, unless an
        entity with the same registry code already exists (left by an
        earlier attempt that failed after the remote create), in which case
        that entity is adopted and updated.

        Returns:
            The sample with refreshed bookkeeping.

        Raises:
            NotFoundError: The sample does not exist locally, or its LIMS
                entity was removed.
            LimsTransportError, LimsValidationError: From the LIMS call.
            ConflictError: The sample changed while it was being pushed.
        """
        sample = await self._require_sample(local_id)
        expected_version = sample.sync_version
        fields = to_external_fields(sample)

        if sample.external_id:
            await self._lims.update(sample.external_id, fields)
        else:
            existing = await self._lims.fetch_by_registry_code(sample.registry_code)
            if existing is not None:
                logger.info(
                    "Adopting existing LIMS entity",
                    extra={"sample_id": sample.id, "external_id": existing.id},
                )
                await self._lims.update(existing.id, fields)
                external_id = existing.id
            else:
                created = await self._lims.create(
                    sample.registry_code, fields, registry_code=sample.registry_code
                )
                external_id = created.id
                if created.registry_code and created.registry_code != sample.registry_code:
                    logger.warning(
                        "LIMS assigned a different registry code",
                        extra={
                            "sample_id": sample.id,
                            "expected": sample.registry_code,
                            "assigned": created.registry_code,
                        },
                    )
            sample.external_id = external_id

        return await self._mark_pushed(sample, expected_version)

    async def _mark_pushed(self, sample: SyncedSample, expected_version: int) -> SyncedSample:
        sample.last_synced_to_external = _utcnow()
        sample.sync_version += 1
        await self._store.save_sample(sample, expected_version=expected_version)
        self._cache.invalidate()
        logger.info(
            "Sample pushed to LIMS",
            extra={
                "sample_id": sample.id,
                "external_id": sample.external_id,
                "sync_version": sample.sync_version,
            },
        )
        return sample

    async def sync_many_to_external(self, local_ids: list[str]) -> dict[str, int]:
        """Push many samples with LIMS bulk tasks.

        Samples without an external id go through one bulk-create task, the
        rest through one bulk-update task. If a task times out, each of its
        samples is queued for an individual outbound sync instead of polling
        the same task again.

        Returns:
            Counts of ``created``, ``updated`` and ``queued`` samples.

        Raises:
            TaskFailedError: A bulk task reported failure.
        """
        samples: list[SyncedSample] = []
        for local_id in local_ids:
            sample = await self._store.get_sample(local_id)
            if sample is None:
                logger.warning("Skipping missing sample in bulk push", extra={"sample_id": local_id})
                continue
            samples.append(sample)

        to_create = [s for s in samples if not s.external_id]
        to_update = [s for s in samples if s.external_id]
        result = {"created": 0, "updated": 0, "queued": 0}

        if to_create:
            task_id = await self._lims.bulk_create(
                [
                    {
                        "name": s.registry_code,
                        "fields": to_external_fields(s),
                        "registry_code": s.registry_code,
                    }
                    for s in to_create
                ]
            )
            entities = await self._finish_bulk_task(task_id, to_create, result)
            by_code = {e.get("entityRegistryId"): e.get("id") for e in entities or []}
            for sample in to_create if entities is not None else []:
                external_id = by_code.get(sample.registry_code)
                if external_id is None:
                    await self._queue_outbound(sample)
                    result["queued"] += 1
                    continue
                sample.external_id = external_id
                if await self._mark_pushed_or_queue(sample):
                    result["created"] += 1
                else:
                    result["queued"] += 1

        if to_update:
            task_id = await self._lims.bulk_update(
                [{"id": s.external_id, "fields": to_external_fields(s)} for s in to_update]
            )
            entities = await self._finish_bulk_task(task_id, to_update, result)
            if entities is not None:
                for sample in to_update:
                    if await self._mark_pushed_or_queue(sample):
                        result["updated"] += 1
                    else:
                        result["queued"] += 1

        logger.info("Bulk push finished", extra=result)
        return result

    async def _finish_bulk_task(
        self, task_id: str, samples: list[SyncedSample], result: dict[str, int]
    ) -> list[dict[str, Any]] | None:
        """Wait for a bulk task. On timeout queue its samples and return None."""
        try:
            status = await self._lims.wait_for_task(task_id)
        except TaskTimeoutError:
            logger.warning(
                "Bulk task timed out, queueing samples individually",
                extra={"task_id": task_id, "count": len(samples)},
            )
            for sample in samples:
                await self._queue_outbound(sample)
            result["queued"] += len(samples)
            return None
        return status.entities

    async def _mark_pushed_or_queue(self, sample: SyncedSample) -> bool:
        try:
            await self._mark_pushed(sample, sample.sync_version)
        except ConflictError:
            await self._queue_outbound(sample)
            return False
        return True

    async def _queue_outbound(self, sample: SyncedSample) -> SyncQueueItem:
        return await self._queue.enqueue(
            sample.id,
            SyncOperation.UPDATE,
            SyncDirection.TO_EXTERNAL,
            external_id=sample.external_id,
        )

    @staticmethod
    def needs_push(sample: SyncedSample) -> bool:
        """True when a local write has not reached the LIMS yet.

        Records imported from the LIMS are never pushed, so a missing push
        stamp only counts for them once a local edit is newer than the
        last inbound sync.
        """
        if sample.last_synced_to_external is not None:
            return False
        if sample.origin == SampleOrigin.WEBAPP or sample.last_synced_from_external is None:
            return True
        return (
            sample.last_modified is not None
            and sample.last_modified > sample.last_synced_from_external
        )

    async def push_unsynced(self, limit: int = 500) -> dict[str, int]:
        """Bulk-push every local sample holding an unpushed change."""
        samples = await self._store.list_samples(limit=limit)
        dirty = [s.id for s in samples if self.needs_push(s)]
        if not dirty:
            return {"created": 0, "updated": 0, "queued": 0}
        return await self.sync_many_to_external(dirty)

    # ========
    # Inbound
    # ========

    async def sync_from_external(self, external_id: str) -> str | None:
        """Pull one LIMS entity into the local store.

        Returns:
            The local sample id, or None when there is nothing to sync (the
            entity is gone or is not a sample of this registry prefix).
        """
        external = await self._lims.fetch_by_id(external_id)
        if external is None:
            logger.info("LIMS entity not found, nothing to sync", extra={"external_id": external_id})
            return None
        if not external.registry_code.startswith(self.id_prefix):
            logger.info(
                "Ignoring LIMS entity outside sample prefix",
                extra={"external_id": external_id, "registry_code": external.registry_code},
            )
            return None
        return await self._apply_external(external)

    async def _apply_external(self, external: ExternalSample) -> str:
        parsed = from_external_fields(external.fields)
        now = _utcnow()
        local = await self._store.get_sample_by_registry_code(external.registry_code)

        if local is None:
            sample = SyncedSample(
                sample_id=parsed["sample_id"] or self._sample_id_from_code(external.registry_code),
                registry_code=external.registry_code,
                external_id=external.id,
                client_name=parsed["client_name"],
                sample_type=parsed["sample_type"],
                sample_format=parsed["sample_format"],
                sample_date=parsed["sample_date"],
                status=parsed["status"],
                last_modified=external.modified_at or now,
                last_synced_from_external=now,
                sync_version=1,
                origin=SampleOrigin.LIMS,
                created_at=external.created_at or now,
            )
            sample = await self._store.insert_sample(sample)
            self._cache.invalidate()
            logger.info(
                "Sample imported from LIMS",
                extra={"sample_id": sample.id, "registry_code": sample.registry_code},
            )
            return sample.id

        expected_version = local.sync_version
        result = detect_conflict(local, external)
        if should_apply_external(local, result):
            for name in BUSINESS_FIELDS:
                setattr(local, name, parsed[name])
            local.last_modified = external.modified_at or now
            local.sync_version += 1

        if not local.external_id:
            local.external_id = external.id
        elif local.external_id != external.id:
            logger.warning(
                "LIMS entity id differs from stored external id",
                extra={
                    "sample_id": local.id,
                    "stored": local.external_id,
                    "received": external.id,
                },
            )
        local.last_synced_from_external = now
        await self._store.save_sample(local, expected_version=expected_version)
        self._cache.invalidate()
        return local.id

    async def _delete_local_for_external(
        self, external_id: str, registry_code: str | None = None
    ) -> bool:
        local = None
        if registry_code:
            local = await self._store.get_sample_by_registry_code(registry_code)
        if local is None and external_id:
            local = await self._store.get_sample_by_external_id(external_id)
        if local is None:
            return False
        await self._store.delete_sample(local.id)
        self._cache.invalidate()
        logger.info(
            "Sample removed after LIMS delete",
            extra={"sample_id": local.id, "registry_code": local.registry_code},
        )
        return True

    async def handle_inbound_notification(
        self,
        event_type: str,
        external_id: str,
        registry_code: str | None = None,
        modified_at: str | None = None,
    ) -> str:
        """Apply a LIMS change notification.

        The notification receipt time is recorded before anything else so
        that gaps stay visible even when the sync itself fails.

        Returns:
            One of ``synced``, ``skipped``, ``queued``, ``deleted``,
            ``not_found`` or ``ignored``.
        """
        await self._store.merge_metadata(
            {"last_webhook_received": format_timestamp(_utcnow())}
        )

        if event_type in (InboundEvent.CREATED, InboundEvent.UPDATED):
            try:
                local_id = await self.sync_from_external(external_id)
            except Exception as e:
                if not is_retryable(e):
                    raise
                logger.warning(
                    "Inbound sync failed, queueing for retry",
                    extra={"external_id": external_id, "error": str(e)},
                )
                local = await self._store.get_sample_by_external_id(external_id)
                await self._queue.enqueue(
                    local.id if local else "",
                    SyncOperation.UPDATE if local else SyncOperation.CREATE,
                    SyncDirection.TO_LOCAL,
                    external_id=external_id,
                    payload={"registry_code": registry_code, "modified_at": modified_at},
                )
                return "queued"
            return "synced" if local_id else "skipped"

        if event_type == InboundEvent.DELETED:
            removed = await self._delete_local_for_external(external_id, registry_code)
            return "deleted" if removed else "not_found"

        logger.info("Ignoring LIMS event", extra={"event_type": event_type})
        return "ignored"

    # ======
    # Queue
    # ======

    async def _dispatch(self, item: SyncQueueItem) -> None:
        if item.direction == SyncDirection.TO_EXTERNAL:
            if item.operation == SyncOperation.DELETE:
                if item.external_id:
                    await self._lims.delete(item.external_id)
            else:
                await self.sync_to_external(item.sample_id)
        elif item.operation == SyncOperation.DELETE:
            await self._delete_local_for_external(
                item.external_id, item.payload.get("registry_code")
            )
        else:
            await self.sync_from_external(item.external_id)

    async def process_queue(self, batch_size: int | None = None) -> dict[str, Any]:
        """Drain up to ``batch_size`` due queue items, oldest first.

        Per-item failures never abort the batch: they are counted against
        the item's attempt budget, and only exhausted or non-retryable
        failures are reported in ``errors``. A NotFoundError means there is
        nothing left to sync and completes the item.

        Returns:
            ``{"processed": int, "failed": int, "errors": list[str]}``

        Raises:
            DatabaseError: The queue itself could not be read or updated.
        """
        items = await self._queue.claim_batch(batch_size or self.batch_size)
        processed = 0
        failed = 0
        errors: list[str] = []

        for item in items:
            try:
                await self._dispatch(item)
            except NotFoundError as e:
                logger.info(
                    "Nothing to sync for queue item",
                    extra={"queue_id": item.id, "reason": e.message},
                )
            except Exception as e:
                if await self._queue.mark_failed_attempt(item, e):
                    failed += 1
                    errors.append(f"Sample {item.sample_id or item.external_id}: {e}")
                    await self._record_sync_error(item, e)
                continue
            await self._queue.mark_completed(item)
            processed += 1

        changes: dict[str, Any] = {"last_polled_at": format_timestamp(_utcnow())}
        if processed:
            changes["last_successful_sync"] = changes["last_polled_at"]
        await self._store.merge_metadata(changes)
        self._cache.invalidate()

        if items:
            logger.info(
                "Sync queue batch processed",
                extra={"claimed": len(items), "processed": processed, "failed": failed},
            )
        return {"processed": processed, "failed": failed, "errors": errors}

    async def _record_sync_error(self, item: SyncQueueItem, error: Exception) -> None:
        metadata = SyncMetadata.from_record(await self._store.get_metadata())
        record = SyncErrorRecord(
            timestamp=_utcnow(),
            sample_id=item.sample_id,
            external_id=item.external_id,
            operation=f"{item.direction.value}:{item.operation.value}",
            error=str(error),
            retryable=is_retryable(error),
        )
        history = [*metadata.sync_errors, record.to_dict()][-self.error_history_limit:]
        await self._store.merge_metadata({"sync_errors": history})

    async def requeue_failed(self, include_processing: bool = False) -> int:
        """Reset failed (and optionally stuck processing) items to pending."""
        statuses = [QueueItemStatus.FAILED]
        if include_processing:
            statuses.append(QueueItemStatus.PROCESSING)
        count = await self._queue.requeue(statuses)
        self._cache.invalidate()
        return count

    async def clear_queue(self) -> int:
        """Delete pending and failed queue items."""
        count = await self._queue.clear()
        self._cache.invalidate()
        return count

    # =======
    # Import
    # =======

    async def _write_progress(self, progress: ImportProgress, **extra: Any) -> None:
        await self._store.merge_metadata({"import_progress": progress.to_dict(), **extra})

    async def import_all(self) -> dict[str, Any]:
        """Import every prefixed LIMS entity, upserting by registry code.

        Progress is merged into sync metadata every IMPORT_PROGRESS_INTERVAL
        records. Per-record failures are collected and the import continues.

        Returns:
            ``{"total": int, "imported": int, "errors": list[str]}``

        Raises:
            LimsTransportError: The listing itself failed; the in-progress
                flag is cleared before re-raising.
        """
        progress = ImportProgress()
        await self._write_progress(progress, import_in_progress=True)
        errors: list[str] = []
        imported = 0

        try:
            externals = [sample async for sample in self._lims.list_all()]
            progress.total = len(externals)
            await self._write_progress(progress)
            logger.info("LIMS import started", extra={"total": progress.total})

            for index, external in enumerate(externals, start=1):
                try:
                    await self._apply_external(external)
                    imported += 1
                except Exception as e:
                    logger.warning(
                        "Failed to import LIMS sample",
                        extra={"registry_code": external.registry_code, "error": str(e)},
                    )
                    errors.append(f"Sample {external.registry_code}: {e}")

                if index % IMPORT_PROGRESS_INTERVAL == 0:
                    progress.processed = index
                    progress.errors = len(errors)
                    await self._write_progress(progress)
        except Exception:
            logger.exception("LIMS import aborted")
            await self._store.merge_metadata({"import_in_progress": False})
            raise

        progress.processed = progress.total
        progress.errors = len(errors)
        await self._write_progress(
            progress,
            import_in_progress=False,
            last_import_completed=format_timestamp(_utcnow()),
        )
        self._cache.invalidate()
        logger.info(
            "LIMS import finished",
            extra={"total": progress.total, "imported": imported, "errors": len(errors)},
        )
        return {"total": progress.total, "imported": imported, "errors": errors}

    # =======
    # Status
    # =======

    async def get_metadata(self) -> SyncMetadata:
        return SyncMetadata.from_record(await self._store.get_metadata())

    async def clear_sync_errors(self) -> None:
        await self._store.merge_metadata({"sync_errors": []})

    async def get_sync_status(self) -> SyncStatusSummary:
        """Return sample and queue counts with the last successful sync time.

        Served from the cache handle until the next write invalidates it.
        """
        cached, found = self._cache.get(_STATUS_CACHE_KEY)
        if found:
            return cached

        metadata = await self.get_metadata()
        summary = SyncStatusSummary(
            total_samples=await self._store.count_samples(),
            pending_sync=await self._store.count_queue_items(QueueItemStatus.PENDING),
            failed_sync=await self._store.count_queue_items(QueueItemStatus.FAILED),
            last_sync=metadata.last_successful_sync,
        )
        self._cache.set(_STATUS_CACHE_KEY, summary)
        return summary


# Singleton instance
_sample_sync_service: SampleSyncService | None = None


def get_sample_sync_service() -> SampleSyncService:
    """Get or create the sample sync service singleton.

    Returns:
        The shared SampleSyncService instance.
    """
    global _sample_sync_service
    if _sample_sync_service is None:
        store = get_sample_store()
        _sample_sync_service = SampleSyncService(
            store=store,
            lims=get_lims_client(),
            queue=SyncQueue(
                store,
                max_attempts=settings.SYNC_MAX_RETRIES,
                retry_base_seconds=settings.QUEUE_RETRY_BASE_SECONDS,
            ),
            cache=Cache("sync_status", default_ttl=settings.SYNC_STATUS_CACHE_TTL),
        )
    return _sample_sync_service
