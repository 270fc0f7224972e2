"""Admin API routes for LIMS sync operations.

Provides:
- GET /admin/samples/sync/status: counts, metadata and circuit breaker state
- POST /admin/samples/sync/process-queue: drain one queue batch now
- POST /admin/samples/sync/push-unsynced: bulk-push every unpushed sample
- POST /admin/samples/sync/pull/{external_id}: pull one LIMS entity now
- POST /admin/samples/sync/import: full import from the LIMS
- POST /admin/samples/sync/clear-errors: clear recorded sync errors
- POST /admin/samples/sync/requeue: reset failed queue items to pending
- GET /admin/samples/sync/queue: inspect queue items
- DELETE /admin/samples/sync/queue: drop pending and failed queue items
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from samplesync.api.deps import AdminUser
from samplesync.core.resilience import lims_circuit_breaker
from samplesync.integrations.lims_domain import (
    QueueItemStatus,
    SyncQueueItem,
    format_timestamp,
)
from samplesync.integrations.sample_sync import get_sample_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/samples/sync", tags=["sample-sync"])


class ProcessQueueRequest(BaseModel):
    """Request model for a manual queue run."""

    batch_size: int | None = Field(None, ge=1, le=500)


class ProcessQueueResponse(BaseModel):
    """Response model for a queue run."""

    processed: int
    failed: int
    errors: list[str] = Field(default_factory=list)


class ImportResponse(BaseModel):
    """Response model for a full import."""

    total: int
    imported: int
    errors: list[str] = Field(default_factory=list)


class BulkPushResponse(BaseModel):
    """Response model for a bulk push."""

    created: int
    updated: int
    queued: int


class PullResponse(BaseModel):
    """Response model for a single pull."""

    synced: bool
    sample_id: str | None = None


class RequeueRequest(BaseModel):
    """Request model for requeueing queue items."""

    include_processing: bool = False


class CountResponse(BaseModel):
    """Number of affected items."""

    count: int


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str


def _queue_item_to_dict(item: SyncQueueItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "sample_id": item.sample_id,
        "external_id": item.external_id,
        "operation": item.operation.value,
        "direction": item.direction.value,
        "status": item.status.value,
        "attempts": item.attempts,
        "max_attempts": item.max_attempts,
        "last_error": item.last_error,
        "created_at": format_timestamp(item.created_at),
        "next_attempt_at": format_timestamp(item.next_attempt_at),
        "completed_at": format_timestamp(item.completed_at),
    }


@router.get("/status", status_code=status.HTTP_200_OK)
async def get_sync_status(current_user: AdminUser) -> dict[str, Any]:
    """Get sync status: sample and queue counts plus sync metadata."""
    service = get_sample_sync_service()
    summary = await service.get_sync_status()
    metadata = await service.get_metadata()
    return {
        **summary.to_dict(),
        "metadata": metadata.to_dict(),
        "lims_circuit": lims_circuit_breaker.to_dict(),
    }


@router.post(
    "/process-queue", response_model=ProcessQueueResponse, status_code=status.HTTP_200_OK
)
async def process_queue(
    current_user: AdminUser,
    data: ProcessQueueRequest | None = None,
) -> dict[str, Any]:
    """Process one batch of the sync queue immediately."""
    service = get_sample_sync_service()
    batch_size = data.batch_size if data else None
    result = await service.process_queue(batch_size=batch_size)
    logger.info(
        "Manual queue run",
        extra={"user_id": current_user.id, "processed": result["processed"]},
    )
    return result


@router.post(
    "/push-unsynced", response_model=BulkPushResponse, status_code=status.HTTP_200_OK
)
async def push_unsynced(current_user: AdminUser) -> dict[str, int]:
    """Bulk-push every sample holding a change not yet sent to the LIMS."""
    service = get_sample_sync_service()
    return await service.push_unsynced()


@router.post(
    "/pull/{external_id}", response_model=PullResponse, status_code=status.HTTP_200_OK
)
async def pull_sample(external_id: str, current_user: AdminUser) -> dict[str, Any]:
    """Pull one LIMS entity into the local store."""
    service = get_sample_sync_service()
    local_id = await service.sync_from_external(external_id)
    return {"synced": local_id is not None, "sample_id": local_id}


@router.post("/import", response_model=ImportResponse, status_code=status.HTTP_200_OK)
async def import_all(current_user: AdminUser) -> dict[str, Any]:
    """Import every sample from the LIMS.

    Raises:
        HTTPException: 409 if an import is already running.
    """
    service = get_sample_sync_service()
    metadata = await service.get_metadata()
    if metadata.import_in_progress:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An import is already in progress",
        )

    logger.info("Full LIMS import requested", extra={"user_id": current_user.id})
    return await service.import_all()


@router.post("/clear-errors", response_model=MessageResponse, status_code=status.HTTP_200_OK)
async def clear_errors(current_user: AdminUser) -> dict[str, str]:
    """Clear the recorded sync error history."""
    service = get_sample_sync_service()
    await service.clear_sync_errors()
    return {"message": "Sync errors cleared"}


@router.post("/requeue", response_model=CountResponse, status_code=status.HTTP_200_OK)
async def requeue(
    current_user: AdminUser,
    data: RequeueRequest | None = None,
) -> dict[str, int]:
    """Reset failed queue items, and optionally stuck processing items, to pending."""
    service = get_sample_sync_service()
    include_processing = data.include_processing if data else False
    count = await service.requeue_failed(include_processing=include_processing)
    return {"count": count}


@router.get("/queue", status_code=status.HTTP_200_OK)
async def list_queue(
    current_user: AdminUser,
    item_status: QueueItemStatus | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
) -> dict[str, Any]:
    """List queue items oldest first, with per-status counts."""
    service = get_sample_sync_service()
    items = await service.queue.list_items(status=item_status, limit=limit)
    return {
        "items": [_queue_item_to_dict(i) for i in items],
        "counts": await service.queue.counts(),
    }


@router.delete("/queue", response_model=CountResponse, status_code=status.HTTP_200_OK)
async def clear_queue(current_user: AdminUser) -> dict[str, int]:
    """Delete pending and failed queue items."""
    service = get_sample_sync_service()
    count = await service.clear_queue()
    logger.warning(
        "Sync queue cleared via admin API",
        extra={"user_id": current_user.id, "count": count},
    )
    return {"count": count}
