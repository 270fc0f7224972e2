"""Admin API routes for synced samples.

Provides:
- GET /admin/samples: list samples
- POST /admin/samples: create a sample and push it to the LIMS
- GET /admin/samples/{sample_id}: fetch one sample
- PATCH /admin/samples/{sample_id}: edit business fields (queued for push)
- DELETE /admin/samples/{sample_id}: delete locally (LIMS delete queued)
- POST /admin/samples/{sample_id}/push: push one sample to the LIMS now
"""

import logging
from typing import Any

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from samplesync.api.deps import AdminUser
from samplesync.integrations.lims_domain import SyncedSample, format_timestamp
from samplesync.integrations.sample_sync import get_sample_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/samples", tags=["samples"])


# Request/Response Models
class SampleCreateRequest(BaseModel):
    """Request model for creating a sample."""

    sample_id: str = Field(..., min_length=1, max_length=20, pattern=r"^\d+$")
    client_name: str = Field(..., min_length=1, max_length=200)
    sample_type: str = Field(..., min_length=1, max_length=100)
    sample_format: str = Field("", max_length=100)
    sample_date: str = Field(..., min_length=1, max_length=40)
    status: str | None = None
    order_id: str | None = None


class SampleUpdateRequest(BaseModel):
    """Request model for a partial sample edit."""

    model_config = ConfigDict(extra="forbid")

    client_name: str | None = Field(None, min_length=1, max_length=200)
    sample_type: str | None = Field(None, min_length=1, max_length=100)
    sample_format: str | None = Field(None, max_length=100)
    sample_date: str | None = Field(None, min_length=1, max_length=40)
    status: str | None = None
    order_id: str | None = None


class SampleResponse(BaseModel):
    """Response model for a synced sample."""

    id: str
    sample_id: str
    registry_code: str
    external_id: str | None = None
    client_name: str
    sample_type: str
    sample_format: str
    sample_date: str
    status: str
    origin: str
    order_id: str | None = None
    sync_version: int
    locally_dirty: bool
    last_modified: str | None = None
    last_synced_to_external: str | None = None
    last_synced_from_external: str | None = None
    created_at: str | None = None


class SampleCreateResponse(BaseModel):
    """Response model for sample creation."""

    id: str
    registry_code: str
    external_id: str | None = None


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str


def _sample_to_response(sample: SyncedSample) -> dict[str, Any]:
    return {
        "id": sample.id,
        "sample_id": sample.sample_id,
        "registry_code": sample.registry_code,
        "external_id": sample.external_id or None,
        "client_name": sample.client_name,
        "sample_type": sample.sample_type,
        "sample_format": sample.sample_format,
        "sample_date": sample.sample_date,
        "status": sample.status.value,
        "origin": sample.origin.value,
        "order_id": sample.order_id,
        "sync_version": sample.sync_version,
        "locally_dirty": sample.is_locally_dirty,
        "last_modified": format_timestamp(sample.last_modified),
        "last_synced_to_external": format_timestamp(sample.last_synced_to_external),
        "last_synced_from_external": format_timestamp(sample.last_synced_from_external),
        "created_at": format_timestamp(sample.created_at),
    }


# Routes
@router.get("", response_model=list[SampleResponse], status_code=status.HTTP_200_OK)
async def list_samples(
    current_user: AdminUser,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    sample_status: str | None = Query(None, alias="status"),
) -> list[dict[str, Any]]:
    """List samples ordered by registry code."""
    service = get_sample_sync_service()
    samples = await service.list_samples(limit=limit, offset=offset, status=sample_status)
    return [_sample_to_response(s) for s in samples]


@router.post("", response_model=SampleCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_sample(
    data: SampleCreateRequest,
    current_user: AdminUser,
) -> dict[str, Any]:
    """Create a sample and push it to the LIMS synchronously.

    LIMS failures are returned to the caller; the local record is kept and
    can be pushed again with ``POST /{sample_id}/push``.
    """
    service = get_sample_sync_service()
    fields = data.model_dump(exclude_none=True)
    local_id = await service.create_sample(fields, created_by=current_user.id)
    sample = await service.get_sample(local_id)

    logger.info(
        "Sample created via admin API",
        extra={"sample_id": local_id, "user_id": current_user.id},
    )
    return {
        "id": sample.id,
        "registry_code": sample.registry_code,
        "external_id": sample.external_id or None,
    }


@router.get("/{sample_id}", response_model=SampleResponse, status_code=status.HTTP_200_OK)
async def get_sample(
    sample_id: str,
    current_user: AdminUser,
) -> dict[str, Any]:
    """Fetch one sample by local id."""
    service = get_sample_sync_service()
    return _sample_to_response(await service.get_sample(sample_id))


@router.patch("/{sample_id}", response_model=SampleResponse, status_code=status.HTTP_200_OK)
async def update_sample(
    sample_id: str,
    data: SampleUpdateRequest,
    current_user: AdminUser,
) -> dict[str, Any]:
    """Edit business fields. The change reaches the LIMS through the sync queue."""
    service = get_sample_sync_service()
    sample = await service.update_sample(sample_id, data.model_dump(exclude_unset=True))
    return _sample_to_response(sample)


@router.delete("/{sample_id}", response_model=MessageResponse, status_code=status.HTTP_200_OK)
async def delete_sample(
    sample_id: str,
    current_user: AdminUser,
) -> dict[str, str]:
    """Delete a sample locally and queue its LIMS delete."""
    service = get_sample_sync_service()
    await service.delete_sample(sample_id)
    logger.info(
        "Sample deleted via admin API",
        extra={"sample_id": sample_id, "user_id": current_user.id},
    )
    return {"message": "Sample deleted"}


@router.post(
    "/{sample_id}/push", response_model=SampleResponse, status_code=status.HTTP_200_OK
)
async def push_sample(
    sample_id: str,
    current_user: AdminUser,
) -> dict[str, Any]:
    """Push one sample to the LIMS immediately."""
    service = get_sample_sync_service()
    sample = await service.sync_to_external(sample_id)
    return _sample_to_response(sample)
