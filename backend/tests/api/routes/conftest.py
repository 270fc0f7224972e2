"""Shared fixtures for admin route tests."""

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient

from samplesync.api.deps import get_current_user
from samplesync.api.routes import sample_sync, samples
from samplesync.core.exceptions import SampleSyncException
from samplesync.integrations.lims_domain import SampleStatus, SyncedSample
from samplesync.main import request_validation_handler, sample_sync_exception_handler


def create_test_app() -> FastAPI:
    """Create minimal FastAPI app with the admin routers and error handlers."""
    app = FastAPI()
    app.include_router(sample_sync.router, prefix="/api/v1")
    app.include_router(samples.router, prefix="/api/v1")
    app.add_exception_handler(SampleSyncException, sample_sync_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    return app


def build_sample(**overrides: Any) -> SyncedSample:
    values: dict[str, Any] = {
        "id": "sample-1",
        "sample_id": "42",
        "registry_code": "EBM042",
        "external_id": "bfi_001",
        "client_name": "Acme Labs",
        "sample_type": "Soil",
        "sample_format": "Tube",
        "sample_date": "2024-03-01",
        "status": SampleStatus.RECEIVED,
        "last_modified": datetime(2024, 3, 1, 12, tzinfo=UTC),
        "last_synced_to_external": datetime(2024, 3, 1, 12, 1, tzinfo=UTC),
    }
    values.update(overrides)
    return SyncedSample(**values)


@pytest.fixture
def mock_current_user() -> MagicMock:
    """Create mock current user."""
    user = MagicMock()
    user.id = "test-user-123"
    user.email = "admin@example.com"
    return user


@pytest.fixture
def make_sample() -> Any:
    """Factory for SyncedSample instances."""
    return build_sample


@pytest.fixture
def anonymous_client() -> TestClient:
    """Test client without authentication overrides."""
    return TestClient(create_test_app())


@pytest.fixture
def user_role() -> str:
    return "admin"


@pytest.fixture
def mock_service() -> MagicMock:
    """SampleSyncService double with async operations mocked."""
    service = MagicMock()
    for name in (
        "list_samples",
        "create_sample",
        "get_sample",
        "update_sample",
        "delete_sample",
        "sync_to_external",
        "get_sync_status",
        "get_metadata",
        "process_queue",
        "push_unsynced",
        "sync_from_external",
        "import_all",
        "clear_sync_errors",
        "requeue_failed",
        "clear_queue",
    ):
        setattr(service, name, AsyncMock())
    service.queue = MagicMock()
    service.queue.list_items = AsyncMock(return_value=[])
    service.queue.counts = AsyncMock(
        return_value={"pending": 0, "processing": 0, "completed": 0, "failed": 0}
    )
    return service


@pytest.fixture
def test_client(
    mock_current_user: MagicMock, user_role: str, mock_service: MagicMock
) -> Iterator[TestClient]:
    """Test client authenticated as ``user_role`` with the sync service mocked."""
    app = create_test_app()
    app.dependency_overrides[get_current_user] = lambda: mock_current_user

    with (
        patch(
            "samplesync.api.deps.SupabaseClient.get_user_by_id",
            new=AsyncMock(return_value={"id": mock_current_user.id, "role": user_role}),
        ),
        patch("samplesync.api.routes.samples.get_sample_sync_service", return_value=mock_service),
        patch(
            "samplesync.api.routes.sample_sync.get_sample_sync_service",
            return_value=mock_service,
        ),
    ):
        yield TestClient(app)

    app.dependency_overrides.clear()
