"""Tests for conflict detection and resolution."""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from samplesync.integrations.conflict_resolver import (
    detect_conflict,
    external_wins,
    should_apply_external,
)
from samplesync.integrations.lims_domain import SampleStatus, SyncedSample

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def _local(**overrides: Any) -> SyncedSample:
    values: dict[str, Any] = {
        "id": "sample-1",
        "sample_id": "42",
        "registry_code": "EBM042",
        "external_id": "bfi_001",
        "client_name": "Acme Labs",
        "sample_type": "Soil",
        "sample_format": "Tube",
        "sample_date": "2024-03-01",
        "status": SampleStatus.PROCESSING,
        "last_modified": T0,
        "last_synced_to_external": None,
    }
    values.update(overrides)
    return SyncedSample(**values)


class TestDetectConflict:
    """Conflict requires differing fields, a newer LIMS write and a dirty local copy."""

    def test_all_three_conditions_make_a_conflict(self, make_external: Any) -> None:
        external = make_external(modified_at=T0 + timedelta(hours=1), status="error")

        result = detect_conflict(_local(), external)

        assert result.has_conflict is True
        assert result.differing_fields == ["status"]
        assert result.local_fields["status"] == "processing"
        assert result.external_fields["status"] == "error"

    def test_identical_fields_never_conflict(self, make_external: Any) -> None:
        external = make_external(modified_at=T0 + timedelta(hours=1), status="processing")

        result = detect_conflict(_local(), external)

        assert result.has_conflict is False
        assert result.differing_fields == []

    def test_older_external_is_not_a_conflict(self, make_external: Any) -> None:
        external = make_external(modified_at=T0 - timedelta(hours=1), status="error")

        assert detect_conflict(_local(), external).has_conflict is False

    def test_equal_timestamps_are_not_a_conflict(self, make_external: Any) -> None:
        external = make_external(modified_at=T0, status="error")

        assert detect_conflict(_local(), external).has_conflict is False

    def test_clean_local_copy_is_not_a_conflict(self, make_external: Any) -> None:
        local = _local(last_synced_to_external=T0 + timedelta(minutes=1))
        external = make_external(modified_at=T0 + timedelta(hours=1), status="error")

        assert detect_conflict(local, external).has_conflict is False

    def test_missing_local_timestamp_treats_external_as_newer(self, make_external: Any) -> None:
        external = make_external(modified_at=T0, status="error")

        assert detect_conflict(_local(last_modified=None), external).has_conflict is True


class TestResolution:
    """Most recent write wins."""

    def test_newer_external_wins(self, make_external: Any) -> None:
        result = detect_conflict(
            _local(), make_external(modified_at=T0 + timedelta(hours=1), status="error")
        )

        assert external_wins(result) is True
        assert should_apply_external(_local(), result) is True

    def test_conflict_is_logged(self, make_external: Any, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level("INFO")
        local = _local()
        result = detect_conflict(
            local, make_external(modified_at=T0 + timedelta(hours=1), status="error")
        )

        should_apply_external(local, result)

        assert "Sync conflict resolved" in caplog.text

    def test_dirty_local_newer_than_external_is_kept(self, make_external: Any) -> None:
        local = _local()
        result = detect_conflict(
            local, make_external(modified_at=T0 - timedelta(hours=1), status="error")
        )

        assert should_apply_external(local, result) is False

    def test_clean_local_takes_external_fields(self, make_external: Any) -> None:
        local = _local(
            last_synced_to_external=T0 + timedelta(minutes=5),
            last_synced_from_external=T0,
        )
        result = detect_conflict(
            local, make_external(modified_at=T0 - timedelta(hours=1), status="error")
        )

        assert should_apply_external(local, result) is True

    def test_no_differences_apply_bookkeeping(self, make_external: Any) -> None:
        local = _local()
        result = detect_conflict(
            local, make_external(modified_at=T0 - timedelta(hours=1), status="processing")
        )

        assert should_apply_external(local, result) is True
