"""Conflict detection between a local sample and its LIMS counterpart.

Policy is most-recent-write-wins, compared by modification timestamp across
both systems. Timestamps come from two independently clocked systems, so
clock skew can pick the wrong winner; that is a known limitation of
last-write-wins and is not corrected here.
"""

import logging

from samplesync.integrations.field_mapper import from_external_fields
from samplesync.integrations.lims_domain import (
    BUSINESS_FIELDS,
    ConflictResult,
    ExternalSample,
    SyncedSample,
)

logger = logging.getLogger(__name__)


def _external_business_fields(external: ExternalSample) -> dict[str, str]:
    parsed = from_external_fields(external.fields)
    return {
        "client_name": parsed["client_name"],
        "sample_type": parsed["sample_type"],
        "sample_format": parsed["sample_format"],
        "sample_date": parsed["sample_date"],
        "status": parsed["status"].value,
    }


def detect_conflict(local: SyncedSample, external: ExternalSample) -> ConflictResult:
    """Decide whether a local sample and a freshly fetched LIMS entity conflict.

    A conflict requires all three of:

    1. at least one business field differs,
    2. the LIMS modification time is strictly newer than the local
       ``last_modified``,
    3. the local copy is dirty (holds a change not yet pushed outward).

    Args:
        local: The stored local sample.
        external: The LIMS entity with the same registry code.

    Returns:
        ConflictResult with both snapshots and the differing field names.
    """
    local_fields = local.business_fields()
    external_fields = _external_business_fields(external)
    differing = [f for f in BUSINESS_FIELDS if local_fields[f] != external_fields[f]]

    external_is_newer = (
        external.modified_at is not None
        and (local.last_modified is None or external.modified_at > local.last_modified)
    )
    has_conflict = bool(differing) and external_is_newer and local.is_locally_dirty

    return ConflictResult(
        has_conflict=has_conflict,
        local_fields=local_fields,
        external_fields=external_fields,
        local_modified_at=local.last_modified,
        external_modified_at=external.modified_at,
        differing_fields=differing,
    )


def external_wins(result: ConflictResult) -> bool:
    """Return True when the LIMS side holds the most recent write.

    Equal timestamps are not a win for either side.
    """
    if result.external_modified_at is None:
        return False
    if result.local_modified_at is None:
        return True
    return result.external_modified_at > result.local_modified_at


def should_apply_external(local: SyncedSample, result: ConflictResult) -> bool:
    """Decide whether inbound LIMS fields overwrite the local business fields.

    - Conflict: apply only if the LIMS write is the most recent.
    - No differing fields: apply (only bookkeeping changes).
    - Local copy dirty and at least as new as the LIMS copy: keep local; its
      queued outbound update carries the newer write to the LIMS.
    - Otherwise apply.
    """
    if result.has_conflict:
        winner_external = external_wins(result)
        logger.info(
            "Sync conflict resolved",
            extra={
                "sample_id": local.id,
                "registry_code": local.registry_code,
                "differing_fields": result.differing_fields,
                "local_modified_at": str(result.local_modified_at),
                "external_modified_at": str(result.external_modified_at),
                "winner": "external" if winner_external else "local",
            },
        )
        return winner_external

    if not result.differing_fields:
        return True

    if local.is_locally_dirty and not external_wins(result):
        logger.info(
            "Keeping unsynced local edit over older LIMS copy",
            extra={
                "sample_id": local.id,
                "registry_code": local.registry_code,
                "differing_fields": result.differing_fields,
            },
        )
        return False

    return True
