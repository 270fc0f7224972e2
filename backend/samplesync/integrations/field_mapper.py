"""Translation between local samples and LIMS custom-entity fields.

The LIMS keys fields by their display name and wraps every value as
``{"value": ...}``. Inbound values are untrusted: an unknown status falls
back to ``pending`` instead of raising.
"""

import logging
from typing import Any

from samplesync.integrations.lims_domain import SampleStatus, SyncedSample

logger = logging.getLogger(__name__)

# Local attribute -> LIMS display field name
FIELD_NAMES: dict[str, str] = {
    "sample_id": "Sample ID",
    "client_name": "Client Name",
    "sample_type": "Sample Type",
    "sample_format": "Sample Format",
    "sample_date": "Sample Date",
    "status": "Sample Status",
}

DEFAULT_STATUS = SampleStatus.PENDING


def parse_status(value: Any) -> SampleStatus | None:
    """Return the matching SampleStatus, or None if value is not a known status."""
    if isinstance(value, SampleStatus):
        return value
    if value is None:
        return None
    try:
        return SampleStatus(str(value).strip().lower())
    except ValueError:
        return None


def to_external_fields(sample: SyncedSample) -> dict[str, dict[str, Any]]:
    """Build the LIMS ``fields`` object for a local sample.

    Args:
        sample: The local sample.

    Returns:
        Mapping of LIMS field name to ``{"value": ...}``.
    """
    values: dict[str, Any] = {
        "sample_id": sample.sample_id,
        "client_name": sample.client_name,
        "sample_type": sample.sample_type,
        "sample_format": sample.sample_format or "",
        "sample_date": sample.sample_date,
        "status": sample.status.value,
    }
    return {FIELD_NAMES[attr]: {"value": value} for attr, value in values.items()}


def _extract_value(fields: dict[str, Any], name: str) -> str:
    raw = fields.get(name)
    if raw is None:
        return ""
    if isinstance(raw, dict):
        value = raw.get("value")
        return "" if value is None else str(value)
    return str(raw)


def from_external_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Parse LIMS ``fields`` into a partial local sample.

    Args:
        fields: The LIMS field mapping. Values may be wrapped or bare.

    Returns:
        Dict with ``sample_id``, the business fields and a SampleStatus
        under ``status``. Missing fields map to empty strings.
    """
    parsed = {attr: _extract_value(fields, name) for attr, name in FIELD_NAMES.items()}

    status = parse_status(parsed["status"])
    if status is None:
        logger.warning(
            "Unrecognized sample status from LIMS, defaulting to %s",
            DEFAULT_STATUS.value,
            extra={"status_value": parsed["status"]},
        )
        status = DEFAULT_STATUS
    parsed["status"] = status
    return parsed
