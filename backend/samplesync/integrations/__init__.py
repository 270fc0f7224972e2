"""LIMS integration: domain models, field mapping and the REST client.

The sync queue, sync service and scheduler depend on the database layer
and are imported from their own modules.
"""

from samplesync.integrations.field_mapper import from_external_fields, to_external_fields
from samplesync.integrations.lims_client import LimsClient, get_lims_client
from samplesync.integrations.lims_domain import (
    ExternalSample,
    QueueItemStatus,
    SampleOrigin,
    SampleStatus,
    SyncDirection,
    SyncedSample,
    SyncOperation,
    SyncQueueItem,
)

__all__ = [
    "ExternalSample",
    "LimsClient",
    "QueueItemStatus",
    "SampleOrigin",
    "SampleStatus",
    "SyncDirection",
    "SyncOperation",
    "SyncQueueItem",
    "SyncedSample",
    "from_external_fields",
    "get_lims_client",
    "to_external_fields",
]
