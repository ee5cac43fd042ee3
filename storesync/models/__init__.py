"""Database models for the StoreSync engine"""

from storesync.models.catalog import CatalogSnapshot

from storesync.models.sync_queue import SyncQueueItem

from storesync.models.sync_status import (
    SyncStatus,
    SyncStatusMetadata
)

__all__ = [
    "CatalogSnapshot",
    "SyncQueueItem",
    "SyncStatus",
    "SyncStatusMetadata",
]
