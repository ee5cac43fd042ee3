"""
Sync Status Model

One row per (tenant, entity type). The dashboard polls this table for
progress; every orchestrator run leaves it in a terminal state.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from datetime import datetime
from typing import Any, Dict, List, Optional, TypedDict

from storesync.models.base import Base

# Status values
IDLE = "idle"
DISCOVERING = "discovering"
DISCOVERED = "discovered"
SYNCING = "syncing"
COMPLETED = "completed"
PARTIAL = "partial"
ERROR = "error"

TERMINAL_STATUSES = (DISCOVERED, COMPLETED, PARTIAL, ERROR)

# idle -> discovering -> discovered -> syncing -> completed | partial | error.
# error is reachable from anywhere; settled states may start a new run.
ALLOWED_TRANSITIONS: Dict[str, tuple] = {
    IDLE: (DISCOVERING, SYNCING, ERROR),
    DISCOVERING: (DISCOVERED, ERROR),
    DISCOVERED: (DISCOVERING, SYNCING, ERROR),
    SYNCING: (COMPLETED, PARTIAL, ERROR),
    COMPLETED: (DISCOVERING, SYNCING, ERROR),
    PARTIAL: (DISCOVERING, SYNCING, ERROR),
    ERROR: (DISCOVERING, SYNCING, ERROR),
}


def is_allowed_transition(current: Optional[str], target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current or IDLE, ())


class SyncStatusMetadata(TypedDict, total=False):
    """Known keys of SyncStatus.sync_metadata"""
    # discovery
    missing_ids: List[int]
    changed_ids: List[int]
    to_create_remotely: List[int]
    to_update_remotely: List[int]
    to_delete_remotely: List[int]
    conflicts: List[Dict[str, Any]]
    last_modified: Optional[str]
    remote_count: int
    local_count: int
    discovered_at: str
    # pull / queue runs
    sync_direction: str  # from_remote, to_remote
    requested: int
    processed: int
    errors: int
    skipped: int
    failed_ids: List[int]
    failed_item_ids: List[int]
    total_passes: int
    force_full_sync: bool
    modified_after: Optional[str]
    # failures
    error: str
    error_type: str


class SyncStatus(Base):
    """
    Sync progress for one tenant and entity type
    """
    __tablename__ = "sync_status"

    id = Column(Integer, primary_key=True, index=True)

    tenant_id = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)  # products, customers, orders, categories, sync_queue

    status = Column(String, nullable=False, default=IDLE)
    total_items = Column(Integer, default=0)
    processed_items = Column(Integer, default=0)

    last_discover_at = Column(DateTime, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)

    # "metadata" is reserved on declarative classes
    sync_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "entity_type", name="uq_sync_status_tenant_type"),
    )

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "status": self.status,
            "total_items": self.total_items or 0,
            "processed_items": self.processed_items or 0,
            "last_discover_at": self.last_discover_at.isoformat() if self.last_discover_at else None,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "metadata": self.sync_metadata or {},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
