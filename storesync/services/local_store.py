"""
Local Store

Access layer for the three persisted tables the sync engine owns:
catalog snapshots, the mutation queue and sync status. Every write is an
upsert or an update keyed by primary key / (tenant, entity type), so a run
repeated after a crash converges instead of duplicating rows.

Methods return plain dicts so callers never hold detached ORM instances.
"""
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from storesync.exceptions import StorageError, ValidationError
from storesync.models.base import SessionLocal
from storesync.models.catalog import CatalogSnapshot
from storesync.models.sync_queue import (
    SyncQueueItem, PENDING, PROCESSING, COMPLETED, FAILED, QUEUE_STATUSES, OPERATIONS, DELETE
)
from storesync.models.sync_status import SyncStatus, IDLE
from storesync.utils.logger import log

# Deletes jump ahead of creates/updates unless the caller says otherwise
DEFAULT_PRIORITIES = {DELETE: 10}


def _snapshot_name(record: Dict[str, Any]) -> Optional[str]:
    """Display name: products and categories (name), customers (first + last, else email), orders (number)"""
    if record.get("name"):
        return record["name"]
    full_name = " ".join(p for p in (record.get("first_name"), record.get("last_name")) if p)
    if full_name or record.get("email"):
        return full_name or record["email"]
    return f"Order #{record['number']}" if record.get("number") else None


class LocalStore:
    """
    Snapshot, queue and status persistence for the sync engine
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def _session(self, operation: str):
        """Commit on success, roll back and raise StorageError on database failure"""
        db: Session = self.session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"LocalStore {operation} failed: {e}")
            raise StorageError(f"{operation} failed: {e}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot_index(self, tenant_id: str, entity_type: str) -> Dict[int, Optional[str]]:
        """Map of entity id -> date_modified for every snapshot of the tenant"""
        with self._session("snapshot_index") as db:
            rows = db.query(CatalogSnapshot.entity_id, CatalogSnapshot.date_modified).filter(
                CatalogSnapshot.tenant_id == tenant_id,
                CatalogSnapshot.entity_type == entity_type,
            ).all()
            return {int(entity_id): date_modified for entity_id, date_modified in rows}

    def get_snapshot(self, tenant_id: str, entity_type: str, entity_id: int) -> Optional[Dict[str, Any]]:
        with self._session("get_snapshot") as db:
            snapshot = db.get(CatalogSnapshot, (tenant_id, entity_type, entity_id))
            return snapshot.to_dict() if snapshot else None

    def count_snapshots(self, tenant_id: str, entity_type: str) -> int:
        with self._session("count_snapshots") as db:
            return db.query(func.count(CatalogSnapshot.entity_id)).filter(
                CatalogSnapshot.tenant_id == tenant_id,
                CatalogSnapshot.entity_type == entity_type,
            ).scalar() or 0

    def upsert_snapshots(self, tenant_id: str, entity_type: str, records: Iterable[Dict[str, Any]]) -> int:
        """
        Insert or whole-record replace snapshots keyed by remote id.

        Returns:
            Number of records written
        """
        written = 0
        with self._session("upsert_snapshots") as db:
            for record in records:
                self._write_snapshot(db, tenant_id, entity_type, record)
                written += 1
        return written

    def delete_snapshot(self, tenant_id: str, entity_type: str, entity_id: int) -> bool:
        with self._session("delete_snapshot") as db:
            snapshot = db.get(CatalogSnapshot, (tenant_id, entity_type, entity_id))
            if not snapshot:
                return False
            db.delete(snapshot)
            return True

    def replace_provisional(
        self,
        tenant_id: str,
        entity_type: str,
        provisional_id: int,
        record: Dict[str, Any],
    ) -> int:
        """
        Re-key a locally created entity to the id the remote assigned.

        Drops the provisional snapshot, writes the remote record under its real
        id and re-points unresolved queue items that still reference the
        provisional id. Returns the number of queue items re-pointed.
        """
        remote_id = int(record["id"])
        with self._session("replace_provisional") as db:
            if provisional_id != remote_id:
                provisional = db.get(CatalogSnapshot, (tenant_id, entity_type, provisional_id))
                if provisional:
                    db.delete(provisional)
                    db.flush()

            self._write_snapshot(db, tenant_id, entity_type, record)

            repointed = 0
            if provisional_id != remote_id:
                repointed = db.query(SyncQueueItem).filter(
                    SyncQueueItem.tenant_id == tenant_id,
                    SyncQueueItem.entity_type == entity_type,
                    SyncQueueItem.entity_id == provisional_id,
                    SyncQueueItem.status.in_((PENDING, PROCESSING)),
                ).update({SyncQueueItem.entity_id: remote_id}, synchronize_session=False)

        if repointed:
            log.info(
                f"Re-pointed {repointed} queued {entity_type} mutations "
                f"from provisional id {provisional_id} to {remote_id}"
            )
        return repointed

    @staticmethod
    def _write_snapshot(db: Session, tenant_id: str, entity_type: str, record: Dict[str, Any]):
        entity_id = record.get("id")
        if entity_id is None:
            raise ValidationError(f"Cannot store {entity_type} record without an id")

        now = datetime.utcnow()
        key = (tenant_id, entity_type, int(entity_id))
        snapshot = db.get(CatalogSnapshot, key)
        if not snapshot:
            snapshot = CatalogSnapshot(tenant_id=tenant_id, entity_type=entity_type, entity_id=int(entity_id))
            db.add(snapshot)

        snapshot.date_modified = record.get("date_modified")
        snapshot.name = _snapshot_name(record)
        snapshot.sku = record.get("sku") or None
        snapshot.status = record.get("status")
        snapshot.payload = dict(record)
        snapshot.synced_at = now

    # ------------------------------------------------------------------
    # Mutation queue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: int,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Record a local edit that must be replayed remotely"""
        if operation not in OPERATIONS:
            raise ValidationError(f"Unsupported operation: {operation}")
        if priority is None:
            priority = DEFAULT_PRIORITIES.get(operation, 0)

        with self._session("enqueue") as db:
            item = SyncQueueItem(
                tenant_id=tenant_id,
                entity_type=entity_type,
                entity_id=entity_id,
                operation=operation,
                payload=payload or {},
                status=PENDING,
                attempts=0,
                priority=priority,
                created_at=datetime.utcnow(),
            )
            db.add(item)
            db.flush()
            result = item.to_dict()

        log.info(f"Queued {operation} for {entity_type} {entity_id} (tenant {tenant_id}, priority {priority})")
        return result

    def pending_items(self, tenant_id: str, entity_type: str) -> List[Dict[str, Any]]:
        """Pending items for one entity type, oldest first"""
        with self._session("pending_items") as db:
            items = db.query(SyncQueueItem).filter(
                SyncQueueItem.tenant_id == tenant_id,
                SyncQueueItem.entity_type == entity_type,
                SyncQueueItem.status == PENDING,
            ).order_by(SyncQueueItem.created_at.asc(), SyncQueueItem.id.asc()).all()
            return [item.to_dict() for item in items]

    def select_batch(self, tenant_id: str, batch_size: int, max_retries: int) -> List[Dict[str, Any]]:
        """Next pending items: priority desc, then creation order, excluding exhausted ones"""
        with self._session("select_batch") as db:
            items = db.query(SyncQueueItem).filter(
                SyncQueueItem.tenant_id == tenant_id,
                SyncQueueItem.status == PENDING,
                SyncQueueItem.attempts < max_retries,
            ).order_by(
                SyncQueueItem.priority.desc(),
                SyncQueueItem.created_at.asc(),
                SyncQueueItem.id.asc(),
            ).limit(batch_size).all()
            return [item.to_dict() for item in items]

    def get_item(self, item_id: int) -> Optional[Dict[str, Any]]:
        with self._session("get_item") as db:
            item = db.get(SyncQueueItem, item_id)
            return item.to_dict() if item else None

    def claim_item(self, item_id: int) -> Dict[str, Any]:
        """Mark an item processing and count the attempt before any remote call"""
        with self._session("claim_item") as db:
            item = self._require_item(db, item_id)
            item.status = PROCESSING
            item.attempts = (item.attempts or 0) + 1
            item.updated_at = datetime.utcnow()
            return item.to_dict()

    def complete_item(self, item_id: int) -> None:
        with self._session("complete_item") as db:
            item = self._require_item(db, item_id)
            now = datetime.utcnow()
            item.status = COMPLETED
            item.last_error = None
            item.processed_at = now
            item.updated_at = now

    def fail_item(self, item_id: int, error: str, max_retries: int) -> str:
        """
        Record a failed attempt.

        Returns:
            'failed' once attempts reached max_retries, otherwise 'pending'
        """
        with self._session("fail_item") as db:
            item = self._require_item(db, item_id)
            item.status = FAILED if (item.attempts or 0) >= max_retries else PENDING
            item.last_error = (error or "Processing failed")[:2000]
            item.updated_at = datetime.utcnow()
            return item.status

    def close_unsupported(self, item_id: int, error: str) -> None:
        """Close an item no handler exists for, without spending an attempt"""
        with self._session("close_unsupported") as db:
            item = self._require_item(db, item_id)
            item.status = FAILED
            item.last_error = error
            item.updated_at = datetime.utcnow()

    def release_stale_items(self, tenant_id: str, stale_after_seconds: int, max_retries: int) -> int:
        """
        Return items orphaned in 'processing' by a crashed run to the queue.

        Their attempt counts are kept; exhausted items are closed as failed.
        """
        cutoff = datetime.utcnow() - timedelta(seconds=stale_after_seconds)
        released = 0
        with self._session("release_stale_items") as db:
            items = db.query(SyncQueueItem).filter(
                SyncQueueItem.tenant_id == tenant_id,
                SyncQueueItem.status == PROCESSING,
                SyncQueueItem.updated_at < cutoff,
            ).all()
            for item in items:
                item.status = FAILED if (item.attempts or 0) >= max_retries else PENDING
                item.last_error = "Released after interrupted processing"
                item.updated_at = datetime.utcnow()
                released += 1

        if released:
            log.warning(f"Released {released} stale queue items for tenant {tenant_id}")
        return released

    def queue_summary(self, tenant_id: str) -> Dict[str, Any]:
        """Item counts grouped by status and by entity type"""
        summary: Dict[str, Any] = {status: 0 for status in QUEUE_STATUSES}
        summary["by_entity_type"] = {}

        with self._session("queue_summary") as db:
            rows = db.query(
                SyncQueueItem.entity_type, SyncQueueItem.status, func.count(SyncQueueItem.id)
            ).filter(
                SyncQueueItem.tenant_id == tenant_id
            ).group_by(SyncQueueItem.entity_type, SyncQueueItem.status).all()

        for entity_type, status, count in rows:
            summary[status] = summary.get(status, 0) + count
            by_type = summary["by_entity_type"].setdefault(
                entity_type, {s: 0 for s in QUEUE_STATUSES}
            )
            by_type[status] = by_type.get(status, 0) + count
        return summary

    @staticmethod
    def _require_item(db: Session, item_id: int) -> SyncQueueItem:
        item = db.get(SyncQueueItem, item_id)
        if not item:
            raise StorageError(f"Queue item {item_id} not found")
        return item

    # ------------------------------------------------------------------
    # Sync status
    # ------------------------------------------------------------------

    def get_sync_status(self, tenant_id: str, entity_type: str) -> Optional[Dict[str, Any]]:
        with self._session("get_sync_status") as db:
            row = self._status_row(db, tenant_id, entity_type)
            return row.to_dict() if row else None

    def upsert_sync_status(
        self,
        tenant_id: str,
        entity_type: str,
        status: Optional[str] = None,
        total_items: Optional[int] = None,
        processed_items: Optional[int] = None,
        last_discover_at: Optional[datetime] = None,
        last_sync_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
        merge_metadata: bool = False,
    ) -> Dict[str, Any]:
        """
        Upsert the (tenant, entity type) status row.

        Only the fields passed are changed. metadata replaces the stored map
        unless merge_metadata is set.
        """
        with self._session("upsert_sync_status") as db:
            row = self._status_row(db, tenant_id, entity_type)
            if not row:
                row = SyncStatus(
                    tenant_id=tenant_id,
                    entity_type=entity_type,
                    status=IDLE,
                    total_items=0,
                    processed_items=0,
                    sync_metadata={},
                )
                db.add(row)

            if status is not None:
                row.status = status
            if total_items is not None:
                row.total_items = total_items
            if processed_items is not None:
                row.processed_items = processed_items
            if last_discover_at is not None:
                row.last_discover_at = last_discover_at
            if last_sync_at is not None:
                row.last_sync_at = last_sync_at
            if metadata is not None:
                if merge_metadata:
                    merged = dict(row.sync_metadata or {})
                    merged.update(metadata)
                    row.sync_metadata = merged
                else:
                    row.sync_metadata = dict(metadata)

            row.updated_at = datetime.utcnow()
            db.flush()
            return row.to_dict()

    @staticmethod
    def _status_row(db: Session, tenant_id: str, entity_type: str) -> Optional[SyncStatus]:
        return db.query(SyncStatus).filter(
            SyncStatus.tenant_id == tenant_id,
            SyncStatus.entity_type == entity_type,
        ).first()
