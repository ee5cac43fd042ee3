"""
Sync Orchestrator

Public entry point of the sync engine. Runs discovery, pulls from the
remote catalog and queue replays for a tenant, and owns the sync status
state machine:

    idle -> discovering -> discovered -> syncing -> completed | partial | error

Every run leaves its status row in a settled state, whatever the outcome.
There is no retry loop here; callers re-invoke pull_from_remote / run_queue,
which are safe to repeat because every write is keyed by remote id.
"""
import asyncio
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from storesync.config import CatalogConfig, Settings, get_settings
from storesync.connectors.base import BaseConnector
from storesync.connectors.woocommerce import WooCommerceConnector
from storesync.exceptions import StorageError, UnknownError, ValidationError
from storesync.models.sync_status import (
    IDLE, DISCOVERING, DISCOVERED, SYNCING, COMPLETED, PARTIAL, ERROR,
    SyncStatusMetadata, is_allowed_transition
)
from storesync.services.discovery_service import ChangeSet, DiscoveryEngine
from storesync.services.local_store import LocalStore
from storesync.services.notifier import LogNotifier, SyncNotifier
from storesync.services.queue_processor import ClientFactory, QueueProcessor
from storesync.utils.logger import log

# Status row used for queue runs, which span entity types
QUEUE_STATUS_KEY = "sync_queue"


def woocommerce_client_factory(config: CatalogConfig, entity_type: str) -> BaseConnector:
    return WooCommerceConnector(config, entity_type=entity_type)


def _run_status(succeeded: int, failed: int) -> str:
    """completed when nothing failed, error when nothing succeeded, else partial"""
    if failed == 0:
        return COMPLETED
    if succeeded == 0:
        return ERROR
    return PARTIAL


def _unique_ids(ids: List[Any]) -> List[int]:
    seen = set()
    unique = []
    for raw in ids:
        try:
            entity_id = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid entity id: {raw!r}")
        if entity_id not in seen:
            seen.add(entity_id)
            unique.append(entity_id)
    return unique


class SyncOrchestrator:
    """
    Coordinates discovery, pulls and queue processing for one tenant at a time
    """

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        client_factory: Optional[ClientFactory] = None,
        notifier: Optional[SyncNotifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or LocalStore()
        self.client_factory = client_factory or woocommerce_client_factory
        self.notifier = notifier or LogNotifier()
        self.discovery = DiscoveryEngine(self.store)
        self.queue_processor = QueueProcessor(self.store, self.client_factory, settings=self.settings)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def discover(self, tenant_id: str, config: CatalogConfig, entity_type: str = "products") -> ChangeSet:
        """
        Diff the remote catalog against local state and persist the result.

        On failure the status row moves to error and the exception propagates.
        """
        connector = self.client_factory(config, entity_type)

        # A failed discovery must not leave the previous run's ids for a default pull
        stale_ids = {"missing_ids": [], "changed_ids": []}
        with self._track_run(tenant_id, entity_type, "discover", error_metadata=stale_ids):
            self._set_status(tenant_id, entity_type, DISCOVERING)

            changes = await self.discovery.discover(tenant_id, connector, entity_type)

            now = datetime.utcnow()
            metadata: SyncStatusMetadata = {
                "missing_ids": changes.missing_ids,
                "changed_ids": changes.changed_ids,
                "to_create_remotely": [c["id"] for c in changes.to_create_remotely],
                "to_update_remotely": [c["id"] for c in changes.to_update_remotely],
                "to_delete_remotely": changes.to_delete_remotely,
                "conflicts": changes.conflicts,
                "last_modified": changes.last_modified,
                "remote_count": changes.total_items,
                "local_count": changes.local_count,
                "discovered_at": now.isoformat(),
                "total_passes": self._completed_passes(tenant_id, entity_type),
            }
            self._set_status(
                tenant_id,
                entity_type,
                DISCOVERED,
                total_items=changes.total_items,
                processed_items=0,
                last_discover_at=now,
                metadata=metadata,
            )

        self._notify(
            "discover.completed",
            "warning" if changes.conflicts else "success",
            f"{len(changes.missing_ids)} missing, {len(changes.changed_ids)} changed, "
            f"{len(changes.conflicts)} conflicts",
            tenant_id=tenant_id,
            entity_type=entity_type,
        )
        return changes

    async def pull_from_remote(
        self,
        tenant_id: str,
        config: CatalogConfig,
        ids: Optional[List[int]] = None,
        entity_type: str = "products",
        batch_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Fetch full remote records by id and upsert them as snapshots.

        Args:
            ids: Remote ids to pull; defaults to missing + changed ids of the
                last discovery
            batch_size: Ids per batch (default from settings)

        Returns:
            Dict with status, requested, processed, errors, failed_ids
        """
        connector = self.client_factory(config, entity_type)
        batch_size = batch_size or self.settings.pull_batch_size

        if ids is None:
            ids = self._discovered_pull_ids(tenant_id, entity_type)
        ids = _unique_ids(ids)
        requested = len(ids)

        with self._track_run(tenant_id, entity_type, "pull"):
            self._set_status(
                tenant_id,
                entity_type,
                SYNCING,
                total_items=requested,
                processed_items=0,
                metadata={"sync_direction": "from_remote", "requested": requested},
                merge_metadata=True,
            )

            processed = 0
            failed_ids: List[int] = []

            for start in range(0, requested, batch_size):
                if start > 0 and self.settings.pull_batch_delay_seconds > 0:
                    await asyncio.sleep(self.settings.pull_batch_delay_seconds)

                batch = ids[start:start + batch_size]
                records = []
                for entity_id in batch:
                    try:
                        record = await connector.fetch_one(entity_id)
                        if not isinstance(record, dict) or record.get("id") is None:
                            raise UnknownError(f"Remote returned no record for {entity_type} {entity_id}")
                        records.append(record)
                    except Exception as e:
                        log.warning(f"Failed to fetch {entity_type} {entity_id} for tenant {tenant_id}: {e}")
                        failed_ids.append(entity_id)

                if records:
                    try:
                        self.store.upsert_snapshots(tenant_id, entity_type, records)
                        processed += len(records)
                    except StorageError as e:
                        log.error(f"Failed to store {len(records)} {entity_type} records: {e}")
                        failed_ids.extend(int(r["id"]) for r in records if r.get("id") is not None)

                log.info(
                    f"Pull batch {start // batch_size + 1} for tenant {tenant_id}: "
                    f"{processed}/{requested} {entity_type} stored"
                )
                self.store.upsert_sync_status(tenant_id, entity_type, processed_items=processed)

            status = _run_status(processed, len(failed_ids))
            metadata: SyncStatusMetadata = {
                "sync_direction": "from_remote",
                "requested": requested,
                "processed": processed,
                "errors": len(failed_ids),
                "failed_ids": failed_ids,
                "total_passes": self._completed_passes(tenant_id, entity_type) + 1,
            }
            if status == ERROR:
                metadata["error"] = f"All {requested} requested records failed"
                metadata["error_type"] = "PullFailed"
            self._set_status(
                tenant_id,
                entity_type,
                status,
                processed_items=processed,
                last_sync_at=datetime.utcnow(),
                metadata=metadata,
                merge_metadata=True,
            )

        self._notify(
            "pull.completed",
            "success" if status == COMPLETED else "warning",
            f"{processed}/{requested} {entity_type} pulled ({status})",
            tenant_id=tenant_id,
            entity_type=entity_type,
            failed_ids=failed_ids,
        )
        return {
            "status": status,
            "requested": requested,
            "processed": processed,
            "errors": len(failed_ids),
            "failed_ids": failed_ids,
        }

    async def resync_all(
        self,
        tenant_id: str,
        config: CatalogConfig,
        entity_type: str = "products",
        force_full_sync: bool = True,
    ) -> Dict[str, Any]:
        """
        Re-pull the remote catalog as full records, ignoring discovery.

        With force_full_sync off, only records modified since the row's
        last_sync_at are listed (everything when there was no previous sync).
        A failed remote scan aborts the run; storage failures are counted per batch.
        """
        connector = self.client_factory(config, entity_type)
        batch_size = self.settings.pull_batch_size

        modified_after = None
        if not force_full_sync:
            modified_after = (self.store.get_sync_status(tenant_id, entity_type) or {}).get("last_sync_at")

        with self._track_run(tenant_id, entity_type, "resync"):
            self._set_status(
                tenant_id,
                entity_type,
                SYNCING,
                processed_items=0,
                metadata={
                    "sync_direction": "from_remote",
                    "force_full_sync": force_full_sync,
                    "modified_after": modified_after,
                },
                merge_metadata=True,
            )

            records = await connector.fetch_all_records(modified_after=modified_after)
            total = len(records)
            self.store.upsert_sync_status(tenant_id, entity_type, total_items=total)

            processed = 0
            failed_ids: List[int] = []
            for start in range(0, total, batch_size):
                batch = records[start:start + batch_size]
                try:
                    self.store.upsert_snapshots(tenant_id, entity_type, batch)
                    processed += len(batch)
                except StorageError as e:
                    log.error(f"Failed to store resync batch for tenant {tenant_id}: {e}")
                    failed_ids.extend(int(r["id"]) for r in batch if r.get("id") is not None)
                self.store.upsert_sync_status(tenant_id, entity_type, processed_items=processed)

            status = _run_status(processed, len(failed_ids))
            self._set_status(
                tenant_id,
                entity_type,
                status,
                processed_items=processed,
                last_sync_at=datetime.utcnow(),
                metadata={
                    "requested": total,
                    "processed": processed,
                    "errors": len(failed_ids),
                    "failed_ids": failed_ids,
                    "total_passes": self._completed_passes(tenant_id, entity_type) + 1,
                },
                merge_metadata=True,
            )

        self._notify(
            "resync.completed",
            "success" if status == COMPLETED else "warning",
            f"{processed}/{total} {entity_type} re-synced ({status})",
            tenant_id=tenant_id,
            entity_type=entity_type,
        )
        return {"status": status, "requested": total, "processed": processed,
                "errors": len(failed_ids), "failed_ids": failed_ids}

    async def run_queue(
        self,
        tenant_id: str,
        config: CatalogConfig,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Replay one batch of queued local edits and record the counts"""
        with self._track_run(tenant_id, QUEUE_STATUS_KEY, "queue"):
            self._set_status(
                tenant_id,
                QUEUE_STATUS_KEY,
                SYNCING,
                processed_items=0,
                metadata={"sync_direction": "to_remote"},
                merge_metadata=True,
            )

            result = await self.queue_processor.process_queue(tenant_id, config, batch_size, max_retries)

            status = _run_status(result.processed, result.errors)
            self._set_status(
                tenant_id,
                QUEUE_STATUS_KEY,
                status,
                total_items=result.processed + result.errors + result.skipped,
                processed_items=result.processed,
                last_sync_at=datetime.utcnow(),
                metadata={
                    "processed": result.processed,
                    "errors": result.errors,
                    "skipped": result.skipped,
                    "failed_item_ids": result.failed_item_ids,
                },
                merge_metadata=True,
            )

        self._notify(
            "queue.completed",
            "success" if status == COMPLETED else "warning",
            f"{result.processed} processed, {result.errors} errors, {result.skipped} skipped",
            tenant_id=tenant_id,
        )
        summary = result.to_dict()
        summary["status"] = status
        return summary

    def enqueue_change(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: int,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Queue a local edit for replay against the remote catalog"""
        entity_id = _unique_ids([entity_id])[0]
        return self.store.enqueue(tenant_id, entity_type, entity_id, operation, payload, priority)

    def get_status(self, tenant_id: str, entity_type: str = "products") -> Dict[str, Any]:
        status = self.store.get_sync_status(tenant_id, entity_type)
        if status:
            return status
        return {
            "tenant_id": tenant_id,
            "entity_type": entity_type,
            "status": IDLE,
            "total_items": 0,
            "processed_items": 0,
            "last_discover_at": None,
            "last_sync_at": None,
            "metadata": {},
            "updated_at": None,
        }

    def queue_summary(self, tenant_id: str) -> Dict[str, Any]:
        return self.store.queue_summary(tenant_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _discovered_pull_ids(self, tenant_id: str, entity_type: str) -> List[int]:
        status = self.store.get_sync_status(tenant_id, entity_type) or {}
        metadata = status.get("metadata") or {}
        return list(metadata.get("missing_ids") or []) + list(metadata.get("changed_ids") or [])

    def _completed_passes(self, tenant_id: str, entity_type: str) -> int:
        """Pull and resync runs recorded so far on this row"""
        status = self.store.get_sync_status(tenant_id, entity_type) or {}
        return int((status.get("metadata") or {}).get("total_passes") or 0)

    def _set_status(self, tenant_id: str, entity_type: str, target: str, **fields) -> Dict[str, Any]:
        """Write a status transition; unexpected transitions are logged, not refused"""
        current = self.store.get_sync_status(tenant_id, entity_type)
        current_status = current["status"] if current else IDLE
        if not is_allowed_transition(current_status, target):
            log.warning(
                f"Unexpected sync status transition {current_status} -> {target} "
                f"for tenant {tenant_id} {entity_type}"
            )
        return self.store.upsert_sync_status(tenant_id, entity_type, status=target, **fields)

    @contextmanager
    def _track_run(
        self,
        tenant_id: str,
        entity_type: str,
        operation: str,
        error_metadata: Optional[Dict[str, Any]] = None,
    ):
        """
        Notify on start and, on any exception, settle the status row in error
        (merging error_metadata into its metadata) and re-raise.
        """
        start_time = time.time()
        self._notify(f"{operation}.started", "info", f"{operation} started",
                     tenant_id=tenant_id, entity_type=entity_type)
        try:
            yield
        except Exception as e:
            log.error(f"Sync {operation} failed for tenant {tenant_id} {entity_type}: {e}")
            try:
                self._set_status(
                    tenant_id,
                    entity_type,
                    ERROR,
                    metadata={**(error_metadata or {}), "error": str(e), "error_type": type(e).__name__},
                    merge_metadata=True,
                )
            except StorageError as status_error:
                log.error(f"Could not record error status for tenant {tenant_id}: {status_error}")
            self._notify(f"{operation}.failed", "error", str(e),
                         tenant_id=tenant_id, entity_type=entity_type, error_type=type(e).__name__)
            raise
        finally:
            log.debug(f"Sync {operation} for tenant {tenant_id} took {time.time() - start_time:.2f}s")

    def _notify(self, event: str, level: str, message: str, **context):
        try:
            self.notifier.notify(event, level, message, **context)
        except Exception as e:
            log.warning(f"Notifier failed on {event}: {e}")
