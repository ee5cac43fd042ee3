"""
Queue Processor

Drains the mutation queue for a tenant: replays each pending local edit
against the remote catalog, then brings the local snapshot in line with
what the remote returned.

Delivery is at-least-once. An item's attempt is counted and committed
before the remote call, so a crash mid-call never hands out a free retry.
"""
import asyncio
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from storesync.config import CatalogConfig, Settings, get_settings
from storesync.connectors.base import BaseConnector
from storesync.connectors.woocommerce import RESOURCES
from storesync.exceptions import NotFoundError, StorageError, UnknownError
from storesync.models.sync_queue import CREATE, UPDATE, DELETE, FAILED
from storesync.services.local_store import LocalStore
from storesync.utils.logger import log

ClientFactory = Callable[[CatalogConfig, str], BaseConnector]


@dataclass
class QueueRunResult:
    """Counts for one process_queue call"""
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    released: int = 0
    failed_item_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class QueueProcessor:
    """
    Replays queued creates, updates and deletes in priority order
    """

    def __init__(
        self,
        store: LocalStore,
        client_factory: ClientFactory,
        settings: Optional[Settings] = None,
        supported_entity_types: Optional[Iterable[str]] = None,
    ):
        self.store = store
        self.client_factory = client_factory
        self.settings = settings or get_settings()
        self.supported_entity_types = set(supported_entity_types or RESOURCES.keys())
        self.handlers = {
            CREATE: self._handle_create,
            UPDATE: self._handle_update,
            DELETE: self._handle_delete,
        }

    async def process_queue(
        self,
        tenant_id: str,
        config: CatalogConfig,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> QueueRunResult:
        """
        Process one batch of pending items for a tenant.

        Args:
            tenant_id: Tenant whose queue to drain
            config: Tenant connection to the remote catalog
            batch_size: Max items this call (default from settings)
            max_retries: Attempt cap per item (default from settings)

        Returns:
            QueueRunResult with processed / errors / skipped counts
        """
        batch_size = batch_size or self.settings.queue_batch_size
        max_retries = max_retries or self.settings.queue_max_retries
        result = QueueRunResult()

        result.released = self.store.release_stale_items(
            tenant_id, self.settings.queue_stale_after_seconds, max_retries
        )

        items = self.store.select_batch(tenant_id, batch_size, max_retries)
        if not items:
            log.info(f"No pending queue items for tenant {tenant_id}")
            return result

        log.info(f"Processing {len(items)} queue items for tenant {tenant_id}")
        connectors: Dict[str, BaseConnector] = {}

        for index, item in enumerate(items):
            if index > 0 and self.settings.queue_item_delay_seconds > 0:
                await asyncio.sleep(self.settings.queue_item_delay_seconds)

            entity_type = item["entity_type"]
            handler = self.handlers.get(item["operation"])

            if entity_type not in self.supported_entity_types or handler is None:
                reason = (
                    f"Unsupported entity type: {entity_type}"
                    if entity_type not in self.supported_entity_types
                    else f"Unsupported operation: {item['operation']}"
                )
                log.warning(f"Skipping queue item {item['id']}: {reason}")
                self.store.close_unsupported(item["id"], reason)
                result.skipped += 1
                continue

            # Storage and remote failures alike count against this item only
            claimed = None
            try:
                claimed = self.store.claim_item(item["id"])
                if entity_type not in connectors:
                    connectors[entity_type] = self.client_factory(config, entity_type)
                await handler(tenant_id, connectors[entity_type], claimed)
                self.store.complete_item(claimed["id"])
            except Exception as e:
                result.errors += 1
                attempts = claimed["attempts"] if claimed else item["attempts"]
                log.error(
                    f"Queue item {item['id']} ({item['operation']} {entity_type} "
                    f"{item['entity_id']}) failed on attempt {attempts}/{max_retries}: {e}"
                )
                try:
                    new_status = self.store.fail_item(item["id"], str(e), max_retries)
                except StorageError as record_error:
                    # Left as is; a claimed item comes back through release_stale_items
                    log.error(f"Could not record failure of queue item {item['id']}: {record_error}")
                    continue
                if new_status == FAILED:
                    result.failed_item_ids.append(item["id"])
                continue

            result.processed += 1

        log.info(
            f"Queue run for tenant {tenant_id}: {result.processed} processed, "
            f"{result.errors} errors, {result.skipped} skipped"
        )
        return result

    # ------------------------------------------------------------------
    # Operation handlers
    # ------------------------------------------------------------------

    async def _handle_create(self, tenant_id: str, connector: BaseConnector, item: Dict[str, Any]):
        record = await connector.create(item.get("payload") or {})
        if not record or record.get("id") is None:
            raise UnknownError("Remote create returned no id")
        self.store.replace_provisional(tenant_id, item["entity_type"], int(item["entity_id"]), record)

    async def _handle_update(self, tenant_id: str, connector: BaseConnector, item: Dict[str, Any]):
        entity_id = int(item["entity_id"])
        record = await connector.update(entity_id, item.get("payload") or {})
        if not record:
            record = await connector.fetch_one(entity_id)
        self.store.upsert_snapshots(tenant_id, item["entity_type"], [record])

    async def _handle_delete(self, tenant_id: str, connector: BaseConnector, item: Dict[str, Any]):
        entity_id = int(item["entity_id"])
        try:
            await connector.delete(entity_id)
        except NotFoundError:
            log.info(f"{item['entity_type']} {entity_id} already gone remotely, treating delete as done")
        self.store.delete_snapshot(tenant_id, item["entity_type"], entity_id)
