"""
LocalStore tests: snapshot upserts, queue bookkeeping and status rows.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storesync.exceptions import StorageError, ValidationError
from storesync.models.sync_queue import SyncQueueItem
from storesync.services.local_store import LocalStore

from conftest import product


# ────────────────────────────────────────────
# SNAPSHOTS
# ────────────────────────────────────────────


class TestSnapshots:

    def test_upsert_is_idempotent(self, store):
        """Writing the same record twice leaves one row with the same payload"""
        store.upsert_snapshots("t1", "products", [product(1)])
        first = store.get_snapshot("t1", "products", 1)

        store.upsert_snapshots("t1", "products", [product(1)])
        second = store.get_snapshot("t1", "products", 1)

        assert store.count_snapshots("t1", "products") == 1
        assert second["payload"] == first["payload"]
        assert second["synced_at"] >= first["synced_at"]

    def test_upsert_replaces_whole_record(self, store):
        store.upsert_snapshots("t1", "products", [product(1, sku="OLD", color="red")])
        store.upsert_snapshots("t1", "products", [product(1, "2024-05-02T00:00:00", sku="NEW")])

        snapshot = store.get_snapshot("t1", "products", 1)
        assert snapshot["sku"] == "NEW"
        assert snapshot["date_modified"] == "2024-05-02T00:00:00"
        assert "color" not in snapshot["payload"]

    def test_snapshot_index_is_tenant_scoped(self, store):
        store.upsert_snapshots("t1", "products", [product(1), product(2, "2024-01-01T00:00:00")])
        store.upsert_snapshots("t2", "products", [product(3)])

        assert store.snapshot_index("t1", "products") == {
            1: "2024-05-01T10:00:00",
            2: "2024-01-01T00:00:00",
        }

    def test_customer_name_from_parts(self, store):
        store.upsert_snapshots("t1", "customers", [
            {"id": 4, "first_name": "Ana", "last_name": "Lima", "email": "ana@example.com"},
            {"id": 5, "email": "only@example.com"},
        ])

        assert store.get_snapshot("t1", "customers", 4)["name"] == "Ana Lima"
        assert store.get_snapshot("t1", "customers", 5)["name"] == "only@example.com"

    def test_order_named_by_number(self, store):
        store.upsert_snapshots("t1", "orders", [{"id": 7, "number": "1042", "status": "processing"}])

        snapshot = store.get_snapshot("t1", "orders", 7)
        assert snapshot["name"] == "Order #1042"
        assert snapshot["status"] == "processing"

    def test_record_without_id_rejected(self, store):
        with pytest.raises(ValidationError):
            store.upsert_snapshots("t1", "products", [{"name": "no id"}])

    def test_delete_snapshot(self, store):
        store.upsert_snapshots("t1", "products", [product(1)])

        assert store.delete_snapshot("t1", "products", 1) is True
        assert store.delete_snapshot("t1", "products", 1) is False
        assert store.get_snapshot("t1", "products", 1) is None

    def test_replace_provisional_repoints_pending_items(self, store):
        store.upsert_snapshots("t1", "products", [{"id": -5, "name": "Draft"}])
        store.enqueue("t1", "products", -5, "update", {"name": "Draft 2"})

        repointed = store.replace_provisional("t1", "products", -5, {"id": 77, "name": "Draft"})

        assert repointed == 1
        assert store.get_snapshot("t1", "products", -5) is None
        assert store.get_snapshot("t1", "products", 77)["name"] == "Draft"
        assert [i["entity_id"] for i in store.pending_items("t1", "products")] == [77]


# ────────────────────────────────────────────
# QUEUE
# ────────────────────────────────────────────


class TestQueue:

    def test_default_priorities(self, store):
        update = store.enqueue("t1", "products", 1, "update", {"name": "x"})
        delete = store.enqueue("t1", "products", 2, "delete")
        explicit = store.enqueue("t1", "products", 3, "create", priority=4)

        assert update["priority"] == 0
        assert delete["priority"] == 10
        assert explicit["priority"] == 4
        assert update["status"] == "pending"
        assert update["attempts"] == 0

    def test_unknown_operation_rejected(self, store):
        with pytest.raises(ValidationError):
            store.enqueue("t1", "products", 1, "upsert")

    def test_select_batch_orders_by_priority_then_age(self, store):
        a = store.enqueue("t1", "products", 1, "update")
        b = store.enqueue("t1", "products", 2, "delete")
        c = store.enqueue("t1", "products", 3, "update")
        store.enqueue("t2", "products", 4, "delete")

        batch = store.select_batch("t1", batch_size=10, max_retries=3)

        assert [i["id"] for i in batch] == [b["id"], a["id"], c["id"]]

    def test_select_batch_skips_exhausted_items(self, store):
        item = store.enqueue("t1", "products", 1, "update")
        for _ in range(2):
            store.claim_item(item["id"])
            store.fail_item(item["id"], "boom", max_retries=5)

        assert store.select_batch("t1", 10, max_retries=2) == []
        assert len(store.select_batch("t1", 10, max_retries=3)) == 1

    def test_fail_item_caps_at_max_retries(self, store):
        item = store.enqueue("t1", "products", 1, "update")

        statuses = []
        for _ in range(3):
            claimed = store.claim_item(item["id"])
            statuses.append((claimed["attempts"], store.fail_item(item["id"], "boom", max_retries=3)))

        assert statuses == [(1, "pending"), (2, "pending"), (3, "failed")]
        assert store.get_item(item["id"])["last_error"] == "boom"

    def test_close_unsupported_keeps_attempts(self, store):
        item = store.enqueue("t1", "orders", 1, "update")

        store.close_unsupported(item["id"], "Unsupported entity type: orders")

        closed = store.get_item(item["id"])
        assert closed["status"] == "failed"
        assert closed["attempts"] == 0

    def test_release_stale_items(self, store, engine):
        fresh = store.enqueue("t1", "products", 1, "update")
        stale = store.enqueue("t1", "products", 2, "update")
        exhausted = store.enqueue("t1", "products", 3, "update")
        for item in (fresh, stale, exhausted):
            store.claim_item(item["id"])
        store.claim_item(exhausted["id"])

        db = sessionmaker(bind=engine)()
        old = datetime.utcnow() - timedelta(hours=2)
        db.query(SyncQueueItem).filter(
            SyncQueueItem.id.in_([stale["id"], exhausted["id"]])
        ).update({SyncQueueItem.updated_at: old}, synchronize_session=False)
        db.commit()
        db.close()

        released = store.release_stale_items("t1", stale_after_seconds=900, max_retries=2)

        assert released == 2
        assert store.get_item(fresh["id"])["status"] == "processing"
        assert store.get_item(stale["id"])["status"] == "pending"
        assert store.get_item(stale["id"])["attempts"] == 1
        assert store.get_item(exhausted["id"])["status"] == "failed"

    def test_queue_summary(self, store):
        store.enqueue("t1", "products", 1, "update")
        store.enqueue("t1", "products", 2, "delete")
        done = store.enqueue("t1", "customers", 3, "update")
        store.claim_item(done["id"])
        store.complete_item(done["id"])

        summary = store.queue_summary("t1")

        assert summary["pending"] == 2
        assert summary["completed"] == 1
        assert summary["failed"] == 0
        assert summary["by_entity_type"]["products"]["pending"] == 2
        assert summary["by_entity_type"]["customers"]["completed"] == 1


# ────────────────────────────────────────────
# STATUS
# ────────────────────────────────────────────


class TestSyncStatus:

    def test_upsert_creates_then_updates_one_row(self, store):
        store.upsert_sync_status("t1", "products", status="discovering")
        store.upsert_sync_status("t1", "products", status="discovered", total_items=3,
                                 metadata={"missing_ids": [1]})

        status = store.get_sync_status("t1", "products")
        assert status["status"] == "discovered"
        assert status["total_items"] == 3
        assert status["metadata"] == {"missing_ids": [1]}

    def test_merge_metadata(self, store):
        store.upsert_sync_status("t1", "products", metadata={"missing_ids": [1]})
        store.upsert_sync_status("t1", "products", metadata={"processed": 1}, merge_metadata=True)

        assert store.get_sync_status("t1", "products")["metadata"] == {"missing_ids": [1], "processed": 1}

    def test_missing_status(self, store):
        assert store.get_sync_status("t1", "products") is None


def test_database_errors_become_storage_errors():
    """A store pointed at a database without tables raises StorageError"""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    store = LocalStore(sessionmaker(bind=engine))

    with pytest.raises(StorageError):
        store.snapshot_index("t1", "products")
