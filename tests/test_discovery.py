"""
Discovery tests: remote/local diffing and queue collapse.
"""
import asyncio

from storesync.services.discovery_service import (
    CREATE_CONFLICT,
    UPDATE_MISSING,
    DiscoveryEngine,
    collapse_pending_items,
)

from conftest import FakeCatalog, product


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


def _item(entity_id, operation, payload=None):
    return {"entity_id": entity_id, "operation": operation, "payload": payload or {}}


# ────────────────────────────────────────────
# QUEUE COLLAPSE
# ────────────────────────────────────────────


class TestCollapse:

    def test_create_then_update_yields_update(self):
        result = collapse_pending_items([_item(5, "create"), _item(5, "update", {"name": "B"})])
        assert result[5]["operation"] == "update"
        assert result[5]["payload"] == {"name": "B"}

    def test_create_then_delete_yields_delete(self):
        result = collapse_pending_items([_item(5, "create"), _item(5, "delete")])
        assert result[5]["operation"] == "delete"

    def test_delete_is_not_overridden(self):
        result = collapse_pending_items([_item(5, "delete"), _item(5, "update")])
        assert result[5]["operation"] == "delete"

    def test_independent_ids(self):
        result = collapse_pending_items([_item(1, "update"), _item(2, "delete")])
        assert set(result) == {1, 2}


# ────────────────────────────────────────────
# DIFFING
# ────────────────────────────────────────────


class TestDiscover:

    def test_missing_and_changed(self, store):
        """Remote {1,2,3}, local {2 (old), 3 (same)} -> missing [1], changed [2]"""
        catalog = FakeCatalog([
            product(1),
            product(2, "2024-05-03T00:00:00"),
            product(3, "2024-05-01T10:00:00"),
        ])
        store.upsert_snapshots("t1", "products", [
            product(2, "2024-04-01T00:00:00"),
            product(3, "2024-05-01T10:00:00"),
        ])

        changes = _run(DiscoveryEngine(store).discover("t1", catalog, "products"))

        assert changes.missing_ids == [1]
        assert changes.changed_ids == [2]
        assert changes.total_items == 3
        assert changes.local_count == 2
        assert changes.last_modified == "2024-05-03T00:00:00"
        assert changes.pull_ids == [1, 2]

    def test_missing_and_changed_never_overlap(self, store):
        catalog = FakeCatalog([product(i, f"2024-05-0{i}T00:00:00") for i in range(1, 6)])
        store.upsert_snapshots("t1", "products", [product(2), product(4, "2024-05-04T00:00:00")])

        changes = _run(DiscoveryEngine(store).discover("t1", catalog, "products"))

        assert not set(changes.missing_ids) & set(changes.changed_ids)
        assert sorted(changes.missing_ids) == [1, 3, 5]
        assert changes.changed_ids == [2]

    def test_in_sync_catalog(self, store):
        catalog = FakeCatalog([product(1)])
        store.upsert_snapshots("t1", "products", [product(1)])

        changes = _run(DiscoveryEngine(store).discover("t1", catalog, "products"))

        assert changes.missing_ids == []
        assert changes.changed_ids == []
        assert changes.conflicts == []

    def test_local_changes_are_classified(self, store):
        catalog = FakeCatalog([product(1), product(2), product(3)])
        store.enqueue("t1", "products", 900, "create", {"name": "New"})
        store.enqueue("t1", "products", 1, "update", {"name": "Renamed"})
        store.enqueue("t1", "products", 2, "delete")
        store.enqueue("t1", "products", 901, "delete")

        changes = _run(DiscoveryEngine(store).discover("t1", catalog, "products"))

        assert changes.to_create_remotely == [{"id": 900, "data": {"name": "New"}}]
        assert changes.to_update_remotely == [{"id": 1, "data": {"name": "Renamed"}}]
        assert changes.to_delete_remotely == [2]
        # deleting something already gone is not a conflict
        assert changes.conflicts == []

    def test_conflicts_carry_both_sides(self, store):
        catalog = FakeCatalog([product(1)])
        store.enqueue("t1", "products", 1, "create", {"name": "Dup"})
        store.enqueue("t1", "products", 44, "update", {"name": "Ghost"})

        changes = _run(DiscoveryEngine(store).discover("t1", catalog, "products"))

        by_type = {c["type"]: c for c in changes.conflicts}
        assert by_type[CREATE_CONFLICT]["id"] == 1
        assert by_type[CREATE_CONFLICT]["local"] == {"name": "Dup"}
        assert by_type[CREATE_CONFLICT]["remote"]["id"] == 1
        assert by_type[UPDATE_MISSING]["id"] == 44
        assert by_type[UPDATE_MISSING]["remote"] is None
        assert changes.to_create_remotely == []
        assert changes.to_update_remotely == []

    def test_create_then_delete_is_not_created(self, store):
        catalog = FakeCatalog([])
        store.enqueue("t1", "products", 900, "create", {"name": "Short-lived"})
        store.enqueue("t1", "products", 900, "delete")

        changes = _run(DiscoveryEngine(store).discover("t1", catalog, "products"))

        assert changes.to_create_remotely == []
        assert changes.to_delete_remotely == []
        assert changes.conflicts == []

    def test_other_tenants_and_types_ignored(self, store):
        catalog = FakeCatalog([product(1)])
        store.upsert_snapshots("t2", "products", [product(1)])
        store.enqueue("t1", "customers", 1, "create", {"email": "x@example.com"})

        changes = _run(DiscoveryEngine(store).discover("t1", catalog, "products"))

        assert changes.missing_ids == [1]
        assert changes.conflicts == []

    def test_discovery_writes_nothing(self, store):
        catalog = FakeCatalog([product(1)])

        _run(DiscoveryEngine(store).discover("t1", catalog, "products"))

        assert store.get_sync_status("t1", "products") is None
        assert store.count_snapshots("t1", "products") == 0
