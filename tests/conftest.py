"""
Shared fixtures: an in-memory database and an in-memory remote catalog.
"""
import os

# Keep test runs from writing log files
os.environ.setdefault("LOG_TO_FILE", "false")

from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storesync.config import CatalogConfig, Settings
from storesync.connectors.base import BaseConnector
from storesync.exceptions import NotFoundError, RemoteServerError
from storesync.models.base import init_db
from storesync.services.local_store import LocalStore
from storesync.services.notifier import NullNotifier
from storesync.services.sync_orchestrator import SyncOrchestrator


class FakeCatalog(BaseConnector):
    """In-memory remote catalog implementing the connector contract"""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None, entity_type: str = "products"):
        super().__init__(source_name="fake", entity_type=entity_type)
        self.records: Dict[int, Dict[str, Any]] = {int(r["id"]): dict(r) for r in records or []}
        self.next_id = 1000
        self.fail_fetch_ids = set()
        self.empty_fetch_ids = set()  # answered without a record
        self.fail_write_ids = set()
        self.fail_all_writes = False
        self.metadata_error: Optional[Exception] = None
        self.calls: List[tuple] = []

    async def fetch_all_metadata(self):
        self.calls.append(("fetch_all_metadata",))
        if self.metadata_error:
            raise self.metadata_error
        return [
            {"id": r["id"], "date_modified": r.get("date_modified"), "name": r.get("name")}
            for r in self.records.values()
        ]

    async def fetch_all_records(self, modified_after=None):
        self.calls.append(("fetch_all_records", modified_after))
        if self.metadata_error:
            raise self.metadata_error
        return [
            dict(r) for r in self.records.values()
            if not modified_after or (r.get("date_modified") or "") > modified_after
        ]

    async def fetch_one(self, entity_id):
        self.calls.append(("fetch_one", entity_id))
        if entity_id in self.fail_fetch_ids:
            raise RemoteServerError(f"fetch {entity_id} failed", 500)
        if entity_id in self.empty_fetch_ids:
            return None
        if entity_id not in self.records:
            raise NotFoundError(f"{entity_id} not found", 404)
        return dict(self.records[entity_id])

    async def create(self, payload):
        self.calls.append(("create", payload))
        if self.fail_all_writes:
            raise RemoteServerError("create failed", 500)
        record = dict(payload, id=self.next_id, date_modified="2024-06-01T00:00:00")
        self.records[self.next_id] = record
        self.next_id += 1
        return dict(record)

    async def update(self, entity_id, payload):
        self.calls.append(("update", entity_id))
        if self.fail_all_writes or entity_id in self.fail_write_ids:
            raise RemoteServerError(f"update {entity_id} failed", 500)
        if entity_id not in self.records:
            raise NotFoundError(f"{entity_id} not found", 404)
        self.records[entity_id].update(payload)
        self.records[entity_id]["date_modified"] = "2024-06-02T00:00:00"
        return dict(self.records[entity_id])

    async def delete(self, entity_id):
        self.calls.append(("delete", entity_id))
        if self.fail_all_writes or entity_id in self.fail_write_ids:
            raise RemoteServerError(f"delete {entity_id} failed", 500)
        if entity_id not in self.records:
            raise NotFoundError(f"{entity_id} not found", 404)
        del self.records[entity_id]
        return True


def product(entity_id: int, modified: str = "2024-05-01T10:00:00", **fields) -> Dict[str, Any]:
    record = {"id": entity_id, "name": f"Product {entity_id}", "sku": f"SKU-{entity_id}",
              "status": "publish", "date_modified": modified}
    record.update(fields)
    return record


@pytest.fixture
def settings():
    return Settings(
        log_to_file=False,
        catalog_page_delay_seconds=0,
        pull_batch_delay_seconds=0,
        queue_item_delay_seconds=0,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return LocalStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))


@pytest.fixture
def catalog():
    return FakeCatalog([product(1), product(2), product(3)])


@pytest.fixture
def config():
    return CatalogConfig.from_values("shop.example.com", "ck_test", "cs_test")


@pytest.fixture
def notifier():
    return NullNotifier()


@pytest.fixture
def orchestrator(store, catalog, notifier, settings):
    return SyncOrchestrator(
        store=store,
        client_factory=lambda config, entity_type: catalog,
        notifier=notifier,
        settings=settings,
    )
