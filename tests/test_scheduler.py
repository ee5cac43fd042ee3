"""
Scheduler tests: tenant parsing and the queue replay job.
"""
import asyncio
import json

import pytest

from storesync import scheduler as scheduler_module
from storesync.exceptions import ValidationError
from storesync.scheduler import load_scheduled_tenants, run_scheduled_queues


def _run(coro):
    """Run an async coroutine in a sync test."""
    return asyncio.run(coro)


TENANTS = json.dumps({
    "t1": {"base_url": "one.example.com", "api_key": "ck_1", "api_secret": "cs_1"},
    "t2": {"base_url": "https://two.example.com/", "api_key": "ck_2", "api_secret": "cs_2"},
})


class TestLoadScheduledTenants:

    def test_parses_connections(self):
        tenants = load_scheduled_tenants(TENANTS)

        assert set(tenants) == {"t1", "t2"}
        assert tenants["t1"].base_url == "https://one.example.com"
        assert tenants["t2"].base_url == "https://two.example.com"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_setting(self, raw):
        assert load_scheduled_tenants(raw) == {}

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"t1": "shop.example.com"}'])
    def test_malformed_setting(self, raw):
        with pytest.raises(ValidationError):
            load_scheduled_tenants(raw)

    def test_missing_credentials(self):
        with pytest.raises(ValidationError):
            load_scheduled_tenants(json.dumps({"t1": {"base_url": "shop.example.com"}}))


def test_replays_each_tenant_queue(monkeypatch, orchestrator, catalog):
    monkeypatch.setattr(scheduler_module.settings, "scheduled_tenants", TENANTS)
    orchestrator.enqueue_change("t1", "products", 1, "update", {"name": "Scheduled"})

    results = _run(run_scheduled_queues(orchestrator))

    assert results["t1"]["processed"] == 1
    assert results["t2"]["processed"] == 0
    assert catalog.records[1]["name"] == "Scheduled"


def test_one_tenant_failing_does_not_stop_others(monkeypatch):
    monkeypatch.setattr(scheduler_module.settings, "scheduled_tenants", TENANTS)
    calls = []

    class FlakyOrchestrator:
        async def run_queue(self, tenant_id, config):
            calls.append(tenant_id)
            if tenant_id == "t1":
                raise RuntimeError("database locked")
            return {"status": "completed", "processed": 0}

    results = _run(run_scheduled_queues(FlakyOrchestrator()))

    assert calls == ["t1", "t2"]
    assert results["t1"] == {"status": "error", "error": "database locked"}
    assert results["t2"]["status"] == "completed"


def test_scheduler_disabled_by_default():
    assert scheduler_module.start_scheduler() is False
    assert scheduler_module.get_scheduler_status()["running"] is False
