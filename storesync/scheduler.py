"""
Scheduler for automated queue replays

Uses APScheduler to drain each configured tenant's mutation queue at a
fixed interval. Tenants and their connections come from the
SCHEDULED_TENANTS setting (JSON).
"""
import json
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Dict, Optional

from storesync.config import CatalogConfig, get_settings
from storesync.exceptions import ValidationError
from storesync.services.sync_orchestrator import SyncOrchestrator
from storesync.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()

QUEUE_JOB_ID = "queue_replay"


def load_scheduled_tenants(raw: Optional[str]) -> Dict[str, CatalogConfig]:
    """
    Parse the scheduled tenants setting.

    Example:
        {"org-1": {"base_url": "shop.example.com", "api_key": "ck_x", "api_secret": "cs_x"}}
    """
    if not raw or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"SCHEDULED_TENANTS is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ValidationError("SCHEDULED_TENANTS must be a JSON object keyed by tenant id")

    tenants = {}
    for tenant_id, connection in data.items():
        if not isinstance(connection, dict):
            raise ValidationError(f"Connection for tenant {tenant_id} must be an object")
        tenants[tenant_id] = CatalogConfig.from_values(
            connection.get("base_url", ""),
            connection.get("api_key", ""),
            connection.get("api_secret", ""),
        )
    return tenants


async def run_scheduled_queues(orchestrator: Optional[SyncOrchestrator] = None) -> Dict[str, dict]:
    """Run one queue batch per scheduled tenant; one tenant failing does not stop the rest"""
    orchestrator = orchestrator or SyncOrchestrator()
    tenants = load_scheduled_tenants(settings.scheduled_tenants)
    results = {}

    for tenant_id, config in tenants.items():
        try:
            log.info(f"Scheduled queue run for tenant {tenant_id}...")
            results[tenant_id] = await orchestrator.run_queue(tenant_id, config)
        except Exception as e:
            log.error(f"Scheduled queue run failed for tenant {tenant_id}: {e}")
            results[tenant_id] = {"status": "error", "error": str(e)}

    return results


def setup_scheduler():
    """
    Register the queue replay job.

    Interval: QUEUE_SCHEDULE_MINUTES (default every 5 minutes)
    """
    scheduler.add_job(
        run_scheduled_queues,
        trigger=IntervalTrigger(minutes=settings.queue_schedule_minutes),
        id=QUEUE_JOB_ID,
        name="Mutation Queue Replay",
        replace_existing=True,
        max_instances=1
    )


def start_scheduler() -> bool:
    """Start the scheduler if enabled; returns whether it is running"""
    if not settings.enable_queue_scheduler:
        log.info("Queue scheduler disabled")
        return False
    setup_scheduler()
    scheduler.start()
    log.info(f"Scheduler started (queue replay every {settings.queue_schedule_minutes} min)")
    return True


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    job = scheduler.get_job(QUEUE_JOB_ID) if scheduler.running else None
    return {
        "enabled": settings.enable_queue_scheduler,
        "running": scheduler.running,
        "next_run_at": job.next_run_time.isoformat() if job and job.next_run_time else None,
    }
