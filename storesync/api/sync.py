"""
Catalog synchronization endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from storesync.config import CatalogConfig
from storesync.exceptions import SyncError, StorageError, ValidationError
from storesync.services.sync_orchestrator import SyncOrchestrator
from storesync.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])


class ConnectionIn(BaseModel):
    base_url: str
    api_key: str
    api_secret: str

    def to_config(self) -> CatalogConfig:
        return CatalogConfig.from_values(self.base_url, self.api_key, self.api_secret)


class DiscoverRequest(BaseModel):
    connection: ConnectionIn
    entity_type: str = "products"


class PullRequest(BaseModel):
    connection: ConnectionIn
    entity_type: str = "products"
    ids: Optional[List[int]] = None  # defaults to missing + changed from the last discovery
    batch_size: Optional[int] = Field(default=None, ge=1, le=100)


class ResyncRequest(BaseModel):
    connection: ConnectionIn
    entity_type: str = "products"
    force_full_sync: bool = True  # false: only records modified since the last sync


class ProcessQueueRequest(BaseModel):
    connection: ConnectionIn
    batch_size: Optional[int] = Field(default=None, ge=1, le=100)
    max_retries: Optional[int] = Field(default=None, ge=1, le=20)


class EnqueueRequest(BaseModel):
    entity_type: str = "products"
    entity_id: int
    operation: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: Optional[int] = None


# Lazy-init so importing the router does not touch the database
_orchestrator = None


def get_orchestrator() -> SyncOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SyncOrchestrator()
    return _orchestrator


def _http_error(e: SyncError) -> HTTPException:
    """Map engine errors to HTTP status codes"""
    if isinstance(e, ValidationError):
        status_code = 422
    elif isinstance(e, StorageError):
        status_code = 500
    else:
        # Remote catalog failures are upstream failures
        status_code = 502
    return HTTPException(status_code=status_code, detail=e.to_dict())


@router.post("/{tenant_id}/discover")
async def discover_changes(
    tenant_id: str,
    request: DiscoverRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Compare the remote catalog with local snapshots and the pending queue.
    The result is also stored on the tenant's sync status.
    """
    try:
        changes = await orchestrator.discover(tenant_id, request.connection.to_config(), request.entity_type)
        return {"success": True, "tenant_id": tenant_id, "changes": changes.to_dict()}
    except SyncError as e:
        log.error(f"Discover error for tenant {tenant_id}: {e}")
        raise _http_error(e)


@router.post("/{tenant_id}/pull")
async def pull_from_remote(
    tenant_id: str,
    request: PullRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Fetch full remote records by id into local snapshots"""
    try:
        result = await orchestrator.pull_from_remote(
            tenant_id,
            request.connection.to_config(),
            ids=request.ids,
            entity_type=request.entity_type,
            batch_size=request.batch_size,
        )
        return {"success": result["status"] != "error", "tenant_id": tenant_id, **result}
    except SyncError as e:
        log.error(f"Pull error for tenant {tenant_id}: {e}")
        raise _http_error(e)


@router.post("/{tenant_id}/resync")
async def resync_all(
    tenant_id: str,
    request: ResyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Re-pull the remote catalog (all of it, or what changed since the last sync) regardless of discovery"""
    try:
        result = await orchestrator.resync_all(
            tenant_id,
            request.connection.to_config(),
            request.entity_type,
            force_full_sync=request.force_full_sync,
        )
        return {"success": result["status"] != "error", "tenant_id": tenant_id, **result}
    except SyncError as e:
        log.error(f"Resync error for tenant {tenant_id}: {e}")
        raise _http_error(e)


@router.post("/{tenant_id}/queue/process")
async def process_queue(
    tenant_id: str,
    request: ProcessQueueRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Replay one batch of queued local edits against the remote catalog"""
    try:
        result = await orchestrator.run_queue(
            tenant_id,
            request.connection.to_config(),
            batch_size=request.batch_size,
            max_retries=request.max_retries,
        )
        return {"success": True, "tenant_id": tenant_id, **result}
    except SyncError as e:
        log.error(f"Queue processing error for tenant {tenant_id}: {e}")
        raise _http_error(e)


@router.post("/{tenant_id}/queue")
def enqueue_change(
    tenant_id: str,
    request: EnqueueRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Queue a local create / update / delete for the remote catalog"""
    try:
        item = orchestrator.enqueue_change(
            tenant_id,
            request.entity_type,
            request.entity_id,
            request.operation,
            payload=request.payload,
            priority=request.priority,
        )
        return {"success": True, "item": item}
    except SyncError as e:
        raise _http_error(e)


@router.get("/{tenant_id}/status")
def get_sync_status(
    tenant_id: str,
    entity_type: str = Query("products", description="products, customers, orders, categories or sync_queue"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Current sync status; the dashboard polls this for progress"""
    try:
        return orchestrator.get_status(tenant_id, entity_type)
    except SyncError as e:
        raise _http_error(e)


@router.get("/{tenant_id}/queue/summary")
def get_queue_summary(
    tenant_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Queue item counts by status and entity type"""
    try:
        return orchestrator.queue_summary(tenant_id)
    except SyncError as e:
        raise _http_error(e)
