"""
Discovery Service

Compares the remote catalog against the local snapshots and the pending
mutation queue, and reports what differs in each direction. Discovery only
reads; persisting the result is the orchestrator's job.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from storesync.connectors.base import BaseConnector
from storesync.models.sync_queue import CREATE, UPDATE, DELETE
from storesync.services.local_store import LocalStore
from storesync.utils.logger import log

# Conflict kinds
CREATE_CONFLICT = "create_conflict"  # queued create for an id the remote already has
UPDATE_MISSING = "update_missing"  # queued update for an id the remote no longer has


@dataclass
class ChangeSet:
    """Differences found by one discovery run"""
    total_items: int = 0
    local_count: int = 0
    missing_ids: List[int] = field(default_factory=list)
    changed_ids: List[int] = field(default_factory=list)
    to_create_remotely: List[Dict[str, Any]] = field(default_factory=list)
    to_update_remotely: List[Dict[str, Any]] = field(default_factory=list)
    to_delete_remotely: List[int] = field(default_factory=list)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    last_modified: Optional[str] = None

    @property
    def pull_ids(self) -> List[int]:
        """Ids a follow-up pull should fetch"""
        return self.missing_ids + self.changed_ids

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def collapse_pending_items(items: List[Dict[str, Any]]) -> Dict[int, Dict[str, Any]]:
    """
    Reduce pending queue items to one authoritative item per entity id.

    Items must be in creation order. The most recent item wins, except that
    once a delete is seen for an id no later create/update replaces it.
    """
    authoritative: Dict[int, Dict[str, Any]] = {}
    for item in items:
        entity_id = int(item["entity_id"])
        existing = authoritative.get(entity_id)
        if existing and existing["operation"] == DELETE:
            continue
        authoritative[entity_id] = item
    return authoritative


def _parse_modified(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return date_parser.isoparse(value)
    except (ValueError, OverflowError):
        log.warning(f"Unparseable date_modified value: {value!r}")
        return None


def _latest_modified(values: List[Optional[str]]) -> Optional[str]:
    """Most recent date_modified, returned in the remote's own format"""
    latest_value = None
    latest_parsed = None
    for value in values:
        parsed = _parse_modified(value)
        if parsed is None:
            continue
        # Remote timestamps are naive site-local; compare naive
        parsed = parsed.replace(tzinfo=None)
        if latest_parsed is None or parsed > latest_parsed:
            latest_parsed = parsed
            latest_value = value
    return latest_value


class DiscoveryEngine:
    """
    Computes the ChangeSet for one tenant and entity type
    """

    def __init__(self, store: LocalStore):
        self.store = store

    async def discover(self, tenant_id: str, connector: BaseConnector, entity_type: str) -> ChangeSet:
        """
        Diff remote metadata against local snapshots and pending local edits.

        Any remote failure propagates; nothing is written here.
        """
        log.info(f"Discovering {entity_type} changes for tenant {tenant_id}")

        remote_records = await connector.fetch_all_metadata()
        remote_by_id: Dict[int, Dict[str, Any]] = {}
        for record in remote_records:
            if record.get("id") is None:
                log.warning(f"Skipping remote {entity_type} record without id")
                continue
            remote_by_id[int(record["id"])] = record

        local_index = self.store.snapshot_index(tenant_id, entity_type)

        changes = ChangeSet(total_items=len(remote_by_id), local_count=len(local_index))

        # Remote -> local
        for entity_id, record in remote_by_id.items():
            if entity_id not in local_index:
                changes.missing_ids.append(entity_id)
            elif record.get("date_modified") != local_index[entity_id]:
                changes.changed_ids.append(entity_id)

        changes.last_modified = _latest_modified([r.get("date_modified") for r in remote_by_id.values()])

        # Local -> remote
        pending = self.store.pending_items(tenant_id, entity_type)
        for entity_id, item in collapse_pending_items(pending).items():
            operation = item["operation"]
            remote = remote_by_id.get(entity_id)

            if operation == CREATE:
                if remote is None:
                    changes.to_create_remotely.append({"id": entity_id, "data": item["payload"]})
                else:
                    changes.conflicts.append({
                        "id": entity_id,
                        "type": CREATE_CONFLICT,
                        "local": item["payload"],
                        "remote": remote,
                    })
            elif operation == UPDATE:
                if remote is not None:
                    changes.to_update_remotely.append({"id": entity_id, "data": item["payload"]})
                else:
                    changes.conflicts.append({
                        "id": entity_id,
                        "type": UPDATE_MISSING,
                        "local": item["payload"],
                        "remote": None,
                    })
            elif operation == DELETE and remote is not None:
                changes.to_delete_remotely.append(entity_id)

        log.info(
            f"Discovery for tenant {tenant_id} {entity_type}: {changes.total_items} remote, "
            f"{len(changes.missing_ids)} missing, {len(changes.changed_ids)} changed, "
            f"{len(changes.to_create_remotely)}/{len(changes.to_update_remotely)}/"
            f"{len(changes.to_delete_remotely)} local creates/updates/deletes, "
            f"{len(changes.conflicts)} conflicts"
        )
        if changes.conflicts:
            log.warning(f"{len(changes.conflicts)} unresolved {entity_type} conflicts for tenant {tenant_id}")

        return changes
