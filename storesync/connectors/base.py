"""
Base Connector Class

Every remote catalog connector implements this contract. The discovery
engine, the queue processor and the orchestrator only talk to this
interface, so tests can swap in an in-memory catalog.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from storesync.utils.logger import log


class BaseConnector(ABC):
    """
    Base class for remote catalog connectors

    Implements common patterns:
    - Request accounting for status reporting
    - Timestamp normalization
    """

    def __init__(self, source_name: str, entity_type: str):
        """
        Initialize connector

        Args:
            source_name: Name of the remote platform (e.g., 'woocommerce')
            entity_type: Entity collection this connector reads/writes (e.g., 'products')
        """
        self.source_name = source_name
        self.entity_type = entity_type
        self.request_count = 0
        self.error_count = 0
        self.last_request_at: Optional[datetime] = None

    @abstractmethod
    async def fetch_all_metadata(self) -> List[Dict[str, Any]]:
        """
        Fetch the lightweight fields needed for diffing (id, date_modified,
        identity fields) for every remote record.
        """
        pass

    @abstractmethod
    async def fetch_all_records(self, modified_after: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Fetch every remote record with its full payload, or only those
        modified after the given UTC ISO timestamp.
        """
        pass

    @abstractmethod
    async def fetch_one(self, entity_id: int) -> Dict[str, Any]:
        """Fetch a single full record"""
        pass

    @abstractmethod
    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record; returns the remote record with its assigned id"""
        pass

    @abstractmethod
    async def update(self, entity_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Update a record; returns the remote record after the change"""
        pass

    @abstractmethod
    async def delete(self, entity_id: int) -> bool:
        """Delete a record permanently"""
        pass

    def get_status(self) -> Dict[str, Any]:
        """Request counters for the status endpoint"""
        return {
            "source": self.source_name,
            "entity_type": self.entity_type,
            "requests": self.request_count,
            "errors": self.error_count,
            "last_request_at": self.last_request_at.isoformat() if self.last_request_at else None,
        }

    def _record_request(self, failed: bool = False):
        self.request_count += 1
        self.last_request_at = datetime.utcnow()
        if failed:
            self.error_count += 1

    def _handle_rate_limit(self, retry_after: Optional[str]):
        """
        Log a rate limit response

        Args:
            retry_after: Retry-After header value, if the remote sent one
        """
        log.warning(
            f"{self.source_name} rate limited {self.entity_type} request"
            + (f", retry after {retry_after}s" if retry_after else "")
        )
