"""
Mutation Queue Model

Local edits waiting to be replayed against the remote catalog.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, BigInteger, Text, Index
from datetime import datetime

from storesync.models.base import Base

# Queue item statuses
PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

QUEUE_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)

# Operations
CREATE = "create"
UPDATE = "update"
DELETE = "delete"

OPERATIONS = (CREATE, UPDATE, DELETE)


class SyncQueueItem(Base):
    """
    One pending local mutation

    Never deleted by the engine; completed/failed rows stay for audit.
    attempts only ever grows and is capped by the caller's max_retries.
    """
    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, index=True)

    tenant_id = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)  # products, customers, orders, categories
    entity_id = Column(BigInteger, nullable=False, index=True)  # may be provisional for creates
    operation = Column(String, nullable=False)  # create, update, delete
    payload = Column(JSON, nullable=True)

    status = Column(String, nullable=False, default=PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    priority = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_sync_queue_selection", "tenant_id", "status", "priority", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "operation": self.operation,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "priority": self.priority,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
