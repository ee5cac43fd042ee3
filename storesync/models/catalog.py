"""
Catalog Snapshot Models

The engine's cached copy of each remote catalog record, per tenant.
"""
from sqlalchemy import Column, String, DateTime, JSON, BigInteger, Index
from datetime import datetime

from storesync.models.base import Base


class CatalogSnapshot(Base):
    """
    Local snapshot of one remote record

    Written by pulls (whole-record replace, never a partial update) and by
    the queue processor after a successful remote write. date_modified is the
    remote value from the last pull and is the discovery comparison key.
    """
    __tablename__ = "catalog_snapshots"

    tenant_id = Column(String, primary_key=True)
    entity_type = Column(String, primary_key=True)  # products, customers, orders, categories
    entity_id = Column(BigInteger, primary_key=True, autoincrement=False)  # remote id once known

    date_modified = Column(String, nullable=True)  # as sent by the remote, e.g. 2024-05-01T10:00:00
    synced_at = Column(DateTime, default=datetime.utcnow)

    # Denormalized identity fields for dashboard lists
    name = Column(String, nullable=True)
    sku = Column(String, index=True, nullable=True)
    status = Column(String, nullable=True)

    # Full remote record
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_catalog_snapshots_tenant_type", "tenant_id", "entity_type"),
    )

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "date_modified": self.date_modified,
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
            "name": self.name,
            "sku": self.sku,
            "status": self.status,
            "payload": self.payload,
        }
