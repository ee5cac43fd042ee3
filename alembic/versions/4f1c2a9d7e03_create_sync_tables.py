"""Create catalog snapshot, sync queue and sync status tables

Revision ID: 4f1c2a9d7e03
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9d7e03'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Local snapshot of remote catalog records
    op.create_table(
        'catalog_snapshots',
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('date_modified', sa.String(), nullable=True),
        sa.Column('synced_at', sa.DateTime(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('sku', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('tenant_id', 'entity_type', 'entity_id')
    )
    op.create_index('ix_catalog_snapshots_sku', 'catalog_snapshots', ['sku'])
    op.create_index('ix_catalog_snapshots_tenant_type', 'catalog_snapshots', ['tenant_id', 'entity_type'])

    # Local edits waiting to be replayed remotely
    op.create_table(
        'sync_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.BigInteger(), nullable=False),
        sa.Column('operation', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_queue_id', 'sync_queue', ['id'])
    op.create_index('ix_sync_queue_tenant_id', 'sync_queue', ['tenant_id'])
    op.create_index('ix_sync_queue_entity_id', 'sync_queue', ['entity_id'])
    op.create_index('ix_sync_queue_selection', 'sync_queue', ['tenant_id', 'status', 'priority', 'created_at'])

    # One status row per tenant and entity type
    op.create_table(
        'sync_status',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='idle'),
        sa.Column('total_items', sa.Integer(), nullable=True),
        sa.Column('processed_items', sa.Integer(), nullable=True),
        sa.Column('last_discover_at', sa.DateTime(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'entity_type', name='uq_sync_status_tenant_type')
    )
    op.create_index('ix_sync_status_id', 'sync_status', ['id'])
    op.create_index('ix_sync_status_tenant_id', 'sync_status', ['tenant_id'])


def downgrade() -> None:
    op.drop_index('ix_sync_status_tenant_id', table_name='sync_status')
    op.drop_index('ix_sync_status_id', table_name='sync_status')
    op.drop_table('sync_status')

    op.drop_index('ix_sync_queue_selection', table_name='sync_queue')
    op.drop_index('ix_sync_queue_entity_id', table_name='sync_queue')
    op.drop_index('ix_sync_queue_tenant_id', table_name='sync_queue')
    op.drop_index('ix_sync_queue_id', table_name='sync_queue')
    op.drop_table('sync_queue')

    op.drop_index('ix_catalog_snapshots_tenant_type', table_name='catalog_snapshots')
    op.drop_index('ix_catalog_snapshots_sku', table_name='catalog_snapshots')
    op.drop_table('catalog_snapshots')
