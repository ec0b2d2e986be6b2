"""create_events

Revision ID: a1c4e7f20b91
Revises:
Create Date: 2026-10-16 12:00:00.000000

Incident journal: one row per condition occurrence, at most one active
row per (device, condition_type).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'a1c4e7f20b91'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('device', sa.String(100), nullable=False),
        sa.Column('location', sa.String(100), nullable=False),
        sa.Column('condition_type', sa.String(20), nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('threshold', sa.Float(), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('duration', sa.BigInteger(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('acknowledged', sa.Boolean(), nullable=False),
        sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_events_device_type_active', 'events', ['device', 'condition_type', 'active'])
    op.create_index('ix_events_timestamp', 'events', ['timestamp'])
    op.create_index(
        'uq_events_open_per_key', 'events', ['device', 'condition_type'],
        unique=True,
        postgresql_where=sa.text('active'),
    )


def downgrade() -> None:
    op.drop_index('uq_events_open_per_key', table_name='events')
    op.drop_index('ix_events_timestamp', table_name='events')
    op.drop_index('ix_events_device_type_active', table_name='events')
    op.drop_table('events')
