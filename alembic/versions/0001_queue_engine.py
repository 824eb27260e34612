"""Queue engine baseline - customers, appointments, queues, notifications

Revision ID: 0001_queue_engine
Revises:
Create Date: 2026-10-19

Creates the queue aggregate table and the rows it projects onto.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_queue_engine'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create queue engine tables."""

    # ==========================================================================
    # Customers
    # ==========================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('no_show_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # ==========================================================================
    # Appointments
    # ==========================================================================
    op.create_table(
        'appointments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('service_id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.Uuid(), sa.ForeignKey('customers.id', ondelete='SET NULL'), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('token_number', sa.String(20), nullable=True),
        sa.Column('appointment_date', sa.Date(), nullable=False),
        sa.Column('appointment_time', sa.String(5), nullable=True),
        sa.Column('status', sa.String(20), server_default='BOOKED', nullable=False),
        sa.Column('queue_position', sa.Integer(), nullable=True),
        sa.Column('estimated_wait_minutes', sa.Integer(), nullable=True),
        sa.Column('prioritized', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('prioritized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('prioritized_by', sa.Uuid(), nullable=True),
        sa.Column('checked_in_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('no_show_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.Uuid(), nullable=True),
        sa.Column('cancellation_reason', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'idx_appointments_org_service_date',
        'appointments',
        ['organization_id', 'service_id', 'appointment_date'],
    )
    op.create_index('idx_appointments_customer', 'appointments', ['customer_id'])

    # ==========================================================================
    # Queues (one per organization/service/date)
    # ==========================================================================
    op.create_table(
        'queues',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('service_id', sa.Uuid(), nullable=False),
        sa.Column('queue_date', sa.Date(), nullable=False),
        sa.Column('active_tokens', sa.JSON(), nullable=False),
        sa.Column('current_token', sa.Uuid(), nullable=True),
        sa.Column('completed_tokens', sa.JSON(), nullable=False),
        sa.Column('no_show_tokens', sa.JSON(), nullable=False),
        sa.Column('total_served', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('organization_id', 'service_id', 'queue_date', name='uq_queue_key'),
    )
    op.create_index(
        'idx_queues_org_date_active',
        'queues',
        ['organization_id', 'queue_date', 'is_active'],
    )

    # ==========================================================================
    # Notifications
    # ==========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('is_read', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_notifications_user_unread', 'notifications', ['user_id', 'is_read'])


def downgrade() -> None:
    """Drop queue engine tables."""
    op.drop_index('idx_notifications_user_unread', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('idx_queues_org_date_active', table_name='queues')
    op.drop_table('queues')
    op.drop_index('idx_appointments_customer', table_name='appointments')
    op.drop_index('idx_appointments_org_service_date', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('customers')
