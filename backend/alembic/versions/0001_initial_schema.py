"""initial subscribe & save schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('external_contract_id', sa.String(255), nullable=True),
        sa.Column('origin_order_id', sa.String(255), nullable=True),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('product_label', sa.String(255), nullable=True),
        sa.Column('preferred_day', sa.Integer(), nullable=False),
        sa.Column('preferred_time_slot', sa.String(100), nullable=False),
        sa.Column('preferred_time_slot_start', sa.String(5), nullable=False),
        sa.Column('preferred_day_defaulted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('time_slot_defaulted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('frequency', sa.String(20), nullable=False),
        sa.Column('discount_percent', sa.Float(), nullable=False),
        sa.Column('billing_lead_hours', sa.Integer(), nullable=False),
        sa.Column('next_pickup_date', sa.Date(), nullable=True),
        sa.Column('next_billing_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('paused_until', sa.Date(), nullable=True),
        sa.Column('pause_reason', sa.String(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('one_time_reschedule_date', sa.Date(), nullable=True),
        sa.Column('one_time_reschedule_time_slot', sa.String(100), nullable=True),
        sa.Column('one_time_reschedule_reason', sa.String(), nullable=True),
        sa.Column('one_time_reschedule_by', sa.String(20), nullable=True),
        sa.Column('one_time_reschedule_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('billing_failure_count', sa.Integer(), nullable=False),
        sa.Column('billing_failure_reason', sa.String(), nullable=True),
        sa.Column('billing_cycle_count', sa.Integer(), nullable=False),
        sa.Column('last_billing_status', sa.String(20), nullable=True),
        sa.Column('last_billing_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('admin_notes', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('shop', 'external_contract_id', name='uq_subscriptions_shop_contract'),
    )
    op.create_index('ix_subscriptions_shop', 'subscriptions', ['shop'])
    op.create_index('ix_subscriptions_origin_order_id', 'subscriptions', ['origin_order_id'])
    op.create_index('ix_subscriptions_next_billing_date', 'subscriptions', ['next_billing_date'])
    op.create_index(
        'ix_subscriptions_shop_status_next_pickup',
        'subscriptions',
        ['shop', 'status', 'next_pickup_date'],
    )
    op.create_index('ix_subscriptions_shop_email', 'subscriptions', ['shop', 'customer_email'])

    op.create_table(
        'pickup_instances',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column(
            'subscription_id',
            sa.Uuid(),
            sa.ForeignKey('subscriptions.id'),
            nullable=True,
        ),
        sa.Column('pickup_date', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('external_order_id', sa.String(255), nullable=True),
        sa.Column('order_reference', sa.String(50), nullable=True),
        sa.Column('notes', sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('shop', 'external_order_id', name='uq_pickup_instances_shop_order'),
    )
    op.create_index('ix_pickup_instances_subscription_id', 'pickup_instances', ['subscription_id'])
    op.create_index('ix_pickup_instances_shop_date', 'pickup_instances', ['shop', 'pickup_date'])

    op.create_table(
        'ingestion_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('topic', sa.String(100), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('subscription_id', sa.Uuid(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column(
            'processed_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.UniqueConstraint('shop', 'topic', 'external_id', name='uq_ingestion_events_key'),
    )

    op.create_table(
        'subscription_plans',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('shop', sa.String(255), nullable=False),
        sa.Column('frequency', sa.String(20), nullable=False),
        sa.Column('name', sa.String(100), nullable=True),
        sa.Column('discount_percent', sa.Float(), nullable=False),
        sa.Column('billing_lead_hours', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('shop', 'frequency', name='uq_subscription_plans_shop_frequency'),
    )
    op.create_index('ix_subscription_plans_shop', 'subscription_plans', ['shop'])


def downgrade() -> None:
    op.drop_index('ix_subscription_plans_shop', table_name='subscription_plans')
    op.drop_table('subscription_plans')
    op.drop_table('ingestion_events')
    op.drop_index('ix_pickup_instances_shop_date', table_name='pickup_instances')
    op.drop_index('ix_pickup_instances_subscription_id', table_name='pickup_instances')
    op.drop_table('pickup_instances')
    op.drop_index('ix_subscriptions_shop_email', table_name='subscriptions')
    op.drop_index('ix_subscriptions_shop_status_next_pickup', table_name='subscriptions')
    op.drop_index('ix_subscriptions_next_billing_date', table_name='subscriptions')
    op.drop_index('ix_subscriptions_origin_order_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_shop', table_name='subscriptions')
    op.drop_table('subscriptions')
