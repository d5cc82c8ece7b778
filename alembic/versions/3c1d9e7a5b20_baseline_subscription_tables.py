"""baseline_subscription_tables

Revision ID: 3c1d9e7a5b20
Revises: 
Create Date: 2026-10-17 21:04:12.118204

Production-safe migration: Only creates tables that don't exist yet.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '3c1d9e7a5b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    """Create users, plans, user subscriptions and the two event tables."""
    if not table_exists('users'):
        op.create_table('users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('full_name', sa.String(), nullable=True),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('phone', sa.String(), nullable=True),
            sa.Column('role', sa.String(), nullable=False, server_default='client'),
            sa.Column('razorpay_customer_id', sa.String(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('razorpay_customer_id')
        )
        op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
        op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)

    if not table_exists('subscription_plans'):
        op.create_table('subscription_plans',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('category', sa.String(length=20), nullable=False),
            sa.Column('plan_type', sa.String(), nullable=True),
            sa.Column('price', sa.Numeric(10, 2), nullable=False),
            sa.Column('billing_cycle', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('billing_period', sa.String(), nullable=False, server_default='monthly'),
            sa.Column('features', sa.JSON(), nullable=True),
            sa.Column('razorpay_plan_id', sa.String(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('razorpay_plan_id')
        )
        op.create_index(op.f('ix_subscription_plans_id'), 'subscription_plans', ['id'], unique=False)

    if not table_exists('user_subscriptions'):
        op.create_table('user_subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('plan_id', sa.Integer(), nullable=False),
            sa.Column('razorpay_subscription_id', sa.String(), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='CREATED'),
            sa.Column('payment_status', sa.String(length=20), nullable=True, server_default='PENDING'),
            sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('current_start', sa.DateTime(timezone=True), nullable=True),
            sa.Column('current_end', sa.DateTime(timezone=True), nullable=True),
            sa.Column('next_charge_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('paid_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('remaining_count', sa.Integer(), nullable=True),
            sa.Column('total_count', sa.Integer(), nullable=True),
            sa.Column('retry_attempts', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('cancel_requested_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('cancel_at_cycle_end', sa.Boolean(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('idx_user_subscription_status', 'user_subscriptions', ['user_id', 'status'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_id'), 'user_subscriptions', ['id'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_user_id'), 'user_subscriptions', ['user_id'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_plan_id'), 'user_subscriptions', ['plan_id'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_razorpay_subscription_id'), 'user_subscriptions', ['razorpay_subscription_id'], unique=True)

    if not table_exists('subscription_events'):
        op.create_table('subscription_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('event_type', sa.String(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('subscription_id', sa.Integer(), nullable=True),
            sa.Column('subscription_plan_id', sa.Integer(), nullable=True),
            sa.Column('payment_id', sa.String(), nullable=True),
            sa.Column('amount', sa.Numeric(10, 2), nullable=True),
            sa.Column('metadata', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
            sa.ForeignKeyConstraint(['subscription_id'], ['user_subscriptions.id'], ),
            sa.ForeignKeyConstraint(['subscription_plan_id'], ['subscription_plans.id'], ),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('idx_subscription_event_created', 'subscription_events', ['subscription_id', 'created_at'], unique=False)
        op.create_index(op.f('ix_subscription_events_id'), 'subscription_events', ['id'], unique=False)
        op.create_index(op.f('ix_subscription_events_event_type'), 'subscription_events', ['event_type'], unique=False)
        op.create_index(op.f('ix_subscription_events_user_id'), 'subscription_events', ['user_id'], unique=False)
        op.create_index(op.f('ix_subscription_events_subscription_id'), 'subscription_events', ['subscription_id'], unique=False)

    if not table_exists('webhook_events'):
        op.create_table('webhook_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('webhook_id', sa.String(), nullable=False),
            sa.Column('event_type', sa.String(), nullable=False),
            sa.Column('payload', sa.JSON(), nullable=True),
            sa.Column('status', sa.String(), nullable=False, server_default='processing'),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_webhook_events_id'), 'webhook_events', ['id'], unique=False)
        op.create_index(op.f('ix_webhook_events_webhook_id'), 'webhook_events', ['webhook_id'], unique=True)
        op.create_index(op.f('ix_webhook_events_event_type'), 'webhook_events', ['event_type'], unique=False)


def downgrade() -> None:
    """Drop tables in reverse dependency order."""
    op.drop_table('webhook_events')
    op.drop_table('subscription_events')
    op.drop_table('user_subscriptions')
    op.drop_table('subscription_plans')
    op.drop_table('users')
