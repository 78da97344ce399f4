"""initial shop schema

Revision ID: 0001_initial_shop_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_shop_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _ts(name, nullable=False):
    if nullable:
        return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=True)
    return sa.Column(name, sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        _uuid_pk(),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(length=40), nullable=True),
        sa.Column('auth_provider', sa.String(), nullable=True),
        sa.Column('external_subject', sa.String(), nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'user_roles',
        _uuid_pk(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        _ts('created_at'),
    )
    op.create_index('idx_user_roles_user_role_unique', 'user_roles', ['user_id', 'role'], unique=True)
    op.create_index('idx_user_roles_role', 'user_roles', ['role'], unique=False)

    op.create_table(
        'categories',
        _uuid_pk(),
        sa.Column('name', sa.String(length=120), nullable=False, unique=True),
        sa.Column('icon', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )

    op.create_table(
        'products',
        _uuid_pk(),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('unit', sa.String(length=40), nullable=True),
        sa.Column('origin', sa.String(length=120), nullable=True),
        sa.Column('image_url', sa.String(length=500), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('idx_products_category_id', 'products', ['category_id'], unique=False)
    op.create_index('idx_products_is_active_price', 'products', ['is_active', 'price'], unique=False)

    op.create_table(
        'orders',
        _uuid_pk(),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('customer_name', sa.String(length=200), nullable=False),
        sa.Column('customer_email', sa.String(length=320), nullable=False),
        sa.Column('customer_phone', sa.String(length=40), nullable=True),
        sa.Column('property_address', sa.Text(), nullable=True),
        sa.Column('arrival_date', sa.Date(), nullable=True),
        sa.Column('departure_date', sa.Date(), nullable=True),
        sa.Column('guest_count', sa.Integer(), nullable=True),
        sa.Column('dietary_restrictions', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('special_instructions', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('subtotal', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('tax_amount', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('delivery_fee', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), server_default='0', nullable=False),
        sa.Column('status', sa.String(length=20), server_default='placed', nullable=False),
        sa.Column('payment_status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_session_id', sa.String(length=255), nullable=True),
        sa.Column('access_token', sa.String(length=64), nullable=False, unique=True),
        sa.Column('assigned_shopper_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_driver_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_concierge_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        _ts('shopping_started_at', nullable=True),
        _ts('shopping_completed_at', nullable=True),
        _ts('delivery_started_at', nullable=True),
        _ts('delivery_completed_at', nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.CheckConstraint(
            "status IN ('placed','claimed','shopping','ready','delivered','closed','canceled')",
            name='ck_orders_status',
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending','completed','failed')",
            name='ck_orders_payment_status',
        ),
    )
    op.create_index('idx_orders_status_created_at', 'orders', ['status', 'created_at'], unique=False)
    op.create_index('idx_orders_customer_email', 'orders', ['customer_email'], unique=False)
    op.create_index('idx_orders_assigned_shopper_id', 'orders', ['assigned_shopper_id'], unique=False)
    op.create_index('idx_orders_stripe_session_id', 'orders', ['stripe_session_id'], unique=False)

    op.create_table(
        'order_items',
        _uuid_pk(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('products.id', ondelete='SET NULL'), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('found_quantity', sa.Integer(), nullable=True),
        sa.Column('shopping_status', sa.String(length=32), server_default='pending', nullable=False),
        sa.Column('shopper_notes', sa.Text(), nullable=True),
        sa.Column('photo_url', sa.String(length=500), nullable=True),
        sa.Column('substitution_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('idx_order_items_order_id', 'order_items', ['order_id'], unique=False)

    op.create_table(
        'stakeholder_assignments',
        _uuid_pk(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='assigned', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _ts('assigned_at'),
        _ts('accepted_at', nullable=True),
        _ts('completed_at', nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('idx_stakeholder_assignments_order_role_unique', 'stakeholder_assignments', ['order_id', 'role'], unique=True)
    op.create_index('idx_stakeholder_assignments_user_id_status', 'stakeholder_assignments', ['user_id', 'status'], unique=False)

    op.create_table(
        'order_workflow_log',
        _uuid_pk(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('phase', sa.String(length=40), nullable=False),
        sa.Column('action', sa.String(length=80), nullable=False),
        sa.Column('previous_status', sa.String(length=20), nullable=True),
        sa.Column('new_status', sa.String(length=20), nullable=True),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('actor_role', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _ts('timestamp'),
    )
    op.create_index('ix_order_workflow_log_order_id_timestamp', 'order_workflow_log', ['order_id', 'timestamp'], unique=False)
    op.create_index('ix_order_workflow_log_action', 'order_workflow_log', ['action'], unique=False)

    op.create_table(
        'order_events',
        _uuid_pk(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(length=40), nullable=False),
        sa.Column('actor_role', sa.String(length=32), nullable=True),
        sa.Column('data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        _ts('created_at'),
    )
    op.create_index('ix_order_events_order_id_created_at', 'order_events', ['order_id', 'created_at'], unique=False)

    op.create_table(
        'order_notifications',
        _uuid_pk(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('notification_type', sa.String(length=60), nullable=False),
        sa.Column('recipient_type', sa.String(length=32), nullable=False),
        sa.Column('recipient_identifier', sa.String(length=320), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('message_content', sa.Text(), nullable=False),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        _ts('sent_at', nullable=True),
        _ts('delivered_at', nullable=True),
        _ts('read_at', nullable=True),
        _ts('created_at'),
    )
    op.create_index('idx_order_notifications_order_id_created_at', 'order_notifications', ['order_id', 'created_at'], unique=False)
    op.create_index('idx_order_notifications_recipient', 'order_notifications', ['recipient_identifier', 'read_at'], unique=False)
    op.create_index('idx_order_notifications_status', 'order_notifications', ['status'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('order_notifications')
    op.drop_table('order_events')
    op.drop_table('order_workflow_log')
    op.drop_table('stakeholder_assignments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('user_roles')
    op.drop_table('users')
