"""Add estimated delivery time to orders

Revision ID: 0002_delivery_estimate
Revises: 0001_initial_shop_schema
Create Date: 2026-10-19 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_delivery_estimate'
down_revision = '0001_initial_shop_schema'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('orders', sa.Column('estimated_delivery_at', sa.TIMESTAMP(timezone=True), nullable=True))


def downgrade():
    op.drop_column('orders', 'estimated_delivery_at')
