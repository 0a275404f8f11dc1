"""add_order_version_for_optimistic_locking

Revision ID: 0002_add_order_version
Revises: 0001_init
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_add_order_version'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Existing rows start at version 1; the ORM increments on every update
    op.add_column('orders', sa.Column('version', sa.Integer(), nullable=False, server_default='1'))


def downgrade() -> None:
    op.drop_column('orders', 'version')
