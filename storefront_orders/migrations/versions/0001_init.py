from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'orders',
        sa.Column('pk', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('order_number', sa.String(50), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(20), nullable=False, server_default='card'),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_intent_id', sa.String(255), nullable=True),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('shipping_full_name', sa.String(200), nullable=False),
        sa.Column('shipping_address', sa.String(255), nullable=False),
        sa.Column('shipping_city', sa.String(100), nullable=False),
        sa.Column('shipping_state', sa.String(100), nullable=False),
        sa.Column('shipping_zip_code', sa.String(20), nullable=False),
        sa.Column('shipping_country', sa.String(100), nullable=False, server_default='United States'),
        sa.Column('customer_email_snapshot', sa.String(255), nullable=True),
        sa.Column('customer_name_snapshot', sa.String(200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('total >= 0', name='ck_orders_total_non_negative'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'shipped', 'delivered', 'cancelled')",
            name='ck_orders_status',
        ),
        sa.CheckConstraint("payment_status IN ('pending', 'paid', 'failed')", name='ck_orders_payment_status'),
        sa.CheckConstraint("payment_method IN ('card', 'paypal', 'cash')", name='ck_orders_payment_method'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'], unique=True)
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    # NULLs never collide, so this is a sparse unique index
    op.create_index('ix_orders_payment_intent_id', 'orders', ['payment_intent_id'], unique=True)
    op.create_index('ix_orders_user_created', 'orders', ['user_id', sa.text('created_at DESC')])
    op.create_index('ix_orders_status_created', 'orders', ['status', sa.text('created_at DESC')])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])

    op.create_table(
        'order_items',
        sa.Column('pk', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('order_pk', sa.Integer, sa.ForeignKey('orders.pk', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('product_id', sa.String(64), nullable=False),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('product_icon', sa.String(32), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_price_non_negative'),
    )
    op.create_index('ix_order_items_order_pk', 'order_items', ['order_pk'])

def downgrade():
    op.drop_index('ix_order_items_order_pk', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_user_created', table_name='orders')
    op.drop_index('ix_orders_payment_intent_id', table_name='orders')
    op.drop_index('ix_orders_order_number', table_name='orders')
    op.drop_index('ix_orders_id', table_name='orders')
    op.drop_table('orders')
