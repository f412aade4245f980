"""Create webhook ingestion tables

Revision ID: 4c2a9e7b1d03
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e7b1d03'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('webhook_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('topic', sa.String(length=255), nullable=False),
        sa.Column('payload_hash', sa.String(length=64), nullable=False),
        sa.Column('resource_id', sa.String(length=255), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payload_hash')
    )
    op.create_index('ix_webhook_events_status', 'webhook_events', ['status'], unique=False)
    op.create_index('ix_webhook_events_received_at', 'webhook_events', ['received_at'], unique=False)

    op.create_table('customers',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('tags', sa.String(length=500), nullable=True),
        sa.Column('accepts_marketing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('total_spend_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('shopify_total_spend_minor', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('order_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status_tier', sa.String(length=50), nullable=True),
        sa.Column('measurements', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id'),
        sa.UniqueConstraint('phone')
    )
    op.create_index('ix_customers_email', 'customers', ['email'], unique=False)

    op.create_table('checkouts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('shopify_checkout_id', sa.String(length=255), nullable=False),
        sa.Column('shopify_checkout_token', sa.String(length=255), nullable=True),
        sa.Column('customer_id', sa.String(length=36), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('subtotal_minor', sa.BigInteger(), nullable=False),
        sa.Column('total_tax_minor', sa.BigInteger(), nullable=False),
        sa.Column('total_shipping_minor', sa.BigInteger(), nullable=False),
        sa.Column('total_price_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('abandoned_checkout_url', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shopify_checkout_id')
    )
    op.create_index('ix_checkouts_email', 'checkouts', ['email'], unique=False)

    op.create_table('checkout_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('checkout_id', sa.String(length=36), nullable=False),
        sa.Column('shopify_line_item_id', sa.String(length=255), nullable=True),
        sa.Column('product_name', sa.String(length=500), nullable=False),
        sa.Column('variant_title', sa.String(length=255), nullable=True),
        sa.Column('sku', sa.String(length=255), nullable=True),
        sa.Column('size', sa.String(length=100), nullable=True),
        sa.Column('color', sa.String(length=100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_minor', sa.BigInteger(), nullable=False),
        sa.Column('line_total_minor', sa.BigInteger(), nullable=False),
        sa.Column('measurements', sa.JSON(), nullable=True),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['checkout_id'], ['checkouts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_checkout_items_checkout_id', 'checkout_items', ['checkout_id'], unique=False)

    op.create_table('orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('shopify_order_id', sa.String(length=255), nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=True),
        sa.Column('order_name', sa.String(length=50), nullable=True),
        sa.Column('customer_id', sa.String(length=36), nullable=True),
        sa.Column('source', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('financial_status', sa.String(length=50), nullable=True),
        sa.Column('fulfillment_status', sa.String(length=50), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('subtotal_minor', sa.BigInteger(), nullable=False),
        sa.Column('total_tax_minor', sa.BigInteger(), nullable=False),
        sa.Column('total_shipping_minor', sa.BigInteger(), nullable=False),
        sa.Column('paid_amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('total_amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('placed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shopify_order_id')
    )
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('shopify_line_item_id', sa.String(length=255), nullable=True),
        sa.Column('product_name', sa.String(length=500), nullable=False),
        sa.Column('variant_title', sa.String(length=255), nullable=True),
        sa.Column('sku', sa.String(length=255), nullable=True),
        sa.Column('size', sa.String(length=100), nullable=True),
        sa.Column('color', sa.String(length=100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_minor', sa.BigInteger(), nullable=False),
        sa.Column('line_total_minor', sa.BigInteger(), nullable=False),
        sa.Column('measurements', sa.JSON(), nullable=True),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)

    op.create_table('order_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('shopify_order_id', sa.String(length=255), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=True),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('topic', sa.String(length=255), nullable=False),
        sa.Column('payload_hash', sa.String(length=64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_events_shopify_order_id', 'order_events', ['shopify_order_id'], unique=False)

    op.create_table('refunds',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('shopify_refund_id', sa.String(length=255), nullable=False),
        sa.Column('shopify_order_id', sa.String(length=255), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=True),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('refund_line_items', sa.JSON(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shopify_refund_id')
    )
    op.create_index('ix_refunds_shopify_order_id', 'refunds', ['shopify_order_id'], unique=False)


def downgrade():
    op.drop_index('ix_refunds_shopify_order_id', table_name='refunds')
    op.drop_table('refunds')
    op.drop_index('ix_order_events_shopify_order_id', table_name='order_events')
    op.drop_table('order_events')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_checkout_items_checkout_id', table_name='checkout_items')
    op.drop_table('checkout_items')
    op.drop_index('ix_checkouts_email', table_name='checkouts')
    op.drop_table('checkouts')
    op.drop_index('ix_customers_email', table_name='customers')
    op.drop_table('customers')
    op.drop_index('ix_webhook_events_received_at', table_name='webhook_events')
    op.drop_index('ix_webhook_events_status', table_name='webhook_events')
    op.drop_table('webhook_events')
