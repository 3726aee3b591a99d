"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Products table
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('internal_sku', sa.String(length=50), nullable=False),
        sa.Column('supplier_sku', sa.String(length=255), nullable=True),
        sa.Column('supplier_asin', sa.String(length=20), nullable=False),
        sa.Column('supplier_url', sa.Text(), nullable=True),
        sa.Column('supplier_name', sa.String(length=50), nullable=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('brand', sa.String(length=500), nullable=True),
        sa.Column('category', sa.String(length=500), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('features', sa.JSON(), nullable=False),
        sa.Column('image_urls', sa.JSON(), nullable=False),
        sa.Column('rating_average', sa.Float(), nullable=True),
        sa.Column('rating_count', sa.Integer(), nullable=False),
        sa.Column('supplier_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('original_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('our_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('stock_status', sa.String(length=50), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=True),
        sa.Column('scrape_errors', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_scraped', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('internal_sku'),
        sa.UniqueConstraint('user_id', 'supplier_asin', name='uq_product_user_asin')
    )
    op.create_index('ix_products_user_id', 'products', ['user_id'])

    # Price history table
    op.create_table(
        'price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('supplier_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('our_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('stock_status', sa.String(length=50), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'])
    )
    op.create_index('ix_price_history_product_id', 'price_history', ['product_id'])

    # Sync sessions table
    op.create_table(
        'sync_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False),
        sa.Column('total_products', sa.Integer(), nullable=False),
        sa.Column('processed_products', sa.Integer(), nullable=False),
        sa.Column('updated_products', sa.Integer(), nullable=False),
        sa.Column('failed_products', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_sessions_user_id', 'sync_sessions', ['user_id'])

    # Sync log table
    op.create_table(
        'sync_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['session_id'], ['sync_sessions.id'])
    )
    op.create_index('ix_sync_logs_session_id', 'sync_logs', ['session_id'])


def downgrade() -> None:
    op.drop_index('ix_sync_logs_session_id', table_name='sync_logs')
    op.drop_table('sync_logs')
    op.drop_index('ix_sync_sessions_user_id', table_name='sync_sessions')
    op.drop_table('sync_sessions')
    op.drop_index('ix_price_history_product_id', table_name='price_history')
    op.drop_table('price_history')
    op.drop_index('ix_products_user_id', table_name='products')
    op.drop_table('products')
