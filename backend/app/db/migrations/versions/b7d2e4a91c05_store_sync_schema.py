"""store sync schema: stores, products, sync queue, import jobs, heartbeat

Revision ID: b7d2e4a91c05
Revises:
Create Date: 2026-02-06 15:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'b7d2e4a91c05'
down_revision = None
branch_labels = None
depends_on = None


JSONB = postgresql.JSONB(astext_type=sa.Text())


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('hashed_password', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('is_superuser', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        *_timestamps(),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'platform_connections',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('platform', sa.String(length=32), nullable=False, server_default='woocommerce'),
        sa.Column('shop_url', sa.String(length=512), nullable=False),
        sa.Column('credentials_encrypted', JSONB, nullable=True),
        sa.Column('api_key', sa.Text(), nullable=True),
        sa.Column('api_secret', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'stores',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('platform', sa.String(length=32), nullable=False, server_default='woocommerce'),
        sa.Column('connection_id', sa.String(length=36),
                  sa.ForeignKey('platform_connections.id', ondelete='SET NULL'), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        *_timestamps(),
    )
    op.create_index('ix_stores_tenant_id', 'stores', ['tenant_id'])
    op.create_index('ix_stores_tenant_platform', 'stores', ['tenant_id', 'platform'])

    op.create_table(
        'products',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('store_id', sa.String(length=36), sa.ForeignKey('stores.id', ondelete='CASCADE'), nullable=False),
        sa.Column('platform_product_id', sa.String(length=64), nullable=True),
        sa.Column('title', sa.Text()),
        sa.Column('slug', sa.String(length=255)),
        sa.Column('sku', sa.String(length=255)),
        sa.Column('status', sa.String(length=32)),
        sa.Column('product_type', sa.String(length=32)),
        sa.Column('regular_price', sa.Numeric(12, 2)),
        sa.Column('sale_price', sa.Numeric(12, 2)),
        sa.Column('stock', sa.Integer()),
        sa.Column('stock_status', sa.String(length=32)),
        sa.Column('image_url', sa.Text()),
        sa.Column('seo_title', sa.Text()),
        sa.Column('seo_description', sa.Text()),
        sa.Column('metadata', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('store_snapshot_content', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('working_content', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('dirty_fields_content', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('sync_status', sa.String(length=16), nullable=False, server_default='synced'),
        sa.Column('sync_source', sa.String(length=16)),
        sa.Column('content_hash', sa.String(length=64)),
        sa.Column('store_last_modified_at', sa.DateTime()),
        sa.Column('working_content_updated_at', sa.DateTime()),
        sa.Column('store_content_updated_at', sa.DateTime()),
        sa.Column('last_synced_at', sa.DateTime()),
        sa.Column('variations_synced_at', sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint('store_id', 'platform_product_id', name='uq_products_store_platform_id'),
        sa.CheckConstraint(
            "sync_status IN ('synced','pending_push','pending_pull','conflict','processing')",
            name='ck_products_sync_status_valid',
        ),
    )
    op.create_index('ix_products_sku', 'products', ['sku'])
    op.create_index('ix_products_store_sync_status', 'products', ['store_id', 'sync_status'])

    op.create_table(
        'product_categories',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('store_id', sa.String(length=36), sa.ForeignKey('stores.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255)),
        sa.Column('description', sa.Text()),
        sa.Column('parent_external_id', sa.String(length=64)),
        sa.Column('image_url', sa.Text()),
        sa.Column('product_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('metadata', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('last_synced_at', sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint('store_id', 'external_id', name='uq_product_categories_store_external'),
    )

    op.create_table(
        'blog_articles',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('store_id', sa.String(length=36), sa.ForeignKey('stores.id', ondelete='CASCADE'), nullable=False),
        sa.Column('wordpress_post_id', sa.String(length=64)),
        sa.Column('title', sa.Text()),
        sa.Column('slug', sa.String(length=255)),
        sa.Column('content', sa.Text()),
        sa.Column('excerpt', sa.Text()),
        sa.Column('status', sa.String(length=32)),
        sa.Column('author_name', sa.String(length=255)),
        sa.Column('featured_image_url', sa.Text()),
        sa.Column('categories', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('tags', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('published_at', sa.DateTime()),
        sa.Column('metadata', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('store_snapshot_content', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('working_content', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('dirty_fields_content', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('sync_status', sa.String(length=16), nullable=False, server_default='synced'),
        sa.Column('working_content_updated_at', sa.DateTime()),
        sa.Column('store_content_updated_at', sa.DateTime()),
        sa.Column('last_synced_at', sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint('store_id', 'wordpress_post_id', name='uq_blog_articles_store_post'),
    )

    op.create_table(
        'sync_queue',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('store_id', sa.String(length=36), sa.ForeignKey('stores.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(length=36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False, server_default='push'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default=sa.text('5')),
        sa.Column('dirty_fields', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('payload', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('platform', sa.String(length=32), nullable=False, server_default='woocommerce'),
        sa.Column('platform_product_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default=sa.text('5')),
        sa.Column('last_error', sa.Text()),
        sa.Column('next_retry_at', sa.DateTime()),
        sa.Column('idempotency_key', sa.String(length=255), unique=True),
        sa.Column('started_at', sa.DateTime()),
        sa.Column('completed_at', sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending','processing','completed','failed','dead_letter')",
            name='ck_sync_queue_status_valid',
        ),
        sa.CheckConstraint("direction IN ('push','pull')", name='ck_sync_queue_direction_valid'),
    )
    op.create_index('ix_sync_queue_status_priority', 'sync_queue', ['status', 'priority', 'created_at'])
    op.create_index('ix_sync_queue_next_retry', 'sync_queue', ['next_retry_at'])
    op.create_index('ix_sync_queue_store_status', 'sync_queue', ['store_id', 'status'])
    op.create_index('ix_sync_queue_product_status', 'sync_queue', ['product_id', 'status'])

    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('store_id', sa.String(length=36), sa.ForeignKey('stores.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('sync_type', sa.String(length=16), nullable=False, server_default='full'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('is_chunked', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('can_resume', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('options', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('total_products', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('synced_products', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('total_categories', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('synced_categories', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('total_posts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('synced_posts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('synced_variations', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('total_chunks', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('completed_chunks', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('error_message', sa.Text()),
        sa.Column('result_summary', JSONB),
        sa.Column('started_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending','discovering','syncing','completed','failed')",
            name='ck_sync_jobs_status_valid',
        ),
    )
    op.create_index('ix_sync_jobs_store_status', 'sync_jobs', ['store_id', 'status', 'created_at'])

    op.create_table(
        'sync_job_chunks',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('job_id', sa.String(length=36), sa.ForeignKey('sync_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('store_id', sa.String(length=36), sa.ForeignKey('stores.id', ondelete='CASCADE'), nullable=False),
        sa.Column('chunk_type', sa.String(length=16), nullable=False),
        sa.Column('page_number', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('items_total', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('items_processed', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('metadata', JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('error_message', sa.Text()),
        sa.Column('started_at', sa.DateTime()),
        sa.Column('completed_at', sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint(
            "chunk_type IN ('products','categories','posts','variations')",
            name='ck_sync_job_chunks_chunk_type_valid',
        ),
        sa.CheckConstraint(
            "status IN ('pending','processing','completed','failed')",
            name='ck_sync_job_chunks_status_valid',
        ),
    )
    op.create_index('ux_sync_job_chunks_job_type_page', 'sync_job_chunks',
                    ['job_id', 'chunk_type', 'page_number'], unique=True)
    op.create_index('ix_sync_job_chunks_job_status', 'sync_job_chunks', ['job_id', 'status', 'created_at'])

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('job_id', sa.String(length=36), sa.ForeignKey('sync_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False, server_default='info'),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_sync_logs_job_id', 'sync_logs', ['job_id'])
    op.create_index('ix_sync_logs_created_at', 'sync_logs', ['created_at'])

    op.create_table(
        'store_heartbeat',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('store_id', sa.String(length=36), sa.ForeignKey('stores.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('last_checked_at', sa.DateTime()),
        sa.Column('last_successful_at', sa.DateTime()),
        sa.Column('store_last_modified_at', sa.DateTime()),
        sa.Column('interval_minutes', sa.Integer(), nullable=False, server_default=sa.text('15')),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('consecutive_failures', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_error', sa.Text()),
        sa.Column('total_checks', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('total_changes_detected', sa.Integer(), nullable=False, server_default=sa.text('0')),
        *_timestamps(),
    )
    op.create_index('ix_store_heartbeat_due', 'store_heartbeat', ['enabled', 'last_checked_at'])

    op.create_table(
        'conflict_log',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('product_id', sa.String(length=36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('store_id', sa.String(length=36), sa.ForeignKey('stores.id', ondelete='CASCADE'), nullable=False),
        sa.Column('conflict_type', sa.String(length=16), nullable=False, server_default='store_wins'),
        sa.Column('fields_affected', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('local_values', JSONB),
        sa.Column('store_values', JSONB),
        sa.Column('resolved_values', JSONB),
        sa.Column('resolution', sa.String(length=32), nullable=False, server_default='auto_store_wins'),
        sa.Column('resolved_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("conflict_type IN ('store_wins','local_wins','merge','manual')",
                           name='ck_conflict_log_conflict_type_valid'),
        sa.CheckConstraint("resolution IN ('auto_store_wins','auto_local_wins','manual','merge')",
                           name='ck_conflict_log_resolution_valid'),
    )
    op.create_index('ix_conflict_log_product_created', 'conflict_log', ['product_id', 'created_at'])
    op.create_index('ix_conflict_log_store_created', 'conflict_log', ['store_id', 'created_at'])

    op.create_table(
        'sync_audit_log',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(length=32), nullable=False, server_default='push_to_store'),
        sa.Column('entity_type', sa.String(length=16), nullable=False),
        sa.Column('entity_ids', JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('total', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('successful', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('skipped', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('failed', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('details', JSONB),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_sync_audit_log_user_id', 'sync_audit_log', ['user_id'])
    op.create_index('ix_sync_audit_log_created_at', 'sync_audit_log', ['created_at'])


def downgrade() -> None:
    for name in (
        'sync_audit_log', 'conflict_log', 'store_heartbeat', 'sync_logs', 'sync_job_chunks',
        'sync_jobs', 'sync_queue', 'blog_articles', 'product_categories', 'products',
        'stores', 'platform_connections', 'users',
    ):
        op.drop_table(name)
