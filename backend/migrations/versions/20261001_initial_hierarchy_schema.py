"""Initial schema: hierarchy users, sessions, products, IMEIs, allocation ledger, sales

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01

This migration creates:
1. users (role + region + team_leader_id / regional_manager_id links)
2. session_tokens (hashed bearer tokens)
3. products (price and default commission split)
4. imeis (single current holder, status, optimistic version_id)
5. stock_allocations (append-only custody ledger with event_type)
6. sales and commissions
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. USERS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('region', sa.String(length=64), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('fo_code', sa.String(length=32), nullable=True),
        sa.Column('team_leader_id', sa.Integer(), nullable=True),
        sa.Column('regional_manager_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['team_leader_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['regional_manager_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('fo_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_email'), ['email'], unique=True)
        batch_op.create_index(batch_op.f('ix_users_role'), ['role'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_region'), ['region'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_team_leader_id'), ['team_leader_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_regional_manager_id'), ['regional_manager_id'], unique=False)
        batch_op.create_index('ix_users_role_region', ['role', 'region'], unique=False)

    # ==========================================================================
    # 2. SESSION TOKENS
    # ==========================================================================
    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_tokens_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index(batch_op.f('ix_session_tokens_expires_at'), ['expires_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_is_revoked'), ['is_revoked'], unique=False)
        batch_op.create_index('ix_session_tokens_user_active', ['user_id', 'is_revoked'], unique=False)

    # ==========================================================================
    # 3. PRODUCTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('brand', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False, server_default='Smartphones'),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fo_commission_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tl_commission_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rm_commission_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', 'brand', name='uq_products_name_brand'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_category_active', ['category', 'is_active'], unique=False)

    # ==========================================================================
    # 4. IMEIS
    # ==========================================================================
    # sale_id gets its foreign key after the sales table exists (circular reference)
    op.create_table('imeis',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('imei', sa.String(length=15), nullable=False),
        sa.Column('imei2', sa.String(length=15), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('capacity', sa.String(length=32), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('fo_commission_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tl_commission_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rm_commission_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='watu'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='IN_STOCK'),
        sa.Column('current_holder_id', sa.Integer(), nullable=True),
        sa.Column('current_holder_role', sa.String(length=32), nullable=True),
        sa.Column('region', sa.String(length=64), nullable=True),
        sa.Column('registered_by_user_id', sa.Integer(), nullable=True),
        sa.Column('registered_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('allocated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sold_by_user_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['current_holder_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['registered_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['sold_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('imeis', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_imeis_imei'), ['imei'], unique=True)
        batch_op.create_index(batch_op.f('ix_imeis_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_imeis_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_imeis_current_holder_id'), ['current_holder_id'], unique=False)
        batch_op.create_index('ix_imeis_holder_status', ['current_holder_id', 'status'], unique=False)

    # ==========================================================================
    # 5. STOCK ALLOCATION LEDGER
    # ==========================================================================
    op.create_table('stock_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('imei_id', sa.Integer(), nullable=True),
        sa.Column('imei', sa.String(length=15), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('from_user_id', sa.Integer(), nullable=False),
        sa.Column('to_user_id', sa.Integer(), nullable=False),
        sa.Column('from_level', sa.String(length=32), nullable=False),
        sa.Column('to_level', sa.String(length=32), nullable=False),
        sa.Column('event_type', sa.String(length=16), nullable=False, server_default='ALLOCATION'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('recall_reason', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['imei_id'], ['imeis.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['from_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['to_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_allocations', schema=None) as batch_op:
        batch_op.create_index('ix_alloc_from_created', ['from_user_id', 'created_at'], unique=False)
        batch_op.create_index('ix_alloc_to_created', ['to_user_id', 'created_at'], unique=False)
        batch_op.create_index('ix_alloc_imei_created', ['imei_id', 'created_at'], unique=False)
        batch_op.create_index('ix_alloc_type_status', ['event_type', 'status'], unique=False)

    # ==========================================================================
    # 6. SALES AND COMMISSIONS
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_number', sa.String(length=32), nullable=False),
        sa.Column('imei_id', sa.Integer(), nullable=True),
        sa.Column('imei', sa.String(length=15), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('sale_amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('payment_reference', sa.String(length=64), nullable=True),
        sa.Column('sold_by_user_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_id_number', sa.String(length=32), nullable=True),
        sa.Column('source', sa.String(length=16), nullable=True),
        sa.Column('region', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['imei_id'], ['imeis.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['sold_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sales_imei_id'), ['imei_id'], unique=False)
        batch_op.create_index('ix_sales_seller_created', ['sold_by_user_id', 'created_at'], unique=False)

    with op.batch_alter_table('imeis', schema=None) as batch_op:
        batch_op.create_foreign_key('fk_imeis_sale_id', 'sales', ['sale_id'], ['id'])

    op.create_table('commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_reference', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'user_id', 'role', name='uq_commissions_sale_user_role'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('commissions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_commissions_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commissions_status'), ['status'], unique=False)
        batch_op.create_index('ix_commissions_user_status', ['user_id', 'status'], unique=False)


def downgrade():
    op.drop_table('commissions')
    with op.batch_alter_table('imeis', schema=None) as batch_op:
        batch_op.drop_constraint('fk_imeis_sale_id', type_='foreignkey')
    op.drop_table('sales')
    op.drop_table('stock_allocations')
    op.drop_table('imeis')
    op.drop_table('products')
    op.drop_table('session_tokens')
    op.drop_table('users')
