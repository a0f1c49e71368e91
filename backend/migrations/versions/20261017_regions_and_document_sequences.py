"""Region registry and document counters

Revision ID: 20261017_regions
Revises: 20261001_initial
Create Date: 2026-10-17

This migration creates:
1. regions (unique name, optional regional manager, soft delete flag)
2. document_sequences (one counter row per document type; receipts)

Existing receipts seed the RECEIPT counter so numbering continues after
the highest receipt already issued.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_regions'
down_revision = '20261001_initial'
branch_labels = None
depends_on = None


RECEIPT_PREFIX = 'RCP-'
RECEIPT_BASE = 2000


def _highest_receipt(bind) -> int:
    highest = 0
    for (receipt,) in bind.execute(sa.text("SELECT receipt_number FROM sales")):
        suffix = (receipt or '')[len(RECEIPT_PREFIX):]
        if receipt and receipt.startswith(RECEIPT_PREFIX) and suffix.isdigit():
            highest = max(highest, int(suffix) - RECEIPT_BASE)
    return highest


def upgrade():
    # ==========================================================================
    # 1. REGIONS
    # ==========================================================================
    op.create_table('regions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('manager_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['manager_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('regions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_regions_manager_id'), ['manager_id'], unique=False)
        batch_op.create_index('ix_regions_active', ['is_active'], unique=False)

    # ==========================================================================
    # 2. DOCUMENT SEQUENCES
    # ==========================================================================
    sequences = op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', name='uq_doc_sequences_type'),
        sqlite_autoincrement=True
    )

    highest = _highest_receipt(op.get_bind())
    if highest:
        op.bulk_insert(sequences, [{'document_type': 'RECEIPT', 'next_number': highest + 1}])


def downgrade():
    op.drop_table('document_sequences')
    with op.batch_alter_table('regions', schema=None) as batch_op:
        batch_op.drop_index('ix_regions_active')
        batch_op.drop_index(batch_op.f('ix_regions_manager_id'))
    op.drop_table('regions')
