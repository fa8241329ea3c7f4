"""Initial pharmacy schema: stock ledger, sales journal, deduction log

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. medicines (stock ledger, optimistic locking via version_id)
2. sales and sale_lines (append-only journal, prices copied at commit time)
3. stock_deductions (PENDING/APPLIED/FAILED log written by checkout)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. MEDICINES TABLE
    # ==========================================================================
    op.create_table('medicines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('quantity >= 0', name='ck_medicines_quantity_nonnegative'),
        sa.CheckConstraint('price_cents >= 0', name='ck_medicines_price_nonnegative'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('medicines', schema=None) as batch_op:
        batch_op.create_index('ix_medicines_name', ['name'], unique=False)
        batch_op.create_index(batch_op.f('ix_medicines_expiry_date'), ['expiry_date'], unique=False)

    # ==========================================================================
    # 2. SALES JOURNAL
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.String(length=128), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sales_cashier_id'), ['cashier_id'], unique=False)
        batch_op.create_index('ix_sales_timestamp_id', ['timestamp', 'id'], unique=False)

    # No FK to medicines: medicines are hard-deleted, history keeps name/price
    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('medicine_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'line_number', name='uq_sale_lines_sale_line'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_lines_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_lines_medicine_id'), ['medicine_id'], unique=False)

    # ==========================================================================
    # 3. STOCK DEDUCTION LOG
    # ==========================================================================
    op.create_table('stock_deductions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('medicine_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('applied_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'line_number', name='uq_stock_deductions_sale_line'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_deductions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_deductions_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_deductions_status'), ['status'], unique=False)
        batch_op.create_index('ix_stock_deductions_medicine_status', ['medicine_id', 'status'], unique=False)


def downgrade():
    with op.batch_alter_table('stock_deductions', schema=None) as batch_op:
        batch_op.drop_index('ix_stock_deductions_medicine_status')
        batch_op.drop_index(batch_op.f('ix_stock_deductions_status'))
        batch_op.drop_index(batch_op.f('ix_stock_deductions_sale_id'))
    op.drop_table('stock_deductions')

    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_sale_lines_medicine_id'))
        batch_op.drop_index(batch_op.f('ix_sale_lines_sale_id'))
    op.drop_table('sale_lines')

    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.drop_index('ix_sales_timestamp_id')
        batch_op.drop_index(batch_op.f('ix_sales_cashier_id'))
    op.drop_table('sales')

    with op.batch_alter_table('medicines', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_medicines_expiry_date'))
        batch_op.drop_index('ix_medicines_name')
    op.drop_table('medicines')
