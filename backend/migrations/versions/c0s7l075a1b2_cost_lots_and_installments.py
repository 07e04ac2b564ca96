"""Cost lots, price history, cards and installment payments

Revision ID: c0s7l075a1b2
Revises:
Create Date: 2026-10-19 10:12:41.208114

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c0s7l075a1b2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('products',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('sku', sa.String(length=64), nullable=True),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('min_stock', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('cost_cents', sa.Integer(), nullable=True),
    sa.Column('price_cents', sa.Integer(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    sa.CheckConstraint('stock >= 0', name='ck_products_stock_nonneg'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('sku', name='uq_products_sku'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_name', ['name'], unique=False)

    op.create_table('cards',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('alias', sa.String(length=128), nullable=False),
    sa.Column('closing_day', sa.Integer(), nullable=False),
    sa.Column('due_day', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    sa.CheckConstraint('closing_day BETWEEN 1 AND 31', name='ck_cards_closing_day'),
    sa.CheckConstraint('due_day BETWEEN 1 AND 31', name='ck_cards_due_day'),
    sa.PrimaryKeyConstraint('id'),
    sqlite_autoincrement=True
    )

    op.create_table('cost_lots',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('product_id', sa.Integer(), nullable=False),
    sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
    sa.Column('original_quantity', sa.Integer(), nullable=False),
    sa.Column('remaining_quantity', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
    sa.CheckConstraint('original_quantity > 0', name='ck_cost_lots_original_pos'),
    sa.CheckConstraint('remaining_quantity >= 0', name='ck_cost_lots_remaining_nonneg'),
    sa.CheckConstraint('remaining_quantity <= original_quantity', name='ck_cost_lots_remaining_le_original'),
    sa.CheckConstraint('unit_cost_cents >= 0', name='ck_cost_lots_cost_nonneg'),
    sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('cost_lots', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cost_lots_product_id'), ['product_id'], unique=False)
        batch_op.create_index('ix_cost_lots_product_created', ['product_id', 'created_at'], unique=False)

    op.create_table('price_history',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('product_id', sa.Integer(), nullable=False),
    sa.Column('kind', sa.String(length=16), nullable=False),
    sa.Column('price_cents', sa.Integer(), nullable=False),
    sa.Column('cost_lot_id', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    sa.ForeignKeyConstraint(['cost_lot_id'], ['cost_lots.id'], ),
    sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('price_history', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_price_history_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_price_history_cost_lot_id'), ['cost_lot_id'], unique=False)
        batch_op.create_index('ix_price_history_product_created', ['product_id', 'created_at'], unique=False)

    op.create_table('payments',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('product_id', sa.Integer(), nullable=True),
    sa.Column('card_id', sa.Integer(), nullable=True),
    sa.Column('cost_lot_id', sa.Integer(), nullable=True),
    sa.Column('method', sa.String(length=16), nullable=False),
    sa.Column('amount_cents', sa.Integer(), nullable=False),
    sa.Column('transaction_date', sa.Date(), nullable=False),
    sa.Column('billing_cycle_date', sa.Date(), nullable=True),
    sa.Column('installment_count', sa.Integer(), nullable=False, server_default='1'),
    sa.Column('installment_index', sa.Integer(), nullable=False, server_default='1'),
    sa.Column('is_installment', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('parent_transaction_id', sa.String(length=64), nullable=True),
    sa.Column('description', sa.String(length=255), nullable=True),
    sa.Column('idempotency_key', sa.String(length=128), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    sa.CheckConstraint('amount_cents > 0', name='ck_payments_amount_pos'),
    sa.CheckConstraint('installment_count >= 1', name='ck_payments_installment_count'),
    sa.CheckConstraint('installment_index BETWEEN 1 AND installment_count', name='ck_payments_installment_index'),
    sa.ForeignKeyConstraint(['card_id'], ['cards.id'], ),
    sa.ForeignKeyConstraint(['cost_lot_id'], ['cost_lots.id'], ),
    sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('idempotency_key', name='uq_payments_idempotency_key'),
    sqlite_autoincrement=True
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payments_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_card_id'), ['card_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_cost_lot_id'), ['cost_lot_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_method'), ['method'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_parent_transaction_id'), ['parent_transaction_id'], unique=False)
        batch_op.create_index('ix_payments_card_cycle', ['card_id', 'billing_cycle_date'], unique=False)
        batch_op.create_index('ix_payments_transaction_date', ['transaction_date'], unique=False)


def downgrade():
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.drop_index('ix_payments_transaction_date')
        batch_op.drop_index('ix_payments_card_cycle')
        batch_op.drop_index(batch_op.f('ix_payments_parent_transaction_id'))
        batch_op.drop_index(batch_op.f('ix_payments_method'))
        batch_op.drop_index(batch_op.f('ix_payments_cost_lot_id'))
        batch_op.drop_index(batch_op.f('ix_payments_card_id'))
        batch_op.drop_index(batch_op.f('ix_payments_product_id'))
    op.drop_table('payments')

    with op.batch_alter_table('price_history', schema=None) as batch_op:
        batch_op.drop_index('ix_price_history_product_created')
        batch_op.drop_index(batch_op.f('ix_price_history_cost_lot_id'))
        batch_op.drop_index(batch_op.f('ix_price_history_product_id'))
    op.drop_table('price_history')

    with op.batch_alter_table('cost_lots', schema=None) as batch_op:
        batch_op.drop_index('ix_cost_lots_product_created')
        batch_op.drop_index(batch_op.f('ix_cost_lots_product_id'))
    op.drop_table('cost_lots')

    op.drop_table('cards')

    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.drop_index('ix_products_name')
    op.drop_table('products')
