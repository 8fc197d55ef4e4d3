"""Initial migration - create orders, payments and reconciliation_locks tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create orders table
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('total_amount_value', sa.String(32), nullable=False),
        sa.Column('total_paid_value', sa.String(32), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('data_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_orders_uuid', 'orders', ['uuid'], unique=True)

    # Create payments table
    op.create_table(
        'payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('state', sa.String(50), nullable=False),
        sa.Column('amount_value', sa.String(32), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('payment_gateway', sa.String(64), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('test', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('remote_id', sa.String(255), nullable=True),
        sa.Column('remote_state', sa.String(50), nullable=True),
        sa.Column('authorized_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('payment_gateway', 'order_id', name='uq_payments_gateway_order'),
    )

    # Create indexes for payments
    op.create_index('ix_payments_remote_id', 'payments', ['remote_id'])
    op.create_index('ix_payments_state', 'payments', ['state'])

    # Create reconciliation_locks table
    op.create_table(
        'reconciliation_locks',
        sa.Column('name', sa.String(255), primary_key=True),
        sa.Column('token', sa.String(64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_reconciliation_locks_expires_at', 'reconciliation_locks', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_reconciliation_locks_expires_at', table_name='reconciliation_locks')
    op.drop_table('reconciliation_locks')

    op.drop_index('ix_payments_state', table_name='payments')
    op.drop_index('ix_payments_remote_id', table_name='payments')
    op.drop_table('payments')

    op.drop_index('ix_orders_uuid', table_name='orders')
    op.drop_table('orders')
