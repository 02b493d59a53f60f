"""create_orders_tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create orders table
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False, comment='订单ID'),
        sa.Column('order_number', sa.String(length=32), nullable=False, comment='订单号 ES-<year>-NNNN'),
        sa.Column('customer_email', sa.String(length=255), nullable=True, comment='客户邮箱'),
        sa.Column('customer_name', sa.String(length=200), nullable=True, comment='客户姓名'),
        sa.Column('customer_phone', sa.String(length=32), nullable=True, comment='客户电话'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 USD/XAF'),
        sa.Column('amount_expected', sa.Numeric(precision=15, scale=2), nullable=False, comment='应付金额'),
        sa.Column('amount_paid', sa.Numeric(precision=15, scale=2), nullable=True, comment='实付金额'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending', comment='业务状态'),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='pending', comment='支付状态'),
        sa.Column('payment_provider', sa.String(length=32), nullable=True, comment='支付提供商: stripe/campay'),
        sa.Column('payment_reference', sa.String(length=200), nullable=True, comment='支付渠道交易引用'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.Column('refund_amount', sa.Numeric(precision=15, scale=2), nullable=True, comment='退款金额'),
        sa.Column('refund_reason', sa.Text(), nullable=True, comment='退款原因'),
        sa.Column('refund_reference', sa.String(length=200), nullable=True, comment='渠道退款ID'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True, comment='退款时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='版本号'),
        sa.CheckConstraint('amount_expected > 0', name='ck_orders_amount_positive'),
        sa.CheckConstraint("currency IN ('USD', 'XAF')", name='ck_orders_currency'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        comment='订单表，status 为业务状态，payment_status 为资金状态'
    )

    # Create indexes
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)
    op.create_index('ix_orders_payment_reference', 'orders', ['payment_reference'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)
    op.create_index('ix_orders_status_payment_status', 'orders', ['status', 'payment_status'], unique=False)
    op.create_index('ix_orders_provider_reference', 'orders', ['payment_provider', 'payment_reference'], unique=False)

    # Create order_status_history table (append only)
    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False, comment='关联订单ID'),
        sa.Column('old_status', sa.String(length=32), nullable=True, comment='原状态'),
        sa.Column('new_status', sa.String(length=32), nullable=False, comment='新状态'),
        sa.Column('changed_by', sa.String(length=255), nullable=False, comment='操作者: system 或管理员标识'),
        sa.Column('notes', sa.Text(), nullable=True, comment='备注'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        comment='订单状态历史，只追加'
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'], unique=False)
    op.create_index(
        'ix_order_status_history_order_created',
        'order_status_history',
        ['order_id', 'created_at'],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index('ix_order_status_history_order_created', table_name='order_status_history')
    op.drop_index('ix_order_status_history_order_id', table_name='order_status_history')
    op.drop_table('order_status_history')

    op.drop_index('ix_orders_provider_reference', table_name='orders')
    op.drop_index('ix_orders_status_payment_status', table_name='orders')
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_payment_reference', table_name='orders')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_order_number', table_name='orders')
    op.drop_table('orders')
