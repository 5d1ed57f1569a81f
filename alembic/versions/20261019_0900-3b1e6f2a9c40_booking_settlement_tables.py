"""booking_settlement_tables

Revision ID: 3b1e6f2a9c40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b1e6f2a9c40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True) -> list:
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='创建时间')]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, comment='更新时间'))
    return cols


def upgrade() -> None:
    op.create_table(
        'providers',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='服务商登录用户ID'),
        sa.Column('business_name', sa.String(length=200), nullable=False, server_default='', comment='商户名称'),
        sa.Column('plan', sa.String(length=20), nullable=False, server_default='starter', comment='套餐: starter/pro/elite'),
        sa.Column('charges_gst', sa.Boolean(), nullable=False, server_default=sa.true(), comment='是否为含税价'),
        sa.Column('fee_override_bps', sa.Integer(), nullable=True, comment='平台费率覆盖（基点）'),
        sa.Column('connect_account_id', sa.String(length=100), nullable=True, comment='Stripe Connect 账户ID'),
        sa.Column('charges_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payouts_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('kyc_status', sa.String(length=20), nullable=False, server_default='not_started', comment='KYC 状态'),
        sa.Column('kyc_reviewed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('connect_account_id', name='uq_providers_connect_account_id'),
        comment='服务商',
    )
    op.create_index('ix_providers_user_id', 'providers', ['user_id'], unique=True)
    op.create_index('ix_providers_kyc_status', 'providers', ['kyc_status'], unique=False)

    op.create_table(
        'services',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('provider_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False, comment='价格（最小货币单位）'),
        sa.Column('charges_gst', sa.Boolean(), nullable=True, comment='为空时沿用服务商设置'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_services_provider_id', 'services', ['provider_id'], unique=False)

    op.create_table(
        'bookings',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.String(length=64), nullable=False, comment='客户用户ID'),
        sa.Column('provider_id', sa.String(length=64), nullable=False),
        sa.Column('service_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending', comment='预订状态'),
        sa.Column('price_at_booking', sa.Integer(), nullable=False, comment='下单时价格快照（最小货币单位）'),
        sa.Column('scheduled_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_intent_id', sa.String(length=100), nullable=True, comment='支付引用'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_bookings_customer_id', 'bookings', ['customer_id'], unique=False)
    op.create_index('ix_bookings_provider_id', 'bookings', ['provider_id'], unique=False)
    op.create_index('ix_bookings_status', 'bookings', ['status'], unique=False)
    op.create_index('ix_bookings_payment_intent_id', 'bookings', ['payment_intent_id'], unique=False)
    op.create_index('ix_bookings_provider_status', 'bookings', ['provider_id', 'status'], unique=False)

    op.create_table(
        'booking_cancellations',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('booking_id', sa.String(length=64), nullable=False),
        sa.Column('canceled_by', sa.String(length=64), nullable=False, comment='操作人用户ID'),
        sa.Column('actor_role', sa.String(length=20), nullable=False, comment='customer/provider/admin'),
        sa.Column('previous_status', sa.String(length=32), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('refunded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refund_id', sa.String(length=64), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_booking_cancellations_booking_id', 'booking_cancellations', ['booking_id'], unique=False)

    op.create_table(
        'disputes',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('booking_id', sa.String(length=64), nullable=False),
        sa.Column('opened_by', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='open'),
        sa.Column('admin_decision', sa.String(length=32), nullable=True, comment='customer_favor/provider_favor/split'),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('resolved_by', sa.String(length=64), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_disputes_booking_id', 'disputes', ['booking_id'], unique=False)
    op.create_index('ix_disputes_status', 'disputes', ['status'], unique=False)

    op.create_table(
        'provider_earnings',
        sa.Column('id', sa.String(length=80), nullable=False, comment='earn_{booking_id}'),
        sa.Column('booking_id', sa.String(length=64), nullable=False),
        sa.Column('provider_id', sa.String(length=64), nullable=False),
        sa.Column('gross_amount', sa.Integer(), nullable=False),
        sa.Column('platform_fee_amount', sa.Integer(), nullable=False),
        sa.Column('gst_amount', sa.Integer(), nullable=False),
        sa.Column('net_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='nzd'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='held',
                  comment='held/awaiting_payout/transferred/paid_out/refunded/failed'),
        sa.Column('transfer_id', sa.String(length=100), nullable=True, comment='外部转账ID'),
        sa.Column('ledger_reference', sa.String(length=100), nullable=True, comment='Connect 账户侧流水ID，用于关联 payout'),
        sa.Column('payout_id', sa.String(length=100), nullable=True),
        sa.Column('payout_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_payout_error', sa.Text(), nullable=True),
        sa.Column('transferred_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id']),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_id', name='uq_provider_earnings_booking_id'),
        sa.UniqueConstraint('transfer_id', name='uq_provider_earnings_transfer_id'),
    )
    op.create_index('ix_provider_earnings_provider_id', 'provider_earnings', ['provider_id'], unique=False)
    op.create_index('ix_provider_earnings_status', 'provider_earnings', ['status'], unique=False)
    op.create_index('ix_provider_earnings_ledger_reference', 'provider_earnings', ['ledger_reference'], unique=False)
    op.create_index('ix_provider_earnings_payout_id', 'provider_earnings', ['payout_id'], unique=False)
    op.create_index('ix_provider_earnings_provider_ledger', 'provider_earnings', ['provider_id', 'ledger_reference'], unique=False)

    op.create_table(
        'provider_payouts',
        sa.Column('id', sa.String(length=100), nullable=False, comment='外部 payout ID'),
        sa.Column('provider_id', sa.String(length=64), nullable=False),
        sa.Column('connect_account_id', sa.String(length=100), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('arrival_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failure_code', sa.String(length=100), nullable=True),
        sa.Column('failure_message', sa.Text(), nullable=True),
        sa.Column('balance_transaction_id', sa.String(length=100), nullable=True),
        sa.Column('raw', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_provider_payouts_provider_id', 'provider_payouts', ['provider_id'], unique=False)
    op.create_index('ix_provider_payouts_status', 'provider_payouts', ['status'], unique=False)

    op.create_table(
        'refunds',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('booking_id', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False, comment='退款金额（最小货币单位）'),
        sa.Column('reason', sa.String(length=32), nullable=False, comment='customer_canceled/provider_canceled/dispute_resolution'),
        sa.Column('processed_by', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='processing', comment='processing/completed/failed'),
        sa.Column('external_refund_id', sa.String(length=100), nullable=True, comment='渠道退款ID'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('platform_fee_refunded', sa.Integer(), nullable=True),
        sa.Column('provider_amount_refunded', sa.Integer(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_refund_id', name='uq_refunds_external_refund_id'),
    )
    op.create_index('ix_refunds_booking_id', 'refunds', ['booking_id'], unique=False)
    op.create_index('ix_refunds_status', 'refunds', ['status'], unique=False)

    op.create_table(
        'idempotency_records',
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending', comment='pending/completed'),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('claim_token', sa.String(length=32), nullable=True, comment='当前持有者'),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True, comment='pending 租约起点'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('key'),
    )
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'], unique=False)

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('event', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('action_url', sa.String(length=500), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_notifications_idempotency_key'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_idempotency_records_expires_at', table_name='idempotency_records')
    op.drop_table('idempotency_records')
    op.drop_index('ix_refunds_status', table_name='refunds')
    op.drop_index('ix_refunds_booking_id', table_name='refunds')
    op.drop_table('refunds')
    op.drop_index('ix_provider_payouts_status', table_name='provider_payouts')
    op.drop_index('ix_provider_payouts_provider_id', table_name='provider_payouts')
    op.drop_table('provider_payouts')
    op.drop_index('ix_provider_earnings_provider_ledger', table_name='provider_earnings')
    op.drop_index('ix_provider_earnings_payout_id', table_name='provider_earnings')
    op.drop_index('ix_provider_earnings_ledger_reference', table_name='provider_earnings')
    op.drop_index('ix_provider_earnings_status', table_name='provider_earnings')
    op.drop_index('ix_provider_earnings_provider_id', table_name='provider_earnings')
    op.drop_table('provider_earnings')
    op.drop_index('ix_disputes_status', table_name='disputes')
    op.drop_index('ix_disputes_booking_id', table_name='disputes')
    op.drop_table('disputes')
    op.drop_index('ix_booking_cancellations_booking_id', table_name='booking_cancellations')
    op.drop_table('booking_cancellations')
    op.drop_index('ix_bookings_provider_status', table_name='bookings')
    op.drop_index('ix_bookings_payment_intent_id', table_name='bookings')
    op.drop_index('ix_bookings_status', table_name='bookings')
    op.drop_index('ix_bookings_provider_id', table_name='bookings')
    op.drop_index('ix_bookings_customer_id', table_name='bookings')
    op.drop_table('bookings')
    op.drop_index('ix_services_provider_id', table_name='services')
    op.drop_table('services')
    op.drop_index('ix_providers_kyc_status', table_name='providers')
    op.drop_index('ix_providers_user_id', table_name='providers')
    op.drop_table('providers')
