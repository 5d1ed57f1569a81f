"""
服务商收益与提现数据库模型
"""
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text

from .base import Base, created_at_column, updated_at_column


class ProviderEarningsModel(Base):
    """每个预订一条收益记录（booking_id 唯一）"""

    __tablename__ = "provider_earnings"

    id = Column(String(80), primary_key=True, comment="earn_{booking_id}")
    booking_id = Column(String(64), ForeignKey("bookings.id"), unique=True, nullable=False)
    provider_id = Column(String(64), ForeignKey("providers.id"), nullable=False, index=True)

    gross_amount = Column(Integer, nullable=False)
    platform_fee_amount = Column(Integer, nullable=False)
    gst_amount = Column(Integer, nullable=False)
    net_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="nzd")

    status = Column(
        String(20),
        nullable=False,
        default="held",
        index=True,
        comment="held/awaiting_payout/transferred/paid_out/refunded/failed",
    )
    transfer_id = Column(String(100), nullable=True, unique=True, comment="外部转账ID")
    ledger_reference = Column(String(100), nullable=True, index=True, comment="Connect 账户侧流水ID，用于关联 payout")
    payout_id = Column(String(100), nullable=True, index=True)
    payout_attempts = Column(Integer, nullable=False, default=0)
    last_payout_error = Column(Text, nullable=True)
    transferred_at = Column(DateTime(timezone=True), nullable=True)

    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        Index("ix_provider_earnings_provider_ledger", "provider_id", "ledger_reference"),
    )


class ProviderPayoutModel(Base):
    __tablename__ = "provider_payouts"

    id = Column(String(100), primary_key=True, comment="外部 payout ID")
    provider_id = Column(String(64), ForeignKey("providers.id"), nullable=False, index=True)
    connect_account_id = Column(String(100), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    arrival_date = Column(DateTime(timezone=True), nullable=True)
    failure_code = Column(String(100), nullable=True)
    failure_message = Column(Text, nullable=True)
    balance_transaction_id = Column(String(100), nullable=True)
    raw = Column(JSON, nullable=True)

    created_at = created_at_column()
    updated_at = updated_at_column()
