"""
预订相关数据库模型 - 预订、取消审计、争议
注意：这是基础设施层的实现细节，业务规则在 domain.booking 中
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from .base import Base, created_at_column, id_factory, updated_at_column


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True, default=id_factory("bkg"))
    customer_id = Column(String(64), nullable=False, index=True, comment="客户用户ID")
    provider_id = Column(String(64), ForeignKey("providers.id"), nullable=False, index=True)
    service_id = Column(String(64), ForeignKey("services.id"), nullable=False)
    status = Column(String(32), nullable=False, default="pending", index=True, comment="预订状态")
    price_at_booking = Column(Integer, nullable=False, comment="下单时价格快照（最小货币单位）")
    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    payment_intent_id = Column(String(100), nullable=True, index=True, comment="支付引用")

    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        Index("ix_bookings_provider_status", "provider_id", "status"),
    )

    def __repr__(self):
        return f"<BookingModel(id='{self.id}', status='{self.status}', price={self.price_at_booking})>"


class BookingCancellationModel(Base):
    __tablename__ = "booking_cancellations"

    id = Column(String(64), primary_key=True, default=id_factory("bcx"))
    booking_id = Column(String(64), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    canceled_by = Column(String(64), nullable=False, comment="操作人用户ID")
    actor_role = Column(String(20), nullable=False, comment="customer/provider/admin")
    previous_status = Column(String(32), nullable=False)
    reason = Column(Text, nullable=True)
    refunded = Column(Boolean, nullable=False, default=False)
    refund_id = Column(String(64), nullable=True)

    created_at = created_at_column()


class DisputeModel(Base):
    __tablename__ = "disputes"

    id = Column(String(64), primary_key=True, default=id_factory("dsp"))
    booking_id = Column(String(64), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    opened_by = Column(String(64), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="open", index=True)
    admin_decision = Column(String(32), nullable=True, comment="customer_favor/provider_favor/split")
    admin_notes = Column(Text, nullable=True)
    refund_amount = Column(Integer, nullable=True)
    resolved_by = Column(String(64), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = created_at_column()
    updated_at = updated_at_column()
