"""
退款数据库模型 - 每次退款尝试一行
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text

from .base import Base, created_at_column, id_factory, updated_at_column


class RefundModel(Base):
    __tablename__ = "refunds"

    id = Column(String(64), primary_key=True, default=id_factory("rf"))
    booking_id = Column(String(64), ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False, comment="退款金额（最小货币单位）")
    reason = Column(String(32), nullable=False, comment="customer_canceled/provider_canceled/dispute_resolution")
    processed_by = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="processing", index=True, comment="processing/completed/failed")
    external_refund_id = Column(String(100), nullable=True, unique=True, comment="渠道退款ID")
    description = Column(Text, nullable=True)
    platform_fee_refunded = Column(Integer, nullable=True)
    provider_amount_refunded = Column(Integer, nullable=True)
    failure_reason = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    # 使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    created_at = created_at_column()
    updated_at = updated_at_column()

    def __repr__(self):
        return f"<RefundModel(id='{self.id}', booking_id='{self.booking_id}', amount={self.amount}, status='{self.status}')>"
