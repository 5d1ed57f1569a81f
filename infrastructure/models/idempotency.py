"""
幂等记录表：唯一键上的插入冲突即互斥原语
"""
from sqlalchemy import JSON, Column, DateTime, String

from .base import Base, created_at_column, updated_at_column


class IdempotencyRecordModel(Base):
    __tablename__ = "idempotency_records"

    key = Column(String(255), primary_key=True)
    status = Column(String(16), nullable=False, default="pending", comment="pending/completed")
    result = Column(JSON, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    claim_token = Column(String(32), nullable=True, comment="当前持有者")
    claimed_at = Column(DateTime(timezone=True), nullable=True, comment="pending 租约起点")

    created_at = created_at_column()
    updated_at = updated_at_column()
