"""
站内通知数据库模型（idempotency_key 唯一）
"""
from sqlalchemy import JSON, Column, DateTime, String, Text

from .base import Base, created_at_column, id_factory


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(String(64), primary_key=True, default=id_factory("ntf"))
    user_id = Column(String(64), nullable=False, index=True)
    event = Column(String(64), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)
    action_url = Column(String(500), nullable=True)
    payload = Column(JSON, nullable=True)
    idempotency_key = Column(String(255), unique=True, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    created_at = created_at_column()
