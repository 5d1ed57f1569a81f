"""
数据库模型基类（SQLAlchemy 2.0 风格）
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# 元数据对象用于数据库迁移
metadata = Base.metadata


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """带前缀的字符串主键，例如 bkg_3f2a..."""
    return f"{prefix}_{uuid.uuid4().hex}"


def id_factory(prefix: str):
    return lambda: new_id(prefix)


def created_at_column() -> Column:
    return Column(DateTime(timezone=True), default=utcnow, nullable=False, comment="创建时间")


def updated_at_column() -> Column:
    return Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="更新时间",
    )
