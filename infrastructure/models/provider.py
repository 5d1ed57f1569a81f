"""
服务商与服务目录数据库模型
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from .base import Base, created_at_column, id_factory, updated_at_column


class ProviderModel(Base):
    __tablename__ = "providers"

    id = Column(String(64), primary_key=True, default=id_factory("prov"))
    user_id = Column(String(64), unique=True, nullable=False, index=True, comment="服务商登录用户ID")
    business_name = Column(String(200), nullable=False, default="", comment="商户名称")
    plan = Column(String(20), nullable=False, default="starter", comment="套餐: starter/pro/elite")
    charges_gst = Column(Boolean, nullable=False, default=True, comment="是否为含税价")
    fee_override_bps = Column(Integer, nullable=True, comment="平台费率覆盖（基点）")

    # 收款账户（仅由 webhook 写入）
    connect_account_id = Column(String(100), unique=True, nullable=True, comment="Stripe Connect 账户ID")
    charges_enabled = Column(Boolean, nullable=False, default=False)
    payouts_enabled = Column(Boolean, nullable=False, default=False)

    kyc_status = Column(String(20), nullable=False, default="not_started", index=True, comment="KYC 状态")
    kyc_reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = created_at_column()
    updated_at = updated_at_column()

    def __repr__(self):
        return f"<ProviderModel(id='{self.id}', user_id='{self.user_id}', payouts_enabled={self.payouts_enabled})>"


class ServiceModel(Base):
    __tablename__ = "services"

    id = Column(String(64), primary_key=True, default=id_factory("svc"))
    provider_id = Column(
        String(64),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(200), nullable=False)
    price = Column(Integer, nullable=False, comment="价格（最小货币单位）")
    charges_gst = Column(Boolean, nullable=True, comment="为空时沿用服务商设置")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = created_at_column()
    updated_at = updated_at_column()
