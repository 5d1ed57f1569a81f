"""
服务商领域实体 - 收款账户状态、KYC 状态与服务目录
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import InvalidAmountException


class KycStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PENDING_REVIEW = "pending_review"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ProviderPlan(str, Enum):
    STARTER = "starter"
    PRO = "pro"
    ELITE = "elite"


@dataclass
class Provider:
    """
    服务商

    charges_enabled / payouts_enabled / connect_account_id / kyc_status 只由
    webhook 对账写入，以外部系统为准。
    """

    id: str
    user_id: str
    business_name: str = ""
    plan: ProviderPlan = ProviderPlan.STARTER
    charges_gst: bool = True
    fee_override_bps: Optional[int] = None
    connect_account_id: Optional[str] = None
    charges_enabled: bool = False
    payouts_enabled: bool = False
    kyc_status: KycStatus = KycStatus.NOT_STARTED
    kyc_reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def apply_connect_flags(self, *, charges_enabled: bool, payouts_enabled: bool, connect_account_id: Optional[str] = None) -> dict:
        """更新收款账户标记，返回实际发生变化的字段 {name: new_value}"""
        changes: dict = {}
        if self.charges_enabled != charges_enabled:
            changes["charges_enabled"] = charges_enabled
        if self.payouts_enabled != payouts_enabled:
            changes["payouts_enabled"] = payouts_enabled
        self.charges_enabled = charges_enabled
        self.payouts_enabled = payouts_enabled
        if connect_account_id and not self.connect_account_id:
            self.connect_account_id = connect_account_id
        self.updated_at = datetime.now(timezone.utc)
        return changes

    def apply_kyc_status(self, status: KycStatus) -> bool:
        """更新 KYC 状态，返回是否发生变化"""
        if self.kyc_status == status:
            return False
        self.kyc_status = status
        if status in (KycStatus.VERIFIED, KycStatus.REJECTED):
            self.kyc_reviewed_at = datetime.now(timezone.utc)
        self.updated_at = datetime.now(timezone.utc)
        return True

    @property
    def can_receive_payouts(self) -> bool:
        return bool(self.connect_account_id) and self.payouts_enabled


@dataclass
class Service:
    """服务目录条目（价格为最小货币单位）"""

    id: str
    provider_id: str
    title: str
    price: int
    charges_gst: Optional[bool] = None
    is_active: bool = True

    def __post_init__(self):
        if isinstance(self.price, bool) or not isinstance(self.price, int) or self.price <= 0:
            raise InvalidAmountException(self.price, field="price")
