"""
预订领域实体 - Booking 聚合根及其审计记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException, InvalidAmountException


class BookingStatus(str, Enum):
    """预订状态枚举"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    PAID = "paid"
    COMPLETED_BY_PROVIDER = "completed_by_provider"
    COMPLETED = "completed"
    CANCELED_CUSTOMER = "canceled_customer"
    CANCELED_PROVIDER = "canceled_provider"
    DISPUTED = "disputed"
    REFUNDED = "refunded"


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Booking:
    """
    预订聚合根

    业务规则：
    1. price_at_booking 为创建时的价格快照（最小货币单位），之后不可变
    2. 状态只能通过状态机变更（见 domain.booking.state_machine）
    3. 终态记录保留用于审计，不做物理删除
    """

    id: Optional[str]
    customer_id: str
    provider_id: str
    service_id: str
    status: BookingStatus
    price_at_booking: int
    scheduled_date: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.price_at_booking, bool) or not isinstance(self.price_at_booking, int):
            raise InvalidAmountException(self.price_at_booking, field="price_at_booking")
        if self.price_at_booking <= 0:
            raise InvalidAmountException(self.price_at_booking, field="price_at_booking")
        if not self.customer_id or not self.provider_id or not self.service_id:
            raise DomainValidationException("Booking requires customer, provider and service", field="booking")
        self.scheduled_date = _ensure_utc(self.scheduled_date)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def apply_status(self, status: BookingStatus) -> None:
        """写入已经过状态机校验的新状态"""
        self.status = status
        self.updated_at = datetime.now(timezone.utc)

    def scheduled_in_past(self, now: Optional[datetime] = None) -> bool:
        if self.scheduled_date is None:
            return False
        return self.scheduled_date <= (now or datetime.now(timezone.utc))


@dataclass
class BookingCancellation:
    """取消审计记录"""

    id: Optional[str]
    booking_id: str
    canceled_by: str
    actor_role: ActorRole
    previous_status: BookingStatus
    reason: Optional[str] = None
    refunded: bool = False
    refund_id: Optional[str] = None
    created_at: Optional[datetime] = None


class DisputeStatus(str, Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"


@dataclass
class Dispute:
    id: Optional[str]
    booking_id: str
    opened_by: str
    reason: str
    status: DisputeStatus = DisputeStatus.OPEN
    admin_decision: Optional[str] = None
    admin_notes: Optional[str] = None
    refund_amount: Optional[int] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = field(default=None)

    def resolve(self, admin_id: str, decision: str, refund_amount: Optional[int], notes: Optional[str]) -> None:
        if self.status == DisputeStatus.RESOLVED:
            raise DomainValidationException("Dispute already resolved", field="status")
        self.status = DisputeStatus.RESOLVED
        self.admin_decision = decision
        self.admin_notes = notes
        self.refund_amount = refund_amount
        self.resolved_by = admin_id
        self.resolved_at = datetime.now(timezone.utc)
        self.updated_at = self.resolved_at
