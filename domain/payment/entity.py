"""
退款领域实体 - 每次退款尝试一条记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException, InvalidAmountException


class RefundStatus(str, Enum):
    """退款状态枚举"""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundReason(str, Enum):
    CUSTOMER_CANCELED = "customer_canceled"
    PROVIDER_CANCELED = "provider_canceled"
    DISPUTE_RESOLUTION = "dispute_resolution"


@dataclass
class Refund:
    """
    退款实体

    业务规则：
    1. 在调用外部退款接口之前写入 processing 记录
    2. completed / failed 为终态
    """

    id: Optional[str]
    booking_id: str
    amount: int
    reason: RefundReason
    processed_by: str
    status: RefundStatus = RefundStatus.PROCESSING
    external_refund_id: Optional[str] = None
    description: Optional[str] = None
    platform_fee_refunded: Optional[int] = None
    provider_amount_refunded: Optional[int] = None
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount <= 0:
            raise InvalidAmountException(self.amount, field="amount")
        if self.metadata is None:
            self.metadata = {}

    @property
    def is_final(self) -> bool:
        return self.status in (RefundStatus.COMPLETED, RefundStatus.FAILED)

    def record_processor_result(self, external_refund_id: str, status: RefundStatus) -> None:
        """记录外部退款结果（processing 表示渠道仍在处理）"""
        if self.status == RefundStatus.FAILED:
            raise DomainValidationException("Refund already failed", field="status")
        self.external_refund_id = external_refund_id
        self.status = status
        now = datetime.now(timezone.utc)
        if status == RefundStatus.COMPLETED:
            self.processed_at = now
            self.failure_reason = None
        self.updated_at = now

    def mark_failed(self, reason: Optional[str] = None) -> None:
        if self.status == RefundStatus.COMPLETED:
            raise DomainValidationException("Completed refund cannot fail", field="status")
        self.status = RefundStatus.FAILED
        self.failure_reason = reason
        self.updated_at = datetime.now(timezone.utc)
