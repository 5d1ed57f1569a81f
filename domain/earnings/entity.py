"""
Provider earnings (escrow ledger entry) and provider payouts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.earnings.calculator import EarningsBreakdown


class EarningsStatus(str, Enum):
    HELD = "held"
    AWAITING_PAYOUT = "awaiting_payout"
    TRANSFERRED = "transferred"
    PAID_OUT = "paid_out"
    REFUNDED = "refunded"
    FAILED = "failed"


# Rows in these statuses may still be transferred.
PRE_TRANSFER_STATUSES = frozenset({EarningsStatus.HELD, EarningsStatus.AWAITING_PAYOUT})
SETTLED_STATUSES = frozenset({EarningsStatus.TRANSFERRED, EarningsStatus.PAID_OUT})
BLOCKED_STATUSES = frozenset({EarningsStatus.REFUNDED, EarningsStatus.FAILED})


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProviderEarnings:
    """
    每个预订一条记录；状态单调推进 held → awaiting_payout → transferred → paid_out，
    只有退款可以把记录转为 refunded。
    """

    id: Optional[str]
    booking_id: str
    provider_id: str
    gross_amount: int
    platform_fee_amount: int
    gst_amount: int
    net_amount: int
    status: EarningsStatus = EarningsStatus.HELD
    currency: str = "nzd"
    transfer_id: Optional[str] = None
    ledger_reference: Optional[str] = None
    payout_id: Optional[str] = None
    payout_attempts: int = 0
    last_payout_error: Optional[str] = None
    transferred_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def held(cls, booking_id: str, provider_id: str, breakdown: EarningsBreakdown, currency: str) -> "ProviderEarnings":
        return cls(
            id=None,
            booking_id=booking_id,
            provider_id=provider_id,
            gross_amount=breakdown.gross,
            platform_fee_amount=breakdown.platform_fee_amount,
            gst_amount=breakdown.gst_amount,
            net_amount=breakdown.net_amount,
            status=EarningsStatus.HELD,
            currency=currency,
        )

    @property
    def is_settled(self) -> bool:
        return bool(self.transfer_id) or self.status in SETTLED_STATUSES

    @property
    def is_transferable(self) -> bool:
        return not self.transfer_id and self.status in PRE_TRANSFER_STATUSES

    def mark_awaiting_payout(self) -> None:
        if self.status == EarningsStatus.AWAITING_PAYOUT:
            return
        if self.status != EarningsStatus.HELD:
            raise DomainValidationException(
                f"Cannot queue earnings in status {self.status.value}", field="status"
            )
        self.status = EarningsStatus.AWAITING_PAYOUT
        self.updated_at = _now()

    def record_transfer(self, transfer_id: str, ledger_reference: Optional[str] = None) -> None:
        if self.transfer_id and self.transfer_id != transfer_id:
            raise DomainValidationException(
                "Earnings already linked to another transfer",
                field="transfer_id",
                details={"existing": self.transfer_id, "incoming": transfer_id},
            )
        if not self.is_transferable and not self.transfer_id:
            raise DomainValidationException(
                f"Cannot transfer earnings in status {self.status.value}", field="status"
            )
        self.transfer_id = transfer_id
        self.ledger_reference = ledger_reference or self.ledger_reference
        self.status = EarningsStatus.TRANSFERRED
        self.transferred_at = _now()
        self.last_payout_error = None
        self.updated_at = self.transferred_at

    def record_failed_attempt(self, reason: str, *, give_up: bool = False) -> None:
        self.payout_attempts += 1
        self.last_payout_error = reason
        if give_up:
            self.status = EarningsStatus.FAILED
        self.updated_at = _now()

    def link_payout(self, payout_id: str, paid: bool) -> None:
        self.payout_id = payout_id
        if paid and self.status == EarningsStatus.TRANSFERRED:
            self.status = EarningsStatus.PAID_OUT
        self.updated_at = _now()

    def mark_refunded(self) -> None:
        self.status = EarningsStatus.REFUNDED
        self.updated_at = _now()


class PayoutStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    PAID = "paid"
    CANCELED = "canceled"
    FAILED = "failed"


@dataclass
class ProviderPayout:
    id: str  # external payout id
    provider_id: str
    connect_account_id: str
    amount: int
    currency: str
    status: PayoutStatus
    arrival_date: Optional[datetime] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    balance_transaction_id: Optional[str] = None
    raw: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
