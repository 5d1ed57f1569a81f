"""
Booking DTOs (Pydantic v2) used by the API and stored as idempotent results.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.booking.entity import Booking, BookingStatus, Dispute, DisputeStatus


class BookingDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    provider_id: str
    service_id: str
    status: BookingStatus
    price_at_booking: int
    scheduled_date: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, booking: Booking) -> "BookingDTO":
        return cls.model_validate(booking)


class CreateBookingDTO(BaseModel):
    service_id: str = Field(min_length=1)
    scheduled_date: Optional[datetime] = None


class RespondBookingDTO(BaseModel):
    action: Literal["accept", "decline", "cancel"]
    reason: Optional[str] = Field(default=None, max_length=500)


class CancelBookingDTO(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class OpenDisputeDTO(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class ResolveDisputeDTO(BaseModel):
    decision: Literal["customer_favor", "provider_favor", "split"]
    refund_amount: Optional[int] = Field(default=None, gt=0)
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class PayoutOutcome(str, Enum):
    PAID_OUT = "paid_out"
    QUEUED = "queued"
    ALREADY_PAID = "already_paid"
    NOT_ELIGIBLE = "not_eligible"


class CompletionResultDTO(BaseModel):
    booking: BookingDTO
    payout_outcome: PayoutOutcome
    transfer_id: Optional[str] = None
    reason: Optional[str] = None


class CancellationResultDTO(BaseModel):
    booking: BookingDTO
    refunded: bool
    refund_id: Optional[str] = None
    cancellation_id: Optional[str] = None


class DisputeDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    opened_by: str
    reason: str
    status: DisputeStatus
    admin_decision: Optional[str] = None
    refund_amount: Optional[int] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, dispute: Dispute) -> "DisputeDTO":
        return cls.model_validate(dispute)


class PayoutRetrySummaryDTO(BaseModel):
    attempted: int = 0
    paid: int = 0
    queued: int = 0
    failed: int = 0
    skipped: int = 0
