"""
Booking domain events.

Dataclass events record lifecycle facts for post-commit handling (user
notifications, push delivery). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class BookingEvent:
    booking_id: str
    recipient_user_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    name = "booking.event"

    def dedupe_key(self) -> str:
        return f"{self.name}:{self.booking_id}:{self.recipient_user_id}"


@dataclass
class BookingRequested(BookingEvent):
    name = "booking.requested"


@dataclass
class BookingAccepted(BookingEvent):
    name = "booking.accepted"


@dataclass
class BookingDeclined(BookingEvent):
    reason: Optional[str] = None
    name = "booking.declined"


@dataclass
class BookingPaid(BookingEvent):
    payment_intent_id: str = ""
    name = "booking.paid"

    def dedupe_key(self) -> str:
        return f"{self.name}:{self.payment_intent_id}:{self.recipient_user_id}"


@dataclass
class PaymentFailed(BookingEvent):
    payment_intent_id: str = ""
    name = "booking.payment_failed"

    def dedupe_key(self) -> str:
        return f"{self.name}:{self.payment_intent_id}:{self.recipient_user_id}"


@dataclass
class BookingMarkedComplete(BookingEvent):
    name = "booking.completed_by_provider"


@dataclass
class BookingCompleted(BookingEvent):
    payout_outcome: str = ""
    name = "booking.completed"


@dataclass
class BookingCanceled(BookingEvent):
    canceled_by_role: str = ""
    refunded: bool = False
    reason: Optional[str] = None
    name = "booking.canceled"


@dataclass
class BookingDisputed(BookingEvent):
    name = "booking.disputed"


@dataclass
class BookingRefunded(BookingEvent):
    refund_id: str = ""
    amount: int = 0
    name = "booking.refunded"

    def dedupe_key(self) -> str:
        return f"{self.name}:{self.refund_id}:{self.recipient_user_id}"
