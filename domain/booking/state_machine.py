"""
Booking lifecycle state machine.

Pure functions only. Every status write in the application layer goes through
``assert_transition`` (or ``assert_resolution`` for admin dispute outcomes)
after re-reading the current row.
"""
from __future__ import annotations

from typing import Dict, FrozenSet, Union

from domain.booking.entity import BookingStatus
from domain.common.exceptions import DomainValidationException, InvalidTransitionException


S = BookingStatus

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    S.PENDING: frozenset({S.ACCEPTED, S.DECLINED, S.CANCELED_CUSTOMER}),
    S.ACCEPTED: frozenset({S.PAID, S.CANCELED_CUSTOMER, S.CANCELED_PROVIDER}),
    S.PAID: frozenset({
        S.COMPLETED_BY_PROVIDER,
        S.DISPUTED,
        S.CANCELED_CUSTOMER,
        S.CANCELED_PROVIDER,
        S.REFUNDED,
    }),
    S.COMPLETED_BY_PROVIDER: frozenset({S.COMPLETED, S.DISPUTED}),
    S.COMPLETED: frozenset(),
    S.DECLINED: frozenset(),
    S.CANCELED_CUSTOMER: frozenset(),
    S.CANCELED_PROVIDER: frozenset(),
    S.REFUNDED: frozenset(),
    S.DISPUTED: frozenset(),
}

# Admin outcomes for a disputed booking; kept apart from the customer/provider table.
RESOLUTION_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    S.DISPUTED: frozenset({S.REFUNDED, S.COMPLETED}),
}

TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset({
    S.DECLINED,
    S.COMPLETED,
    S.CANCELED_CUSTOMER,
    S.CANCELED_PROVIDER,
    S.REFUNDED,
})

# Legacy spellings seen in stored data and older clients.
STATUS_ALIASES: Dict[str, BookingStatus] = {
    "confirmed": S.ACCEPTED,
    "canceled": S.CANCELED_CUSTOMER,
    "cancelled": S.CANCELED_CUSTOMER,
    "cancelled_customer": S.CANCELED_CUSTOMER,
    "cancelled_provider": S.CANCELED_PROVIDER,
    "complete": S.COMPLETED,
    "completed_provider": S.COMPLETED_BY_PROVIDER,
}


StatusLike = Union[BookingStatus, str]


def normalize_status(value: StatusLike) -> BookingStatus:
    """Canonicalize a status value, resolving legacy aliases."""
    if isinstance(value, BookingStatus):
        return value
    raw = (value or "").strip().lower()
    if raw in STATUS_ALIASES:
        return STATUS_ALIASES[raw]
    try:
        return BookingStatus(raw)
    except ValueError:
        raise DomainValidationException(
            f"Unknown booking status: {value!r}",
            field="status",
            details={"status": value},
        )


def allowed_transitions(status: StatusLike) -> FrozenSet[BookingStatus]:
    return ALLOWED_TRANSITIONS[normalize_status(status)]


def can_transition(current: StatusLike, requested: StatusLike) -> bool:
    return normalize_status(requested) in allowed_transitions(current)


def assert_transition(current: StatusLike, requested: StatusLike) -> BookingStatus:
    """Validate ``current -> requested``; returns the canonical target status."""
    cur = normalize_status(current)
    req = normalize_status(requested)
    if req not in ALLOWED_TRANSITIONS[cur]:
        raise InvalidTransitionException(cur.value, req.value)
    return req


def assert_resolution(current: StatusLike, requested: StatusLike) -> BookingStatus:
    """Validate an admin dispute outcome, falling back to the regular table."""
    cur = normalize_status(current)
    req = normalize_status(requested)
    if req in RESOLUTION_TRANSITIONS.get(cur, frozenset()):
        return req
    return assert_transition(cur, req)


def is_terminal(status: StatusLike) -> bool:
    return normalize_status(status) in TERMINAL_STATUSES
