"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    WEBHOOK_SECRET_MISSING = 60005


# Processor error code meaning "platform balance cannot cover the transfer yet"
BALANCE_INSUFFICIENT = "balance_insufficient"


# Provider→internal status mapping per object kind
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe.refund": {
        "succeeded": "completed",
        "pending": "processing",
        "requires_action": "processing",
        "failed": "failed",
        "canceled": "failed",
    },
    "stripe.payout": {
        "paid": "paid",
        "in_transit": "in_transit",
        "pending": "pending",
        "canceled": "canceled",
        "failed": "failed",
    },
    "stripe.transfer": {
        "paid": "succeeded",
        "pending": "pending",
        "reversed": "reversed",
    },
}

PROVIDER_STATUS_DEFAULTS = {
    "stripe.refund": "processing",
    "stripe.payout": "pending",
    "stripe.transfer": "succeeded",
}


def map_provider_status(kind: str, provider_status: str | None) -> str:
    """Map an external status string onto the internal vocabulary for ``kind``."""
    mapping = PROVIDER_STATUS_TO_INTERNAL.get(kind, {})
    default = PROVIDER_STATUS_DEFAULTS.get(kind, provider_status or "")
    if not provider_status:
        return default
    return mapping.get(provider_status, default)
