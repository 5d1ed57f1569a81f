"""
User-facing message catalogue.

Messages are looked up by stable keys. A gettext catalogue under ``locales/``
may translate them; otherwise the English defaults below are used. Internal
processor codes never appear in these strings.
"""
from __future__ import annotations

import gettext
from contextvars import ContextVar
from pathlib import Path

from core.logging_config import get_logger

_current_locale: ContextVar[str] = ContextVar("current_locale", default="en")
_translators: dict[str, gettext.NullTranslations] = {}
_logger = get_logger(__name__)


DEFAULT_MESSAGES: dict[str, str] = {
    "success": "Success",
    "health.ok": "OK",
    "error.internal": "Something went wrong, please try again later",
    "validation.failed": "Request validation failed: {reason}",
    "validation.domain": "Request validation failed",
    "auth.unauthorized": "Please sign in to continue",
    "auth.token.expired": "Your session has expired, please sign in again",
    "auth.forbidden": "You are not allowed to perform this action",
    "booking.not_found": "Booking not found",
    "service.not_found": "Service not found",
    "provider.not_found": "Provider not found",
    "dispute.not_found": "Dispute not found",
    "booking.invalid_transition": "Booking cannot be changed in its current state",
    "booking.invalid_state": "Booking cannot be changed in its current state",
    "earnings.invalid_amount": "The booking amount is invalid",
    "earnings.missing": "Payout details are not ready yet, please try again shortly",
    "refund.failed": "Refund failed, please contact support",
    "request.in_progress": "This request is already being processed, please retry shortly",
    "webhook.signature_invalid": "Invalid webhook signature",
    "webhook.secret_missing": "Webhook secret not configured",
    "webhook.received": "Webhook received",
    "booking.created": "Booking requested",
    "booking.updated": "Booking updated",
    "booking.completed": "Booking completed",
    "booking.canceled": "Booking canceled",
    "dispute.opened": "Dispute opened",
    "dispute.resolved": "Dispute resolved",
    # Notification templates
    "notify.booking.requested.title": "New booking request",
    "notify.booking.requested.body": "A customer has requested one of your services.",
    "notify.booking.accepted.title": "Booking accepted",
    "notify.booking.accepted.body": "Your booking was accepted. You can now pay to confirm it.",
    "notify.booking.declined.title": "Booking declined",
    "notify.booking.declined.body": "Your booking request was declined.",
    "notify.booking.paid.title": "Booking paid",
    "notify.booking.paid.body": "A booking has been paid. Earnings are held until the customer confirms completion.",
    "notify.booking.payment_failed.title": "Payment failed",
    "notify.booking.payment_failed.body": "Your payment failed. Please try another payment method.",
    "notify.booking.completed_by_provider.title": "Please confirm completion",
    "notify.booking.completed_by_provider.body": "Your provider marked the booking as complete.",
    "notify.booking.completed.title": "Booking completed",
    "notify.booking.completed.body": "The customer confirmed completion. Payout status: {payout_outcome}.",
    "notify.booking.canceled.title": "Booking canceled",
    "notify.booking.canceled.body": "A booking was canceled by the {canceled_by_role}.",
    "notify.booking.disputed.title": "Booking disputed",
    "notify.booking.disputed.body": "A dispute was opened for this booking.",
    "notify.booking.refunded.title": "Refund processed",
    "notify.booking.refunded.body": "A refund has been processed for your booking.",
    "notify.connect.payouts_enabled.title": "Payouts enabled",
    "notify.connect.payouts_enabled.body": "Your payouts are enabled. You can now receive payouts for paid bookings.",
    "notify.connect.payouts_disabled.title": "Payouts disabled",
    "notify.connect.payouts_disabled.body": "Your payouts are currently disabled. You may need to complete additional verification.",
    "notify.connect.charges_enabled.title": "Payments enabled",
    "notify.connect.charges_enabled.body": "You can now accept payments for new bookings.",
    "notify.connect.charges_disabled.title": "Payments disabled",
    "notify.connect.charges_disabled.body": "Your ability to accept payments is currently disabled.",
    "notify.kyc.verified.title": "Identity verified",
    "notify.kyc.verified.body": "Your identity verification was approved.",
    "notify.kyc.rejected.title": "Identity verification rejected",
    "notify.kyc.rejected.body": "Your identity verification was not approved. Please review and resubmit.",
    "notify.kyc.pending_review.title": "Identity verification in review",
    "notify.kyc.pending_review.body": "Your documents are being reviewed.",
    "notify.kyc.in_progress.title": "Identity verification needs attention",
    "notify.kyc.in_progress.body": "Please complete the remaining verification steps.",
    "notify.kyc.not_started.title": "Identity verification started",
    "notify.kyc.not_started.body": "Your verification profile was created.",
}


def set_locale(locale: str) -> None:
    """Set current request locale (fallback to 'en')."""
    _current_locale.set(locale or "en")


def get_locale() -> str:
    """Get current request locale (default 'en')."""
    return _current_locale.get()


def _get_translator(locale: str) -> gettext.NullTranslations:
    tr = _translators.get(locale)
    if tr is not None:
        return tr
    localedir = Path(__file__).resolve().parent.parent / "locales"
    tr = gettext.translation(
        domain="messages",
        localedir=str(localedir),
        languages=[locale],
        fallback=True,
    )
    _translators[locale] = tr
    return tr


def t(msgid: str, **params) -> str:
    """Translate msgid using current locale and format with params.

    Falls back to the English default, then to the msgid itself.
    """
    text = _get_translator(get_locale()).gettext(msgid)
    if text == msgid:
        text = DEFAULT_MESSAGES.get(msgid, msgid)
    if not params:
        return text
    try:
        return text.format(**params)
    except (KeyError, IndexError, ValueError) as exc:
        _logger.warning("i18n_format_failed", msgid=msgid, params=list(params.keys()), error=str(exc))
        return text
