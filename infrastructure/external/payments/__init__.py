"""
Factory for the configured payment processor.
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentProcessor
from core.logging_config import get_logger
from core.settings import payment_settings


logger = get_logger(__name__)


def get_payment_processor() -> Optional[PaymentProcessor]:
    """Stripe adapter, or None when no secret key is configured.

    Without a processor payouts stay queued and paid cancellations fail
    with a refund error instead of crashing the request.
    """
    if not payment_settings.stripe.secret_key:
        logger.warning("payment_processor_unconfigured", provider="stripe")
        return None
    from .stripe_client import StripeClient
    return StripeClient()
