"""
Webhook routes.

Signatures are checked before anything else (400, or 500 when the secret is
missing). An event whose id is still being processed elsewhere gets 409 so the
sender redelivers it later. Every other outcome is acknowledged with 200 and
logged, so redeliveries never loop on a bad event.
"""
from __future__ import annotations

from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_identity_webhook_verifier, get_payment_processor, get_webhook_reconciler
from application.ports.identity import IdentityWebhookVerifier
from application.ports.payment_gateway import PaymentProcessor
from application.services.webhook_service import WebhookReconciler
from core.i18n import t
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from domain.common.exceptions import (
    IdempotencyInProgressException,
    WebhookSecretMissingException,
    WebhookSignatureException,
)


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


def _verified(source: str, parse: Callable[[], object]):
    try:
        return parse()
    except WebhookSignatureException as exc:
        logger.warning("webhook_signature_invalid", source=source, reason=(exc.details or {}).get("reason"))
        raise
    except WebhookSecretMissingException:
        logger.error("webhook_secret_missing", source=source)
        raise


async def _acknowledge(source: str, event_id: str, event_type: str, handle: Callable[[], Awaitable[bool]]):
    try:
        processed = await handle()
    except IdempotencyInProgressException:
        logger.info("webhook_event_in_progress", source=source, event_id=event_id, event_type=event_type)
        raise
    except Exception:
        logger.exception("webhook_processing_failed", source=source, event_id=event_id, event_type=event_type)
        processed = False
    return success_response(
        data={"event_id": event_id, "processed": processed},
        message=t("webhook.received"),
    )


def _require_processor(source: str, processor: Optional[PaymentProcessor]) -> PaymentProcessor:
    if processor is None:
        logger.error("webhook_processor_unconfigured", source=source)
        raise WebhookSecretMissingException(source)
    return processor


@router.post("/payment-connect", summary="Connect account and payout events")
async def payment_connect_webhook(
    request: Request,
    processor: Optional[PaymentProcessor] = Depends(get_payment_processor),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    source = "payment-connect"
    body = await request.body()
    headers = dict(request.headers)
    gateway = _require_processor(source, processor)
    event = _verified(
        source,
        lambda: gateway.parse_webhook(headers, body, secret=payment_settings.stripe.connect_webhook_secret),
    )
    return await _acknowledge(source, event.id, event.type, lambda: reconciler.handle_connect_event(event))


@router.post("/payments", summary="Payment and refund events")
async def payments_webhook(
    request: Request,
    processor: Optional[PaymentProcessor] = Depends(get_payment_processor),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    source = "payments"
    body = await request.body()
    headers = dict(request.headers)
    gateway = _require_processor(source, processor)
    event = _verified(
        source,
        lambda: gateway.parse_webhook(headers, body, secret=payment_settings.stripe.webhook_secret),
    )
    return await _acknowledge(source, event.id, event.type, lambda: reconciler.handle_payment_event(event))


@router.post("/identity", summary="Identity verification events")
async def identity_webhook(
    request: Request,
    verifier: IdentityWebhookVerifier = Depends(get_identity_webhook_verifier),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    source = "identity"
    body = await request.body()
    headers = dict(request.headers)
    event = _verified(source, lambda: verifier.parse_webhook(headers, body))
    return await _acknowledge(source, event.id, event.type, lambda: reconciler.handle_identity_event(event))
