"""
Stripe Connect adapter using the official stripe-python SDK.

Notes on SDK usage:
- Module-level resources (``stripe.Transfer.create`` …) accept
  ``idempotency_key`` and ``stripe_account`` request options as kwargs.
- Webhook verification uses ``stripe.Webhook.construct_event`` with the
  ``Stripe-Signature`` header; the verified body is decoded as plain JSON.
"""
from __future__ import annotations

import json
from typing import Any, Optional, Sequence

import stripe

from application.dtos.payments import (
    ConnectAccount,
    RefundRequest,
    RefundResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)
from application.ports.payment_gateway import ProcessorError
from core.settings import payment_settings
from domain.common.exceptions import WebhookSecretMissingException, WebhookSignatureException
from infrastructure.external.payments.base import BaseProcessorClient, header_value
from shared.codes.payment_codes import map_provider_status


def _object_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def _as_int(value: Any) -> Optional[int]:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def prorate(portion: int, amount: int, total: int) -> int:
    """portion * amount / total, rounded half up."""
    if total <= 0:
        return 0
    return (2 * portion * amount + total) // (2 * total)


class StripeClient(BaseProcessorClient):
    provider = "stripe"
    retryable_errors = (stripe.APIConnectionError, stripe.RateLimitError)

    def __init__(self, secret_key: Optional[str] = None, *, webhook_tolerance: Optional[int] = None):
        super().__init__(retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff})
        key = secret_key or payment_settings.stripe.secret_key
        if not key:
            raise RuntimeError("STRIPE__SECRET_KEY not configured")
        stripe.api_key = key
        # retries are driven by tenacity
        stripe.max_network_retries = 0
        self._tolerance = webhook_tolerance or payment_settings.webhook.tolerance_seconds

    def _translate(self, exc: Exception) -> ProcessorError:
        if not isinstance(exc, stripe.StripeError):
            return ProcessorError(str(exc), error_type=type(exc).__name__)
        error = getattr(exc, "error", None)
        return ProcessorError(
            str(getattr(exc, "user_message", None) or exc),
            code=getattr(exc, "code", None),
            error_type=getattr(error, "type", None) or type(exc).__name__,
            request_id=getattr(exc, "request_id", None),
            status_code=getattr(exc, "http_status", None),
            retryable=isinstance(exc, self.retryable_errors),
        )

    async def create_transfer(self, req: TransferRequest) -> TransferResult:
        transfer = await self._call(
            "create_transfer",
            lambda: stripe.Transfer.create(
                amount=req.amount,
                currency=req.currency,
                destination=req.destination_account,
                transfer_group=req.transfer_group,
                metadata=req.metadata,
                idempotency_key=req.idempotency_key,
            ),
        )
        status = "reversed" if transfer.get("reversed") else transfer.get("status")
        self._log("transfer_created", transfer_id=transfer["id"], amount=req.amount)
        return TransferResult(
            id=str(transfer["id"]),
            status=map_provider_status("stripe.transfer", status),
            destination_payment=_object_id(transfer.get("destination_payment")),
        )

    async def _charge_info(self, payment_intent_id: str) -> dict[str, Optional[int] | bool]:
        intent = await self._call(
            "retrieve_payment_intent",
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id),
        )
        latest = intent.get("latest_charge")
        if not latest:
            return {"amount": None, "application_fee_amount": None, "transfer_amount": None, "has_transfer": False}
        if isinstance(latest, str):
            charge = await self._call(
                "retrieve_charge",
                lambda: stripe.Charge.retrieve(latest, expand=["transfer"]),
            )
        else:
            charge = latest
        transfer = charge.get("transfer")
        return {
            "amount": _as_int(charge.get("amount")),
            "application_fee_amount": _as_int(charge.get("application_fee_amount")),
            "transfer_amount": _as_int(transfer.get("amount")) if isinstance(transfer, dict) else None,
            "has_transfer": bool(transfer),
        }

    async def create_refund(self, req: RefundRequest) -> RefundResult:
        """Refund with destination-charge semantics.

        Reverses the connected-account transfer and refunds the application
        fee when the original charge carries them; the fee split of the
        refund is prorated from the charge.
        """
        info = await self._charge_info(req.payment_reference)
        params: dict[str, Any] = {
            "payment_intent": req.payment_reference,
            "amount": req.amount,
            "reason": req.reason,
            "metadata": req.metadata,
            "idempotency_key": req.idempotency_key,
        }
        if info["has_transfer"]:
            params["reverse_transfer"] = True
        if info["application_fee_amount"]:
            params["refund_application_fee"] = True

        refund = await self._call("create_refund", lambda: stripe.Refund.create(**params))

        charge_amount = info["amount"]
        fee_refunded = provider_refunded = None
        if charge_amount and info["application_fee_amount"] is not None:
            fee_refunded = prorate(info["application_fee_amount"], req.amount, charge_amount)
            provider_refunded = max(0, req.amount - fee_refunded)
        elif charge_amount and info["transfer_amount"] is not None:
            provider_refunded = prorate(info["transfer_amount"], req.amount, charge_amount)

        self._log(
            "refund_created",
            refund_id=refund["id"],
            amount=req.amount,
            reverse_transfer=bool(info["has_transfer"]),
        )
        return RefundResult(
            id=str(refund["id"]),
            status=str(refund.get("status") or ""),
            platform_fee_refunded=fee_refunded,
            provider_amount_refunded=provider_refunded,
        )

    async def retrieve_account(self, account_id: str) -> ConnectAccount:
        account = await self._call("retrieve_account", lambda: stripe.Account.retrieve(account_id))
        return ConnectAccount(
            id=str(account["id"]),
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            metadata=dict(account.get("metadata") or {}),
        )

    async def list_payout_ledger_refs(self, payout_id: str, account_id: str) -> Sequence[str]:
        """Source ids of the balance transactions settled by a payout."""

        def _collect() -> list[str]:
            page = stripe.BalanceTransaction.list(payout=payout_id, limit=100, stripe_account=account_id)
            refs = []
            for txn in page.auto_paging_iter():
                if txn.get("type") == "payout":
                    continue
                source = _object_id(txn.get("source"))
                if source:
                    refs.append(source)
            return refs

        return await self._call("list_payout_ledger_refs", _collect)

    def parse_webhook(self, headers: dict[str, Any], body: bytes, *, secret: Optional[str]) -> WebhookEvent:
        if not secret:
            raise WebhookSecretMissingException(self.provider)
        signature = header_value(headers, "Stripe-Signature")
        if not signature:
            raise WebhookSignatureException(self.provider, "missing_signature_header")
        try:
            stripe.Webhook.construct_event(
                payload=body,
                sig_header=signature,
                secret=secret,
                tolerance=self._tolerance,
            )
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureException(self.provider, "signature_mismatch") from exc
        except ValueError as exc:
            raise WebhookSignatureException(self.provider, "malformed_payload") from exc

        event = json.loads(body)
        return WebhookEvent(
            id=str(event.get("id")),
            type=str(event.get("type")),
            provider=self.provider,
            data=event.get("data") or {},
            account=event.get("account"),
            raw_headers=headers,
            raw_body=body,
        )
