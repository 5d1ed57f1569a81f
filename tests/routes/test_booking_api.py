import json
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
import pytest_asyncio

from api import dependencies as deps
from application.ports.payment_gateway import ProcessorError
from application.services.booking_service import BookingApplicationService
from application.services.payout_service import PayoutOrchestrator
from application.services.refund_service import CancellationCoordinator, DisputeCoordinator, RefundIssuer
from application.services.webhook_service import WebhookReconciler
from core.config import settings
from core.settings import payment_settings
from domain.booking.entity import BookingStatus
from domain.provider.entity import KycStatus
from infrastructure.external.identity.sumsub import SumsubWebhookVerifier, compute_digest
from main import app


CUSTOMER = "user_customer"
PROVIDER_USER = "user_provider"
IDENTITY_SECRET = "identity-secret"


def _token(user_id, role="customer", **claims):
    return jwt.encode({"sub": user_id, "role": role, **claims}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _auth(user_id, role="customer"):
    return {"Authorization": f"Bearer {_token(user_id, role)}"}


@pytest_asyncio.fixture
async def client(uow_factory, guard, notifications, processor, config, monkeypatch):
    monkeypatch.setattr(payment_settings.stripe, "webhook_secret", "whsec_payments")
    monkeypatch.setattr(payment_settings.stripe, "connect_webhook_secret", "whsec_connect")

    refunds = RefundIssuer(processor)
    cancellations = CancellationCoordinator(uow_factory, refunds, guard, notifications)
    bookings = BookingApplicationService(uow_factory, guard, notifications, config, cancellations=cancellations)
    payouts = PayoutOrchestrator(uow_factory, processor, config, notifications)
    disputes = DisputeCoordinator(uow_factory, refunds, notifications, config)
    reconciler = WebhookReconciler(uow_factory, processor, guard, notifications)
    verifier = SumsubWebhookVerifier(IDENTITY_SECRET)

    app.dependency_overrides.update({
        deps.get_booking_service: lambda: bookings,
        deps.get_cancellation_coordinator: lambda: cancellations,
        deps.get_payout_orchestrator: lambda: payouts,
        deps.get_dispute_coordinator: lambda: disputes,
        deps.get_webhook_reconciler: lambda: reconciler,
        deps.get_payment_processor: lambda: processor,
        deps.get_identity_webhook_verifier: lambda: verifier,
    })
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()


def _payment_event(event_id, event_type, obj):
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})


@pytest.mark.asyncio
async def test_booking_lifecycle_end_to_end(client, seed, processor):
    await seed.marketplace()
    when = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()

    resp = await client.post(
        "/api/v1/bookings",
        json={"service_id": "svc_1", "scheduled_date": when},
        headers={**_auth(CUSTOMER), "Idempotency-Key": "checkout-1"},
    )
    assert resp.status_code == 200, resp.text
    booking_id = resp.json()["data"]["id"]
    assert resp.json()["data"]["price_at_booking"] == 11500

    resp = await client.post(f"/api/v1/bookings/{booking_id}/respond", json={"action": "accept"}, headers=_auth(PROVIDER_USER, "provider"))
    assert resp.json()["data"]["status"] == "accepted"

    resp = await client.post(
        "/api/v1/webhooks/payments",
        content=_payment_event("evt_pi_1", "payment_intent.succeeded", {"id": "pi_1", "metadata": {"bookingId": booking_id}}),
        headers={"Stripe-Signature": "valid"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == {"event_id": "evt_pi_1", "processed": True}

    resp = await client.post(f"/api/v1/bookings/{booking_id}/complete", headers=_auth(PROVIDER_USER, "provider"))
    assert resp.json()["data"]["status"] == "completed_by_provider"

    resp = await client.post(f"/api/v1/bookings/{booking_id}/confirm-completion", headers=_auth(CUSTOMER))
    body = resp.json()["data"]
    assert body["payout_outcome"] == "paid_out"
    assert body["booking"]["status"] == "completed"
    assert processor.transfers[0].amount == 10350


@pytest.mark.asyncio
async def test_requests_without_valid_token_are_rejected(client):
    resp = await client.get("/api/v1/bookings/bkg_1")
    assert resp.status_code == 401
    assert resp.headers.get("www-authenticate") == "Bearer"

    resp = await client.get("/api/v1/bookings/bkg_1", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401

    expired = jwt.encode(
        {"sub": CUSTOMER, "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    resp = await client.get("/api/v1/bookings/bkg_1", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401

    resp = await client.get("/api/v1/bookings/bkg_1", headers=_auth(CUSTOMER, "superuser"))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_other_users_bookings_are_not_found(client, seed):
    await seed.marketplace()
    booking = await seed.booking()

    resp = await client.get(f"/api/v1/bookings/{booking.id}", headers=_auth("intruder"))
    assert resp.status_code == 404

    resp = await client.get(f"/api/v1/bookings/{booking.id}", headers=_auth("ops", "admin"))
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_invalid_transition_maps_to_conflict(client, seed):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.DECLINED)

    resp = await client.post(f"/api/v1/bookings/{booking.id}/respond", json={"action": "accept"}, headers=_auth(PROVIDER_USER, "provider"))

    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["type"] == "InvalidTransition"
    assert error["details"] == {"current": "declined", "requested": "accepted"}


@pytest.mark.asyncio
async def test_request_validation(client, seed):
    await seed.marketplace()
    booking = await seed.booking()

    resp = await client.post(f"/api/v1/bookings/{booking.id}/respond", json={"action": "ignore"}, headers=_auth(PROVIDER_USER, "provider"))
    assert resp.status_code == 422

    resp = await client.post(f"/api/v1/bookings/{booking.id}/dispute", json={"reason": ""}, headers=_auth(CUSTOMER))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_cancel_without_body(client, seed, processor):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.PAID, payment_intent_id="pi_1")

    resp = await client.post(f"/api/v1/bookings/{booking.id}/cancel", headers=_auth(CUSTOMER))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["refunded"] is True
    assert data["booking"]["status"] == "canceled_customer"
    assert len(processor.refunds) == 1


@pytest.mark.asyncio
async def test_refund_failure_is_bad_gateway(client, seed, processor):
    processor.refund_error = ProcessorError("declined", code="charge_disputed")
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.PAID, payment_intent_id="pi_1")

    resp = await client.post(f"/api/v1/bookings/{booking.id}/cancel", json={"reason": "sick"}, headers=_auth(CUSTOMER))

    assert resp.status_code == 502
    assert (await seed.get_booking(booking.id)).status == BookingStatus.PAID


@pytest.mark.asyncio
async def test_dispute_resolution_requires_admin(client, seed):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")
    resp = await client.post(f"/api/v1/bookings/{booking.id}/dispute", json={"reason": "not done"}, headers=_auth(CUSTOMER))
    dispute_id = resp.json()["data"]["id"]

    url = f"/api/v1/admin/disputes/{dispute_id}/resolve"
    resp = await client.post(url, json={"decision": "provider_favor"}, headers=_auth(CUSTOMER))
    assert resp.status_code == 403

    resp = await client.post(url, json={"decision": "provider_favor", "admin_notes": "photos check out"}, headers=_auth("ops", "admin"))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "resolved"
    assert (await seed.get_booking(booking.id)).status == BookingStatus.COMPLETED


@pytest.mark.asyncio
async def test_webhook_signature_failures(client, monkeypatch):
    body = _payment_event("evt_1", "payment_intent.succeeded", {"id": "pi_1"})

    resp = await client.post("/api/v1/webhooks/payments", content=body, headers={"Stripe-Signature": "forged"})
    assert resp.status_code == 400

    monkeypatch.setattr(payment_settings.stripe, "webhook_secret", None)
    resp = await client.post("/api/v1/webhooks/payments", content=body, headers={"Stripe-Signature": "valid"})
    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_webhook_without_processor_reports_missing_configuration(client):
    app.dependency_overrides[deps.get_payment_processor] = lambda: None
    resp = await client.post("/api/v1/webhooks/payment-connect", content=b"{}", headers={"Stripe-Signature": "valid"})
    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_webhook_processing_errors_are_acknowledged(client, seed, processor):
    await seed.provider()

    async def _down(account_id):
        raise ProcessorError("timeout", error_type="APIConnectionError", retryable=True)

    processor.retrieve_account = _down
    body = json.dumps({"id": "evt_cap_1", "type": "capability.updated", "account": "acct_1", "data": {"object": {}}})

    resp = await client.post("/api/v1/webhooks/payment-connect", content=body, headers={"Stripe-Signature": "valid"})

    assert resp.status_code == 200
    assert resp.json()["data"] == {"event_id": "evt_cap_1", "processed": False}


@pytest.mark.asyncio
async def test_webhook_event_still_in_progress_asks_for_redelivery(client, seed, idempotency_store):
    await seed.provider(payouts_enabled=False)
    await idempotency_store.claim("webhook:payment-connect:evt_busy", 60)
    body = json.dumps(
        {
            "id": "evt_busy",
            "type": "account.updated",
            "data": {"object": {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True}},
        }
    )

    resp = await client.post("/api/v1/webhooks/payment-connect", content=body, headers={"Stripe-Signature": "valid"})

    assert resp.status_code == 409
    assert resp.json()["error"]["type"] == "IdempotencyInProgress"
    assert (await seed.get_provider()).payouts_enabled is False


@pytest.mark.asyncio
async def test_identity_webhook_updates_kyc(client, seed):
    await seed.provider()
    body = json.dumps(
        {
            "type": "applicantReviewed",
            "correlationId": "corr_9",
            "externalUserId": "prov_1",
            "reviewStatus": "completed",
            "reviewResult": {"reviewAnswer": "RED"},
        }
    ).encode()
    headers = {"X-Payload-Digest": compute_digest(IDENTITY_SECRET, body), "X-Payload-Digest-Alg": "HMAC_SHA256_HEX"}

    resp = await client.post("/api/v1/webhooks/identity", content=body, headers=headers)
    assert resp.status_code == 200
    assert (await seed.get_provider()).kyc_status == KycStatus.REJECTED

    resp = await client.post("/api/v1/webhooks/identity", content=body, headers={"X-Payload-Digest": "0" * 64})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
