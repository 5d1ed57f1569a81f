import pytest

from application.dtos.payments import ConnectAccount, WebhookEvent
from application.ports.identity import IdentityEvent
from application.services.idempotency import IdempotencyGuard
from application.services.payout_service import PayoutOrchestrator
from application.services.refund_service import DisputeCoordinator, RefundIssuer
from application.services.webhook_service import WebhookReconciler, kyc_status_for
from domain.booking.entity import BookingStatus
from domain.common.exceptions import IdempotencyInProgressException
from domain.earnings.entity import EarningsStatus
from domain.payment.entity import RefundStatus
from domain.provider.entity import KycStatus
from infrastructure.idempotency.sql_store import SQLAlchemyIdempotencyStore


CUSTOMER = "user_customer"
PROVIDER_USER = "user_provider"


@pytest.fixture
def reconciler(uow_factory, processor, guard, notifications):
    return WebhookReconciler(uow_factory, processor, guard, notifications)


def _event(event_id, event_type, obj, account=None):
    return WebhookEvent(id=event_id, type=event_type, provider="stripe", data={"object": obj}, account=account)


# ---- connect accounts ------------------------------------------------


@pytest.mark.asyncio
async def test_account_updated_syncs_flags_and_notifies_once(reconciler, seed, dispatcher):
    await seed.provider(payouts_enabled=False)
    event = _event("evt_acct_1", "account.updated", {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True})

    assert await reconciler.handle_connect_event(event) is True
    assert await reconciler.handle_connect_event(event) is False

    provider = await seed.get_provider()
    assert provider.payouts_enabled is True
    assert len(dispatcher.sent) == 1
    sent = dispatcher.sent[0]
    assert sent["idempotency_key"] == f"stripe-connect:evt_acct_1:{PROVIDER_USER}"
    assert sent["payload"]["title"] == "Payouts enabled"


@pytest.mark.asyncio
async def test_account_updated_without_changes_is_silent(reconciler, seed, dispatcher):
    await seed.provider()
    event = _event("evt_acct_2", "account.updated", {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True})

    await reconciler.handle_connect_event(event)

    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_both_flags_changing_sends_payouts_notice(reconciler, seed, dispatcher):
    await seed.provider(charges_enabled=False, payouts_enabled=False)
    event = _event("evt_acct_3", "account.updated", {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True})

    await reconciler.handle_connect_event(event)

    assert [n["payload"]["title"] for n in dispatcher.sent] == ["Payouts enabled"]


@pytest.mark.asyncio
async def test_event_abandoned_mid_processing_is_applied_on_redelivery(
    session_factory, uow_factory, processor, notifications, seed
):
    await seed.provider(payouts_enabled=False)
    store = SQLAlchemyIdempotencyStore(session_factory, lease_seconds=0)
    # a worker claimed the event and died before finishing
    await store.claim("webhook:payment-connect:evt_acct_crash", 3600)
    reconciler = WebhookReconciler(uow_factory, processor, IdempotencyGuard(store), notifications)
    event = _event(
        "evt_acct_crash", "account.updated", {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True}
    )

    assert await reconciler.handle_connect_event(event) is True
    assert (await seed.get_provider()).payouts_enabled is True


@pytest.mark.asyncio
async def test_event_in_flight_elsewhere_is_rejected_for_retry(reconciler, idempotency_store, seed):
    await seed.provider(payouts_enabled=False)
    await idempotency_store.claim("webhook:payment-connect:evt_acct_busy", 3600)
    event = _event(
        "evt_acct_busy", "account.updated", {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True}
    )

    with pytest.raises(IdempotencyInProgressException):
        await reconciler.handle_connect_event(event)
    assert (await seed.get_provider()).payouts_enabled is False


@pytest.mark.asyncio
async def test_account_found_by_metadata_links_account(reconciler, seed):
    await seed.provider(connect_account_id=None, charges_enabled=False, payouts_enabled=False)
    event = _event(
        "evt_acct_4",
        "account.updated",
        {"id": "acct_new", "charges_enabled": True, "payouts_enabled": False, "metadata": {"providerId": "prov_1"}},
    )

    await reconciler.handle_connect_event(event)

    provider = await seed.get_provider()
    assert provider.connect_account_id == "acct_new"
    assert provider.charges_enabled is True


@pytest.mark.asyncio
async def test_capability_event_refetches_account(reconciler, seed, processor):
    await seed.provider()
    processor.accounts["acct_1"] = ConnectAccount(id="acct_1", charges_enabled=True, payouts_enabled=False)

    await reconciler.handle_connect_event(_event("evt_cap_1", "capability.updated", {"id": "card_payments"}, account="acct_1"))

    assert (await seed.get_provider()).payouts_enabled is False


@pytest.mark.asyncio
async def test_unknown_account_is_ignored(reconciler, seed, dispatcher):
    event = _event("evt_acct_5", "account.updated", {"id": "acct_unknown", "charges_enabled": True})
    assert await reconciler.handle_connect_event(event) is True
    assert dispatcher.sent == []


# ---- payouts -----------------------------------------------------------


@pytest.mark.asyncio
async def test_payout_paid_links_transferred_earnings(reconciler, seed, processor, uow_factory, config, notifications):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")
    orchestrator = PayoutOrchestrator(uow_factory, processor, config, notifications)
    await orchestrator.confirm_completion(booking.id, CUSTOMER)
    earnings = await seed.get_earnings(booking.id)
    processor.ledger_refs["po_1"] = [earnings.ledger_reference]

    event = _event(
        "evt_po_1",
        "payout.paid",
        {"id": "po_1", "amount": 10350, "currency": "NZD", "status": "paid", "arrival_date": 1767225600},
        account="acct_1",
    )
    await reconciler.handle_connect_event(event)

    earnings = await seed.get_earnings(booking.id)
    assert earnings.status == EarningsStatus.PAID_OUT
    assert earnings.payout_id == "po_1"
    async with uow_factory(readonly=True) as uow:
        payout = await uow.payout_repository.get_by_id("po_1")
    assert payout.currency == "nzd"
    assert payout.arrival_date is not None


@pytest.mark.asyncio
async def test_payout_update_overwrites_status(reconciler, seed, uow_factory):
    await seed.provider()
    obj = {"id": "po_2", "amount": 500, "currency": "nzd", "status": "in_transit"}
    await reconciler.handle_connect_event(_event("evt_po_2", "payout.updated", obj, account="acct_1"))
    await reconciler.handle_connect_event(
        _event("evt_po_3", "payout.failed", {**obj, "status": "failed", "failure_code": "account_closed"}, account="acct_1")
    )

    async with uow_factory(readonly=True) as uow:
        payout = await uow.payout_repository.get_by_id("po_2")
    assert payout.status.value == "failed"
    assert payout.failure_code == "account_closed"


# ---- payments ----------------------------------------------------------


@pytest.mark.asyncio
async def test_payment_succeeded_marks_booking_paid(reconciler, seed, dispatcher):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.ACCEPTED)
    event = _event("evt_pi_1", "payment_intent.succeeded", {"id": "pi_9", "metadata": {"bookingId": booking.id}})

    await reconciler.handle_payment_event(event)

    stored = await seed.get_booking(booking.id)
    assert stored.status == BookingStatus.PAID
    assert stored.payment_intent_id == "pi_9"
    assert dispatcher.events_for(PROVIDER_USER) == ["booking.paid"]


@pytest.mark.asyncio
async def test_payment_succeeded_for_paid_booking_only_relinks(reconciler, seed, dispatcher):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.PAID, payment_intent_id="pi_old")
    event = _event("evt_pi_2", "payment_intent.succeeded", {"id": "pi_new", "metadata": {"booking_id": booking.id}})

    await reconciler.handle_payment_event(event)

    stored = await seed.get_booking(booking.id)
    assert stored.status == BookingStatus.PAID
    assert stored.payment_intent_id == "pi_new"
    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_payment_failed_notifies_customer(reconciler, seed, dispatcher):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.ACCEPTED, payment_intent_id="pi_3")
    event = _event(
        "evt_pi_3",
        "payment_intent.payment_failed",
        {"id": "pi_3", "last_payment_error": {"decline_code": "insufficient_funds"}},
    )

    await reconciler.handle_payment_event(event)

    stored = await seed.get_booking(booking.id)
    assert stored.status == BookingStatus.ACCEPTED
    assert stored.payment_intent_id is None
    assert dispatcher.events_for(CUSTOMER) == ["booking.payment_failed"]


# ---- refunds -----------------------------------------------------------


@pytest.mark.asyncio
async def test_dispute_refund_webhook_finalizes_booking(reconciler, seed, processor, uow_factory, notifications, config, dispatcher):
    processor.refund_status = "pending"
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")
    disputes = DisputeCoordinator(uow_factory, RefundIssuer(processor), notifications, config)
    dispute = await disputes.open_dispute(booking.id, CUSTOMER, "not done")
    await disputes.resolve_dispute(dispute.id, "admin_1", "customer_favor")
    refund = (await seed.refunds(booking.id))[0]
    assert refund.status == RefundStatus.PROCESSING

    event = _event("evt_re_1", "refund.updated", {"id": refund.external_refund_id, "status": "succeeded"})
    await reconciler.handle_payment_event(event)

    refund = (await seed.refunds(booking.id))[0]
    assert refund.status == RefundStatus.COMPLETED
    assert (await seed.get_booking(booking.id)).status == BookingStatus.REFUNDED
    assert "booking.refunded" in dispatcher.events_for(CUSTOMER)


@pytest.mark.asyncio
async def test_charge_refunded_matches_by_local_refund_id(reconciler, seed, processor, uow_factory, notifications, config):
    processor.refund_status = "pending"
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")
    disputes = DisputeCoordinator(uow_factory, RefundIssuer(processor), notifications, config)
    dispute = await disputes.open_dispute(booking.id, CUSTOMER, "not done")
    await disputes.resolve_dispute(dispute.id, "admin_1", "split", refund_amount=2000)
    refund = (await seed.refunds(booking.id))[0]

    obj = {"id": "ch_1", "refunds": {"data": [{"id": "re_other", "status": "failed", "metadata": {"refund_id": refund.id}}]}}
    await reconciler.handle_payment_event(_event("evt_ch_1", "charge.refunded", obj))

    refund = (await seed.refunds(booking.id))[0]
    assert refund.status == RefundStatus.FAILED
    assert (await seed.get_booking(booking.id)).status == BookingStatus.DISPUTED


@pytest.mark.asyncio
async def test_unknown_payment_event_is_acknowledged(reconciler):
    assert await reconciler.handle_payment_event(_event("evt_x", "customer.created", {"id": "cus_1"})) is True


# ---- identity ----------------------------------------------------------


@pytest.mark.parametrize(
    "event_type,review_status,answer,expected",
    [
        ("applicantCreated", "init", None, KycStatus.NOT_STARTED),
        ("applicantPending", "pending", None, KycStatus.PENDING_REVIEW),
        ("applicantReviewed", "completed", "GREEN", KycStatus.VERIFIED),
        ("applicantReviewed", "completed", "RED", KycStatus.REJECTED),
        ("applicantActionPending", None, None, KycStatus.IN_PROGRESS),
        ("applicantWorkflowCompleted", "completed", "green", KycStatus.VERIFIED),
        ("applicantSomethingNew", "onHold", None, KycStatus.PENDING_REVIEW),
    ],
)
def test_kyc_status_mapping(event_type, review_status, answer, expected):
    assert kyc_status_for(event_type, review_status, answer) == expected


@pytest.mark.asyncio
async def test_identity_review_updates_provider(reconciler, seed, dispatcher):
    await seed.provider()
    event = IdentityEvent(
        id="corr_1",
        type="applicantReviewed",
        external_user_id="prov_1",
        applicant_id="app_1",
        review_status="completed",
        review_answer="GREEN",
    )

    assert await reconciler.handle_identity_event(event) is True
    assert await reconciler.handle_identity_event(event) is False

    provider = await seed.get_provider()
    assert provider.kyc_status == KycStatus.VERIFIED
    assert provider.kyc_reviewed_at is not None
    assert [n["idempotency_key"] for n in dispatcher.sent] == [f"identity:corr_1:{PROVIDER_USER}"]
