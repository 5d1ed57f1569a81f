from datetime import datetime, timedelta, timezone

import pytest

from application.ports.payment_gateway import ProcessorError
from application.services.booking_service import BookingApplicationService
from application.services.refund_service import CancellationCoordinator, DisputeCoordinator, RefundIssuer
from domain.booking.entity import BookingStatus, DisputeStatus
from domain.common.exceptions import (
    DomainValidationException,
    ForbiddenActionException,
    InvalidAmountException,
    InvalidStateException,
    InvalidTransitionException,
    RefundFailedException,
)
from domain.earnings.entity import EarningsStatus
from domain.payment.entity import RefundReason, RefundStatus


CUSTOMER = "user_customer"
PROVIDER_USER = "user_provider"


@pytest.fixture
def cancellations(uow_factory, processor, guard, notifications):
    return CancellationCoordinator(uow_factory, RefundIssuer(processor), guard, notifications)


@pytest.fixture
def disputes(uow_factory, processor, notifications, config):
    return DisputeCoordinator(uow_factory, RefundIssuer(processor), notifications, config)


@pytest.mark.asyncio
async def test_cancel_pending_booking_without_refund(cancellations, seed, processor, dispatcher):
    await seed.marketplace()
    booking = await seed.booking()

    result = await cancellations.cancel_booking(booking.id, CUSTOMER, "plans changed")

    assert result.booking.status == BookingStatus.CANCELED_CUSTOMER
    assert result.refunded is False
    assert result.cancellation_id
    assert processor.refunds == []
    assert dispatcher.events_for(PROVIDER_USER) == ["booking.canceled"]


@pytest.mark.asyncio
async def test_provider_cancels_paid_booking_with_full_refund(cancellations, seed, processor, dispatcher):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.PAID, payment_intent_id="pi_1")

    result = await cancellations.cancel_booking(booking.id, PROVIDER_USER)

    assert result.booking.status == BookingStatus.CANCELED_PROVIDER
    assert result.refunded is True
    req = processor.refunds[0]
    assert req.payment_reference == "pi_1"
    assert req.amount == 11500
    assert req.idempotency_key == f"booking:cancel:{PROVIDER_USER}:{booking.id}:refund"

    refunds = await seed.refunds(booking.id)
    assert len(refunds) == 1
    assert refunds[0].status == RefundStatus.COMPLETED
    assert refunds[0].reason == RefundReason.PROVIDER_CANCELED
    assert dispatcher.events_for(CUSTOMER) == ["booking.canceled"]


@pytest.mark.asyncio
async def test_repeated_cancel_replays_result(cancellations, seed, processor):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.PAID, payment_intent_id="pi_1")

    first = await cancellations.cancel_booking(booking.id, CUSTOMER)
    second = await cancellations.cancel_booking(booking.id, CUSTOMER)

    assert second == first
    assert len(processor.refunds) == 1


@pytest.mark.asyncio
async def test_refund_failure_keeps_booking_paid(cancellations, seed, processor):
    processor.refund_error = ProcessorError("charge disputed", code="charge_disputed")
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.PAID, payment_intent_id="pi_1")

    with pytest.raises(RefundFailedException):
        await cancellations.cancel_booking(booking.id, CUSTOMER)

    assert (await seed.get_booking(booking.id)).status == BookingStatus.PAID
    refunds = await seed.refunds(booking.id)
    assert [r.status for r in refunds] == [RefundStatus.FAILED]
    assert refunds[0].failure_reason == "charge_disputed"

    # the key was released, a later attempt goes through
    processor.refund_error = None
    result = await cancellations.cancel_booking(booking.id, CUSTOMER)
    assert result.refunded is True
    assert len(await seed.refunds(booking.id)) == 2


@pytest.mark.asyncio
async def test_paid_booking_cannot_be_canceled_after_start(cancellations, seed):
    await seed.marketplace()
    booking = await seed.booking(
        BookingStatus.PAID,
        payment_intent_id="pi_1",
        scheduled_date=datetime.now(timezone.utc) - timedelta(hours=1),
    )
    with pytest.raises(InvalidStateException):
        await cancellations.cancel_booking(booking.id, CUSTOMER)


@pytest.mark.asyncio
async def test_strangers_and_late_states_cannot_cancel(cancellations, seed):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")

    with pytest.raises(ForbiddenActionException):
        await cancellations.cancel_booking(booking.id, "someone_else")
    with pytest.raises(InvalidTransitionException):
        await cancellations.cancel_booking(booking.id, CUSTOMER)


@pytest.mark.asyncio
async def test_respond_cancel_delegates_to_coordinator(uow_factory, guard, notifications, config, cancellations, seed):
    service = BookingApplicationService(uow_factory, guard, notifications, config, cancellations=cancellations)
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.ACCEPTED)

    dto = await service.respond_to_booking(booking.id, PROVIDER_USER, "cancel", reason="sick")

    assert dto.status == BookingStatus.CANCELED_PROVIDER


@pytest.mark.asyncio
async def test_open_dispute_by_customer(disputes, seed, dispatcher):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")

    with pytest.raises(ForbiddenActionException):
        await disputes.open_dispute(booking.id, PROVIDER_USER, "no")
    dispute = await disputes.open_dispute(booking.id, CUSTOMER, "work not done")

    assert dispute.status == DisputeStatus.OPEN
    assert (await seed.get_booking(booking.id)).status == BookingStatus.DISPUTED
    assert dispatcher.events_for(PROVIDER_USER) == ["booking.disputed"]


@pytest.mark.asyncio
async def test_provider_favor_completes_booking_and_queues_payout(disputes, seed, dispatcher):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")
    dispute = await disputes.open_dispute(booking.id, CUSTOMER, "late")

    resolved = await disputes.resolve_dispute(dispute.id, "admin_1", "provider_favor", notes="work verified")

    assert resolved.status == DisputeStatus.RESOLVED
    assert resolved.refund_amount is None
    assert (await seed.get_booking(booking.id)).status == BookingStatus.COMPLETED
    assert (await seed.get_earnings(booking.id)).status == EarningsStatus.AWAITING_PAYOUT
    assert "booking.completed" in dispatcher.events_for(PROVIDER_USER)

    with pytest.raises(InvalidStateException):
        await disputes.resolve_dispute(dispute.id, "admin_1", "provider_favor")


@pytest.mark.asyncio
async def test_split_refunds_partial_amount(disputes, seed, processor):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")
    dispute = await disputes.open_dispute(booking.id, CUSTOMER, "half done")

    resolved = await disputes.resolve_dispute(dispute.id, "admin_1", "split", refund_amount=5000)

    assert resolved.refund_amount == 5000
    req = processor.refunds[0]
    assert req.amount == 5000
    assert req.idempotency_key == f"dispute:{dispute.id}:refund:5000"
    refunds = await seed.refunds(booking.id)
    assert refunds[0].reason == RefundReason.DISPUTE_RESOLUTION
    # final booking state arrives with the refund webhook
    assert (await seed.get_booking(booking.id)).status == BookingStatus.DISPUTED


@pytest.mark.asyncio
async def test_resolution_amount_validation(disputes, seed):
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.COMPLETED_BY_PROVIDER, payment_intent_id="pi_1")
    dispute = await disputes.open_dispute(booking.id, CUSTOMER, "bad")

    with pytest.raises(InvalidAmountException):
        await disputes.resolve_dispute(dispute.id, "admin_1", "customer_favor", refund_amount=999_999)
    with pytest.raises(DomainValidationException):
        await disputes.resolve_dispute(dispute.id, "admin_1", "split")
    with pytest.raises(DomainValidationException):
        await disputes.resolve_dispute(dispute.id, "admin_1", "provider_favor", refund_amount=100)


class _RecordingLogger:
    def __init__(self):
        self.errors = []

    def error(self, event, **fields):
        self.errors.append((event, fields))

    def __getattr__(self, name):
        return lambda *args, **kwargs: None


@pytest.mark.asyncio
async def test_refund_issued_before_lost_cancel_race_is_logged(cancellations, seed, processor, uow_factory, monkeypatch):
    from application.services import refund_service

    log = _RecordingLogger()
    monkeypatch.setattr(refund_service, "logger", log)
    await seed.marketplace()
    booking = await seed.booking(BookingStatus.PAID, payment_intent_id="pi_1")
    original_refund = processor.create_refund

    async def refund_then_dispute(req):
        result = await original_refund(req)
        # the customer opens a dispute while the refund is in flight
        async with uow_factory() as uow:
            current = await uow.booking_repository.get_by_id(booking.id)
            await uow.booking_repository.transition(current, BookingStatus.PAID, BookingStatus.DISPUTED)
            await uow.commit()
        return result

    processor.create_refund = refund_then_dispute

    with pytest.raises(InvalidTransitionException):
        await cancellations.cancel_booking(booking.id, CUSTOMER)

    event, fields = log.errors[-1]
    assert event == "refund_issued_but_cancel_lost"
    assert fields["external_refund_id"] == "re_1"
    assert fields["booking_id"] == booking.id
    assert [r.status for r in await seed.refunds(booking.id)] == [RefundStatus.COMPLETED]
