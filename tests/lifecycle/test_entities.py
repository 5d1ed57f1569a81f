from datetime import datetime, timedelta, timezone

import pytest

from domain.booking.entity import Booking, BookingStatus, Dispute
from domain.common.exceptions import DomainValidationException, InvalidAmountException
from domain.earnings.calculator import calculate_earnings
from domain.earnings.entity import EarningsStatus, ProviderEarnings
from domain.payment.entity import Refund, RefundReason, RefundStatus
from domain.provider.entity import KycStatus, Provider


def _booking(**overrides):
    fields = dict(
        id="bkg_1",
        customer_id="c1",
        provider_id="p1",
        service_id="s1",
        status=BookingStatus.PENDING,
        price_at_booking=1000,
    )
    fields.update(overrides)
    return Booking(**fields)


def test_booking_rejects_non_positive_price():
    with pytest.raises(InvalidAmountException):
        _booking(price_at_booking=0)
    with pytest.raises(InvalidAmountException):
        _booking(price_at_booking=True)


def test_booking_normalizes_naive_dates_to_utc():
    booking = _booking(scheduled_date=datetime(2030, 1, 1, 9, 0))
    assert booking.scheduled_date.tzinfo == timezone.utc
    assert not booking.scheduled_in_past()
    assert _booking(scheduled_date=datetime.now(timezone.utc) - timedelta(minutes=1)).scheduled_in_past()


def test_dispute_cannot_be_resolved_twice():
    dispute = Dispute(id="dsp_1", booking_id="bkg_1", opened_by="c1", reason="no show")
    dispute.resolve("admin", "provider_favor", None, None)
    with pytest.raises(DomainValidationException):
        dispute.resolve("admin", "customer_favor", 100, None)


def _earnings():
    return ProviderEarnings.held("bkg_1", "p1", calculate_earnings(1000, charges_tax=False), "nzd")


def test_earnings_progress_monotonically():
    earnings = _earnings()
    assert earnings.is_transferable
    earnings.mark_awaiting_payout()
    earnings.record_transfer("tr_1", "py_1")
    assert earnings.status == EarningsStatus.TRANSFERRED
    assert earnings.is_settled
    earnings.link_payout("po_1", paid=True)
    assert earnings.status == EarningsStatus.PAID_OUT
    with pytest.raises(DomainValidationException):
        earnings.mark_awaiting_payout()


def test_earnings_refuse_second_transfer_id():
    earnings = _earnings()
    earnings.record_transfer("tr_1")
    with pytest.raises(DomainValidationException):
        earnings.record_transfer("tr_2")


def test_refunded_earnings_cannot_transfer():
    earnings = _earnings()
    earnings.mark_refunded()
    assert not earnings.is_transferable
    with pytest.raises(DomainValidationException):
        earnings.record_transfer("tr_1")


def test_failed_attempts_are_counted():
    earnings = _earnings()
    earnings.record_failed_attempt("rate_limit")
    earnings.record_failed_attempt("card_declined", give_up=True)
    assert earnings.payout_attempts == 2
    assert earnings.last_payout_error == "card_declined"
    assert earnings.status == EarningsStatus.FAILED


def test_connect_flags_report_only_changes():
    provider = Provider(id="p1", user_id="u1")
    assert provider.apply_connect_flags(charges_enabled=True, payouts_enabled=False, connect_account_id="acct_1") == {
        "charges_enabled": True
    }
    assert provider.connect_account_id == "acct_1"
    assert provider.apply_connect_flags(charges_enabled=True, payouts_enabled=False) == {}
    assert provider.can_receive_payouts is False


def test_kyc_review_timestamp_only_on_final_answers():
    provider = Provider(id="p1", user_id="u1")
    assert provider.apply_kyc_status(KycStatus.PENDING_REVIEW)
    assert provider.kyc_reviewed_at is None
    assert provider.apply_kyc_status(KycStatus.VERIFIED)
    assert provider.kyc_reviewed_at is not None
    assert not provider.apply_kyc_status(KycStatus.VERIFIED)


def test_refund_final_states():
    refund = Refund(id="ref_1", booking_id="bkg_1", amount=500, reason=RefundReason.CUSTOMER_CANCELED, processed_by="c1")
    refund.record_processor_result("re_1", RefundStatus.COMPLETED)
    assert refund.is_final and refund.processed_at is not None
    with pytest.raises(DomainValidationException):
        refund.mark_failed("late failure")
