"""
Escrow release and provider payout orchestration.

The booking is committed as ``completed`` before any money moves; a failed
transfer leaves the earnings row ``awaiting_payout`` for the scheduled retry
job and is never surfaced to the customer. The transfer idempotency key is
derived from the earnings id, so every retry maps onto the same processor
object.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.bookings import (
    BookingDTO,
    CompletionResultDTO,
    PayoutOutcome,
    PayoutRetrySummaryDTO,
)
from application.dtos.payments import TransferRequest
from application.ports.payment_gateway import PaymentProcessor, ProcessorError
from application.services.booking_rules import ensure_held_earnings, transition_booking
from application.services.notification_service import NotificationService
from core.logging_config import get_logger
from domain.booking.entity import Booking, BookingStatus
from domain.booking.events import BookingCompleted
from domain.common.config import PlatformConfig
from domain.common.exceptions import (
    BookingNotFoundException,
    ForbiddenActionException,
    InvalidStateException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.earnings.entity import BLOCKED_STATUSES, EarningsStatus, ProviderEarnings
from domain.provider.entity import Provider


logger = get_logger(__name__)


def transfer_idempotency_key(earnings_id: str) -> str:
    return f"payout_{earnings_id}"


class PayoutOrchestrator:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        processor: Optional[PaymentProcessor],
        config: PlatformConfig,
        notifications: NotificationService,
    ) -> None:
        self._uow_factory = uow_factory
        self._processor = processor
        self._config = config
        self._notifications = notifications

    async def confirm_completion(self, booking_id: str, customer_id: str) -> CompletionResultDTO:
        """Customer confirms the provider's work; releases escrow.

        Repeating the call on a ``completed`` booking reports the payout state.
        When an earlier call stopped after the completion commit (earnings
        missing or still ``held``), the repeat resumes settlement from there.
        """
        async with self._uow_factory() as uow:
            booking = await uow.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise BookingNotFoundException(booking_id)
            if booking.customer_id != customer_id:
                raise ForbiddenActionException("Only the customer can confirm completion")

            if booking.status == BookingStatus.COMPLETED:
                earnings = await uow.earnings_repository.get_by_booking(booking.id)
                if earnings is not None and earnings.status != EarningsStatus.HELD:
                    outcome, reason = _reported_outcome(earnings)
                    logger.info("completion_already_confirmed", booking_id=booking.id, payout_outcome=outcome.value)
                    return CompletionResultDTO(
                        booking=BookingDTO.from_entity(booking),
                        payout_outcome=outcome,
                        transfer_id=earnings.transfer_id,
                        reason=reason,
                    )
                logger.info("completion_settlement_resumed", booking_id=booking.id)
            elif booking.status == BookingStatus.COMPLETED_BY_PROVIDER:
                await transition_booking(uow.booking_repository, booking, BookingStatus.COMPLETED)
                await uow.commit()
                logger.info("booking_completed", booking_id=booking.id, customer_id=customer_id)
            else:
                raise InvalidStateException(
                    f"Cannot confirm completion for status: {booking.status.value}",
                    status=booking.status.value,
                )

            earnings = await ensure_held_earnings(uow, booking, self._config)
            await uow.commit()
            provider = await uow.provider_repository.get_by_id(booking.provider_id)

            outcome, transfer_id, reason = await self._settle(uow, booking, earnings, provider)

        if provider is not None:
            await self._notifications.publish(
                [BookingCompleted(booking.id, provider.user_id, payout_outcome=outcome.value)]
            )
        return CompletionResultDTO(
            booking=BookingDTO.from_entity(booking),
            payout_outcome=outcome,
            transfer_id=transfer_id,
            reason=reason,
        )

    async def _settle(
        self,
        uow: AbstractUnitOfWork,
        booking: Booking,
        earnings: ProviderEarnings,
        provider: Optional[Provider],
    ) -> tuple[PayoutOutcome, Optional[str], Optional[str]]:
        if earnings.is_settled:
            return PayoutOutcome.ALREADY_PAID, earnings.transfer_id, None
        if earnings.status in BLOCKED_STATUSES:
            logger.info("payout_not_eligible", booking_id=booking.id, earnings_status=earnings.status.value)
            return PayoutOutcome.NOT_ELIGIBLE, None, f"earnings_{earnings.status.value}"

        earnings.mark_awaiting_payout()
        await uow.earnings_repository.update(earnings)
        await uow.commit()

        blocked = self._blocked_reason(provider, earnings)
        if blocked:
            logger.info(
                "payout_queued",
                booking_id=booking.id,
                earnings_id=earnings.id,
                provider_id=earnings.provider_id,
                reason=blocked,
            )
            return PayoutOutcome.QUEUED, None, blocked

        return await self._transfer(uow, earnings, provider)

    def _blocked_reason(self, provider: Optional[Provider], earnings: ProviderEarnings) -> Optional[str]:
        if self._config.payouts_disabled:
            return "payouts_disabled"
        if self._processor is None:
            return "processor_unavailable"
        if provider is None or not provider.connect_account_id:
            return "missing_connect_account"
        if not provider.payouts_enabled:
            return "payouts_not_enabled"
        if earnings.net_amount <= 0:
            return "invalid_amount"
        return None

    async def _transfer(
        self,
        uow: AbstractUnitOfWork,
        earnings: ProviderEarnings,
        provider: Provider,
        *,
        give_up_on_error: bool = False,
    ) -> tuple[PayoutOutcome, Optional[str], Optional[str]]:
        req = TransferRequest(
            amount=earnings.net_amount,
            currency=earnings.currency or self._config.currency,
            destination_account=provider.connect_account_id,
            idempotency_key=transfer_idempotency_key(earnings.id),
            transfer_group=earnings.booking_id,
            metadata={
                "booking_id": earnings.booking_id,
                "earnings_id": earnings.id,
                "provider_id": earnings.provider_id,
            },
        )
        try:
            result = await self._processor.create_transfer(req)
        except ProcessorError as exc:
            give_up = give_up_on_error and not exc.is_balance_insufficient and (
                earnings.payout_attempts + 1 >= self._config.payout_max_attempts
            )
            earnings.record_failed_attempt(exc.reason, give_up=give_up)
            await uow.earnings_repository.update(earnings)
            await uow.commit()
            logger.warning(
                "payout_transfer_failed",
                booking_id=earnings.booking_id,
                earnings_id=earnings.id,
                attempts=earnings.payout_attempts,
                gave_up=give_up,
                **exc.as_log_fields(),
            )
            if give_up:
                return PayoutOutcome.NOT_ELIGIBLE, None, exc.reason
            return PayoutOutcome.QUEUED, None, exc.reason

        earnings.record_transfer(result.id, result.destination_payment)
        written = await uow.earnings_repository.record_transfer(earnings)
        await uow.commit()
        if not written:
            # a concurrent confirmation linked the same transfer first
            fresh = await uow.earnings_repository.get_by_booking(earnings.booking_id)
            transfer_id = fresh.transfer_id if fresh else result.id
            logger.info("payout_already_recorded", earnings_id=earnings.id, transfer_id=transfer_id)
            return PayoutOutcome.ALREADY_PAID, transfer_id, None

        logger.info(
            "payout_transferred",
            booking_id=earnings.booking_id,
            earnings_id=earnings.id,
            transfer_id=result.id,
            amount=earnings.net_amount,
        )
        return PayoutOutcome.PAID_OUT, result.id, None

    async def retry_awaiting_payouts(self, limit: int = 100) -> PayoutRetrySummaryDTO:
        """Retry every queued payout without a transfer reference.

        Also picks up ``held`` rows of completed bookings, left behind when a
        confirmation stopped between the completion commit and queuing.
        """
        summary = PayoutRetrySummaryDTO()
        if self._config.payouts_disabled:
            logger.info("payout_retry_skipped", reason="payouts_disabled")
            return summary

        async with self._uow_factory() as uow:
            rows = await uow.earnings_repository.list_pending_payouts(limit=limit)
            for earnings in rows:
                if not earnings.is_transferable:
                    summary.skipped += 1
                    continue
                if earnings.status == EarningsStatus.HELD:
                    earnings.mark_awaiting_payout()
                    await uow.earnings_repository.update(earnings)
                    await uow.commit()
                    logger.info("payout_stranded_earnings_queued", earnings_id=earnings.id, booking_id=earnings.booking_id)
                provider = await uow.provider_repository.get_by_id(earnings.provider_id)
                blocked = self._blocked_reason(provider, earnings)
                if blocked:
                    summary.skipped += 1
                    logger.info("payout_retry_blocked", earnings_id=earnings.id, reason=blocked)
                    continue

                summary.attempted += 1
                outcome, _, _ = await self._transfer(uow, earnings, provider, give_up_on_error=True)
                if outcome in (PayoutOutcome.PAID_OUT, PayoutOutcome.ALREADY_PAID):
                    summary.paid += 1
                elif earnings.status == EarningsStatus.FAILED:
                    summary.failed += 1
                else:
                    summary.queued += 1

        logger.info("payout_retry_finished", **summary.model_dump())
        return summary


def _reported_outcome(earnings: Optional[ProviderEarnings]) -> tuple[PayoutOutcome, Optional[str]]:
    if earnings is None:
        return PayoutOutcome.QUEUED, "earnings_missing"
    if earnings.is_settled:
        return PayoutOutcome.ALREADY_PAID, None
    if earnings.status in BLOCKED_STATUSES:
        return PayoutOutcome.NOT_ELIGIBLE, f"earnings_{earnings.status.value}"
    return PayoutOutcome.QUEUED, earnings.last_payout_error
