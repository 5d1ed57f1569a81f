"""
Cancellation, refund and dispute coordination.

A refund row is committed as ``processing`` before the processor is called,
so every attempt leaves exactly one auditable row whatever the outcome. The
booking only leaves its current status once the refund has been accepted.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.bookings import BookingDTO, CancellationResultDTO, DisputeDTO
from application.dtos.payments import RefundRequest
from application.ports.payment_gateway import PaymentProcessor, ProcessorError
from application.services.booking_rules import ensure_held_earnings, transition_booking
from application.services.idempotency import (
    BOOKING_CANCEL_TTL_SECONDS,
    IdempotencyGuard,
    make_idempotency_key,
)
from application.services.notification_service import NotificationService
from core.logging_config import get_logger
from domain.booking.entity import (
    ActorRole,
    Booking,
    BookingCancellation,
    BookingStatus,
    Dispute,
    DisputeStatus,
)
from domain.booking.events import BookingCanceled, BookingCompleted, BookingDisputed
from domain.booking.state_machine import assert_transition
from domain.common.config import PlatformConfig
from domain.common.exceptions import (
    BookingNotFoundException,
    DisputeNotFoundException,
    DomainValidationException,
    ForbiddenActionException,
    InvalidAmountException,
    InvalidStateException,
    InvalidTransitionException,
    RefundFailedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.earnings.entity import EarningsStatus
from domain.payment.entity import Refund, RefundReason, RefundStatus
from shared.codes.payment_codes import map_provider_status


logger = get_logger(__name__)


class RefundIssuer:
    """Processing-first refund flow shared by cancellations and dispute resolution."""

    def __init__(self, processor: Optional[PaymentProcessor]) -> None:
        self._processor = processor

    async def issue(
        self,
        uow: AbstractUnitOfWork,
        booking: Booking,
        *,
        amount: int,
        reason: RefundReason,
        processed_by: str,
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> Refund:
        if not booking.payment_intent_id:
            raise InvalidStateException(
                "Paid booking has no payment reference to refund",
                status=booking.status.value,
            )

        refund = await uow.refund_repository.create(
            Refund(
                id=None,
                booking_id=booking.id,
                amount=amount,
                reason=reason,
                processed_by=processed_by,
                description=description,
                metadata={"idempotency_key": idempotency_key},
            )
        )
        await uow.commit()
        logger.info("refund_processing", booking_id=booking.id, refund_id=refund.id, amount=amount, reason=reason.value)

        if self._processor is None:
            await self._fail(uow, refund, "processor_unavailable")
            raise RefundFailedException(booking.id, refund.id)

        try:
            result = await self._processor.create_refund(
                RefundRequest(
                    payment_reference=booking.payment_intent_id,
                    amount=amount,
                    idempotency_key=idempotency_key,
                    metadata={"booking_id": booking.id, "refund_id": refund.id, "reason": reason.value},
                )
            )
        except ProcessorError as exc:
            await self._fail(uow, refund, exc.reason)
            logger.error("refund_failed", booking_id=booking.id, refund_id=refund.id, **exc.as_log_fields())
            raise RefundFailedException(booking.id, refund.id) from exc

        status = RefundStatus(map_provider_status(f"{self._processor.provider}.refund", result.status))
        if status == RefundStatus.FAILED:
            await self._fail(uow, refund, f"processor_status_{result.status}")
            logger.error("refund_failed", booking_id=booking.id, refund_id=refund.id, processor_status=result.status)
            raise RefundFailedException(booking.id, refund.id)

        refund.record_processor_result(result.id, status)
        refund.platform_fee_refunded = result.platform_fee_refunded
        refund.provider_amount_refunded = result.provider_amount_refunded
        await uow.refund_repository.update(refund)
        await uow.commit()
        logger.info(
            "refund_accepted",
            booking_id=booking.id,
            refund_id=refund.id,
            external_refund_id=result.id,
            status=status.value,
        )
        return refund

    @staticmethod
    async def _fail(uow: AbstractUnitOfWork, refund: Refund, reason: str) -> None:
        refund.mark_failed(reason)
        await uow.refund_repository.update(refund)
        await uow.commit()


class CancellationCoordinator:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        refunds: RefundIssuer,
        guard: IdempotencyGuard,
        notifications: NotificationService,
    ) -> None:
        self._uow_factory = uow_factory
        self._refunds = refunds
        self._guard = guard
        self._notifications = notifications

    async def cancel_booking(
        self,
        booking_id: str,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> CancellationResultDTO:
        key = make_idempotency_key("booking:cancel", actor_id, booking_id)

        async def _cancel() -> CancellationResultDTO:
            return await self._cancel(booking_id, actor_id, reason, key)

        return await self._guard.run(
            key,
            BOOKING_CANCEL_TTL_SECONDS,
            _cancel,
            encode=lambda dto: dto.model_dump(mode="json"),
            decode=CancellationResultDTO.model_validate,
        )

    async def _cancel(self, booking_id: str, actor_id: str, reason: Optional[str], key: str) -> CancellationResultDTO:
        async with self._uow_factory() as uow:
            booking = await uow.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise BookingNotFoundException(booking_id)
            provider = await uow.provider_repository.get_by_id(booking.provider_id)

            if booking.customer_id == actor_id:
                role, target, counterpart = ActorRole.CUSTOMER, BookingStatus.CANCELED_CUSTOMER, (
                    provider.user_id if provider else None
                )
            elif provider is not None and provider.user_id == actor_id:
                role, target, counterpart = ActorRole.PROVIDER, BookingStatus.CANCELED_PROVIDER, booking.customer_id
            else:
                raise ForbiddenActionException("Only the customer or provider can cancel this booking")

            previous = booking.status
            assert_transition(previous, target)

            refund: Optional[Refund] = None
            if previous == BookingStatus.PAID:
                if booking.scheduled_in_past():
                    raise InvalidStateException(
                        "Paid bookings cannot be canceled after the scheduled time",
                        status=previous.value,
                        details={"scheduled_date": booking.scheduled_date.isoformat()},
                    )
                refund_reason = (
                    RefundReason.CUSTOMER_CANCELED if role == ActorRole.CUSTOMER else RefundReason.PROVIDER_CANCELED
                )
                refund = await self._refunds.issue(
                    uow,
                    booking,
                    amount=booking.price_at_booking,
                    reason=refund_reason,
                    processed_by=actor_id,
                    idempotency_key=f"{key}:refund",
                    description=reason,
                )

            try:
                await transition_booking(uow.booking_repository, booking, target)
            except InvalidTransitionException:
                if refund is not None:
                    # 钱已退回，但预订被并发修改；需人工对账
                    logger.error(
                        "refund_issued_but_cancel_lost",
                        booking_id=booking.id,
                        refund_id=refund.id,
                        external_refund_id=refund.external_refund_id,
                        amount=refund.amount,
                        requested=target.value,
                    )
                raise
            earnings = await uow.earnings_repository.get_by_booking(booking.id)
            if earnings is not None and earnings.status != EarningsStatus.REFUNDED:
                earnings.mark_refunded()
                await uow.earnings_repository.update(earnings)
            cancellation = await uow.cancellation_repository.create(
                BookingCancellation(
                    id=None,
                    booking_id=booking.id,
                    canceled_by=actor_id,
                    actor_role=role,
                    previous_status=previous,
                    reason=reason,
                    refunded=refund is not None,
                    refund_id=refund.id if refund else None,
                )
            )

        logger.info(
            "booking_canceled",
            booking_id=booking.id,
            actor_role=role.value,
            previous_status=previous.value,
            refunded=refund is not None,
        )
        if counterpart:
            await self._notifications.publish([
                BookingCanceled(
                    booking.id,
                    counterpart,
                    canceled_by_role=role.value,
                    refunded=refund is not None,
                    reason=reason,
                )
            ])
        return CancellationResultDTO(
            booking=BookingDTO.from_entity(booking),
            refunded=refund is not None,
            refund_id=refund.id if refund else None,
            cancellation_id=cancellation.id,
        )


class DisputeCoordinator:
    """客户发起争议，管理员裁决"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        refunds: RefundIssuer,
        notifications: NotificationService,
        config: PlatformConfig,
    ) -> None:
        self._uow_factory = uow_factory
        self._refunds = refunds
        self._notifications = notifications
        self._config = config

    async def open_dispute(self, booking_id: str, customer_id: str, reason: str) -> DisputeDTO:
        async with self._uow_factory() as uow:
            booking = await uow.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise BookingNotFoundException(booking_id)
            if booking.customer_id != customer_id:
                raise ForbiddenActionException("Only the customer can dispute this booking")
            await transition_booking(uow.booking_repository, booking, BookingStatus.DISPUTED)
            dispute = await uow.dispute_repository.create(
                Dispute(id=None, booking_id=booking.id, opened_by=customer_id, reason=reason)
            )
            provider = await uow.provider_repository.get_by_id(booking.provider_id)

        logger.info("dispute_opened", booking_id=booking.id, dispute_id=dispute.id)
        if provider is not None:
            await self._notifications.publish([BookingDisputed(booking.id, provider.user_id)])
        return DisputeDTO.from_entity(dispute)

    async def resolve_dispute(
        self,
        dispute_id: str,
        admin_id: str,
        decision: str,
        refund_amount: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> DisputeDTO:
        """裁决争议：有退款时走退款流程（终态由退款 webhook 落定），否则预订完成。"""
        async with self._uow_factory() as uow:
            dispute = await uow.dispute_repository.get_by_id(dispute_id)
            if dispute is None:
                raise DisputeNotFoundException(dispute_id)
            if dispute.status == DisputeStatus.RESOLVED:
                raise InvalidStateException("Dispute already resolved", status=dispute.status.value)
            booking = await uow.booking_repository.get_by_id(dispute.booking_id)
            if booking is None:
                raise BookingNotFoundException(dispute.booking_id)
            if booking.status != BookingStatus.DISPUTED:
                raise InvalidStateException(
                    f"Booking is not disputed: {booking.status.value}",
                    status=booking.status.value,
                )

            amount = self._refund_amount(booking, decision, refund_amount)
            provider = await uow.provider_repository.get_by_id(booking.provider_id)
            if amount:
                await self._refunds.issue(
                    uow,
                    booking,
                    amount=amount,
                    reason=RefundReason.DISPUTE_RESOLUTION,
                    processed_by=admin_id,
                    idempotency_key=f"dispute:{dispute.id}:refund:{amount}",
                    description=notes,
                )
            else:
                await transition_booking(uow.booking_repository, booking, BookingStatus.COMPLETED, resolution=True)
                await uow.commit()
                earnings = await ensure_held_earnings(uow, booking, self._config)
                if earnings.status == EarningsStatus.HELD:
                    earnings.mark_awaiting_payout()
                    await uow.earnings_repository.update(earnings)

            dispute.resolve(admin_id, decision, amount, notes)
            await uow.dispute_repository.update(dispute)

        logger.info(
            "dispute_resolved",
            dispute_id=dispute.id,
            booking_id=booking.id,
            decision=decision,
            refund_amount=amount,
        )
        if not amount and provider is not None:
            await self._notifications.publish(
                [BookingCompleted(booking.id, provider.user_id, payout_outcome="queued")]
            )
        return DisputeDTO.from_entity(dispute)

    @staticmethod
    def _refund_amount(booking: Booking, decision: str, refund_amount: Optional[int]) -> Optional[int]:
        if decision == "provider_favor":
            if refund_amount:
                raise DomainValidationException(
                    "Provider-favor decisions cannot carry a refund", field="refund_amount"
                )
            return None
        if decision == "customer_favor":
            amount = refund_amount or booking.price_at_booking
        elif decision == "split":
            if not refund_amount:
                raise DomainValidationException("Split decisions need a refund amount", field="refund_amount")
            amount = refund_amount
        else:
            raise DomainValidationException(f"Unknown decision: {decision}", field="decision")
        if amount <= 0 or amount > booking.price_at_booking:
            raise InvalidAmountException(amount, field="refund_amount")
        return amount
