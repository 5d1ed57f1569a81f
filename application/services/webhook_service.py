"""
Webhook reconciliation.

Events arrive already authenticated (signature checks happen at the route,
before anything here runs). External systems are the source of truth for
account flags, payout state, refund outcome and KYC review; this service
copies that truth into local rows and notifies users about real changes
only. Every event runs at most once per event id.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from application.dtos.payments import ConnectAccount, WebhookEvent
from application.ports.identity import IdentityEvent
from application.ports.payment_gateway import PaymentProcessor, ProcessorError
from application.services.booking_rules import transition_booking
from application.services.idempotency import WEBHOOK_EVENT_TTL_SECONDS, IdempotencyGuard
from application.services.notification_service import NotificationService
from core.logging_config import get_logger
from domain.booking.entity import Booking, BookingStatus
from domain.booking.events import BookingPaid, BookingRefunded, PaymentFailed
from domain.booking.state_machine import RESOLUTION_TRANSITIONS, can_transition
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.earnings.entity import EarningsStatus, PayoutStatus, ProviderPayout
from domain.payment.entity import Refund, RefundStatus
from domain.provider.entity import KycStatus, Provider
from shared.codes.payment_codes import map_provider_status


logger = get_logger(__name__)

CONNECT_ACCOUNT_REFETCH_EVENTS = frozenset({
    "capability.updated",
    "person.updated",
    "account.external_account.updated",
})
PAYOUT_EVENTS = frozenset({
    "payout.created",
    "payout.updated",
    "payout.paid",
    "payout.failed",
    "payout.canceled",
})
REFUND_EVENTS = frozenset({"charge.refunded", "refund.created", "refund.updated"})


def kyc_status_for(event_type: str, review_status: Optional[str], review_answer: Optional[str]) -> KycStatus:
    """Map an identity-provider applicant event onto a KYC status."""
    answer = (review_answer or "").upper()
    if event_type == "applicantCreated":
        return KycStatus.NOT_STARTED
    if event_type in ("applicantPending", "applicantOnHold"):
        return KycStatus.PENDING_REVIEW
    if event_type == "applicantReviewed":
        if answer == "GREEN":
            return KycStatus.VERIFIED
        if answer == "RED":
            return KycStatus.REJECTED
        return KycStatus.PENDING_REVIEW
    if event_type in ("applicantActionPending", "applicantPersonalInfoChanged"):
        return KycStatus.IN_PROGRESS

    normalized = (review_status or "").lower()
    if normalized == "init":
        return KycStatus.NOT_STARTED
    if any(token in normalized for token in ("pending", "queued", "onhold")):
        return KycStatus.PENDING_REVIEW
    if "completed" in normalized:
        if answer == "GREEN":
            return KycStatus.VERIFIED
        if answer == "RED":
            return KycStatus.REJECTED
        return KycStatus.PENDING_REVIEW
    if answer == "GREEN":
        return KycStatus.VERIFIED
    if answer == "RED":
        return KycStatus.REJECTED
    return KycStatus.IN_PROGRESS


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)) and value > 0:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


class WebhookReconciler:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        processor: Optional[PaymentProcessor],
        guard: IdempotencyGuard,
        notifications: NotificationService,
    ) -> None:
        self._uow_factory = uow_factory
        self._processor = processor
        self._guard = guard
        self._notifications = notifications

    # ---- entry points -------------------------------------------------

    async def handle_connect_event(self, event: WebhookEvent) -> bool:
        """Returns False when the event id was already processed."""
        return await self._once("payment-connect", event.id, lambda: self._dispatch_connect(event))

    async def handle_payment_event(self, event: WebhookEvent) -> bool:
        return await self._once("payments", event.id, lambda: self._dispatch_payment(event))

    async def handle_identity_event(self, event: IdentityEvent) -> bool:
        return await self._once("identity", event.id, lambda: self._apply_kyc(event))

    async def _once(self, source: str, event_id: str, operation) -> bool:
        processed = await self._guard.run_once(f"webhook:{source}:{event_id}", WEBHOOK_EVENT_TTL_SECONDS, operation)
        if not processed:
            logger.info("webhook_duplicate", source=source, event_id=event_id)
        return processed

    # ---- connect account + payouts -----------------------------------

    async def _dispatch_connect(self, event: WebhookEvent) -> None:
        obj = event.object
        if event.type == "account.updated":
            await self._apply_account(event.id, ConnectAccount(
                id=obj.get("id") or event.account or "",
                charges_enabled=bool(obj.get("charges_enabled")),
                payouts_enabled=bool(obj.get("payouts_enabled")),
                metadata=obj.get("metadata") or {},
            ))
        elif event.type in CONNECT_ACCOUNT_REFETCH_EVENTS:
            account_id = event.account or obj.get("account")
            if not account_id or self._processor is None:
                logger.warning("connect_event_without_account", event_id=event.id, event_type=event.type)
                return
            account = await self._processor.retrieve_account(account_id)
            await self._apply_account(event.id, account)
        elif event.type == "account.application.deauthorized":
            account_id = event.account or obj.get("account") or ""
            await self._apply_account(event.id, ConnectAccount(id=account_id))
        elif event.type in PAYOUT_EVENTS:
            await self._apply_payout(event)
        else:
            logger.info("webhook_event_ignored", source="payment-connect", event_type=event.type, event_id=event.id)

    async def _apply_account(self, event_id: str, account: ConnectAccount) -> None:
        async with self._uow_factory() as uow:
            provider = await self._provider_for_account(uow, account)
            if provider is None:
                logger.warning("connect_provider_not_found", event_id=event_id, account_id=account.id)
                return
            changes = provider.apply_connect_flags(
                charges_enabled=account.charges_enabled,
                payouts_enabled=account.payouts_enabled,
                connect_account_id=account.id or None,
            )
            await uow.provider_repository.update(provider)

        logger.info(
            "connect_account_synced",
            event_id=event_id,
            provider_id=provider.id,
            account_id=account.id,
            charges_enabled=account.charges_enabled,
            payouts_enabled=account.payouts_enabled,
            changed=sorted(changes),
        )
        if not changes:
            return
        # payouts change wins when both flags flipped in one event
        flag = "payouts_enabled" if "payouts_enabled" in changes else "charges_enabled"
        state = "enabled" if changes[flag] else "disabled"
        template = f"notify.connect.{flag.split('_')[0]}_{state}"
        await self._notifications.notify_template(
            provider.user_id,
            "connect.account_updated",
            template,
            f"stripe-connect:{event_id}:{provider.user_id}",
            action_url="/dashboard/provider/payouts",
        )

    @staticmethod
    async def _provider_for_account(uow: AbstractUnitOfWork, account: ConnectAccount) -> Optional[Provider]:
        provider = None
        if account.id:
            provider = await uow.provider_repository.get_by_connect_account(account.id)
        if provider is None:
            provider_id = (account.metadata or {}).get("providerId") or (account.metadata or {}).get("provider_id")
            if provider_id:
                provider = await uow.provider_repository.get_by_id(str(provider_id))
        return provider

    async def _apply_payout(self, event: WebhookEvent) -> None:
        obj = event.object
        payout_id = obj.get("id")
        account_id = event.account or obj.get("destination_account")
        if not payout_id or not account_id:
            logger.warning("payout_event_incomplete", event_id=event.id, payout_id=payout_id, account_id=account_id)
            return

        provider_kind = self._processor.provider if self._processor else event.provider
        status = PayoutStatus(map_provider_status(f"{provider_kind}.payout", obj.get("status")))
        async with self._uow_factory() as uow:
            provider = await uow.provider_repository.get_by_connect_account(account_id)
            if provider is None:
                logger.warning("payout_provider_not_found", event_id=event.id, account_id=account_id)
                return
            await uow.payout_repository.upsert(ProviderPayout(
                id=payout_id,
                provider_id=provider.id,
                connect_account_id=account_id,
                amount=int(obj.get("amount") or 0),
                currency=(obj.get("currency") or "").lower(),
                status=status,
                arrival_date=_timestamp(obj.get("arrival_date")),
                failure_code=obj.get("failure_code"),
                failure_message=obj.get("failure_message"),
                balance_transaction_id=obj.get("balance_transaction"),
                raw=obj,
            ))
            await uow.commit()
            logger.info("payout_synced", payout_id=payout_id, provider_id=provider.id, status=status.value)

            if self._processor is None:
                return
            try:
                refs = await self._processor.list_payout_ledger_refs(payout_id, account_id)
            except ProcessorError as exc:
                logger.warning("payout_link_failed", payout_id=payout_id, **exc.as_log_fields())
                return
            linked = 0
            for earnings in await uow.earnings_repository.list_by_ledger_refs(provider.id, refs):
                earnings.link_payout(payout_id, paid=status == PayoutStatus.PAID)
                await uow.earnings_repository.update(earnings)
                linked += 1
        logger.info("payout_earnings_linked", payout_id=payout_id, linked=linked, ledger_refs=len(refs))

    # ---- payments + refunds ------------------------------------------

    async def _dispatch_payment(self, event: WebhookEvent) -> None:
        obj = event.object
        if event.type == "payment_intent.succeeded":
            await self._payment_succeeded(obj)
        elif event.type == "payment_intent.payment_failed":
            await self._payment_failed(obj)
        elif event.type == "charge.refunded":
            refunds = (obj.get("refunds") or {}).get("data") or []
            for refund_obj in refunds:
                await self._sync_refund(refund_obj)
        elif event.type in REFUND_EVENTS:
            await self._sync_refund(obj)
        else:
            logger.info("webhook_event_ignored", source="payments", event_type=event.type, event_id=event.id)

    @staticmethod
    async def _booking_for_payment(uow: AbstractUnitOfWork, obj: dict) -> Optional[Booking]:
        payment_intent_id = obj.get("id")
        booking = None
        if payment_intent_id:
            booking = await uow.booking_repository.get_by_payment_intent(payment_intent_id)
        if booking is None:
            metadata = obj.get("metadata") or {}
            booking_id = metadata.get("bookingId") or metadata.get("booking_id")
            if booking_id:
                booking = await uow.booking_repository.get_by_id(str(booking_id))
        return booking

    async def _payment_succeeded(self, obj: dict) -> None:
        payment_intent_id = obj.get("id")
        async with self._uow_factory() as uow:
            booking = await self._booking_for_payment(uow, obj)
            if booking is None:
                logger.warning("payment_booking_not_found", payment_intent_id=payment_intent_id)
                return
            if booking.payment_intent_id != payment_intent_id:
                await uow.booking_repository.set_payment_intent(booking.id, payment_intent_id)
                booking.payment_intent_id = payment_intent_id
            if booking.status != BookingStatus.ACCEPTED:
                logger.info(
                    "payment_reference_relinked",
                    booking_id=booking.id,
                    status=booking.status.value,
                    payment_intent_id=payment_intent_id,
                )
                return
            await transition_booking(uow.booking_repository, booking, BookingStatus.PAID)
            provider = await uow.provider_repository.get_by_id(booking.provider_id)

        logger.info("booking_paid", booking_id=booking.id, payment_intent_id=payment_intent_id)
        if provider is not None:
            await self._notifications.publish(
                [BookingPaid(booking.id, provider.user_id, payment_intent_id=payment_intent_id)]
            )

    async def _payment_failed(self, obj: dict) -> None:
        payment_intent_id = obj.get("id")
        async with self._uow_factory() as uow:
            booking = await self._booking_for_payment(uow, obj)
            if booking is None:
                logger.warning("payment_booking_not_found", payment_intent_id=payment_intent_id)
                return
            if booking.status == BookingStatus.ACCEPTED and booking.payment_intent_id == payment_intent_id:
                await uow.booking_repository.set_payment_intent(booking.id, None)

        error = obj.get("last_payment_error") or {}
        logger.info(
            "payment_failed",
            booking_id=booking.id,
            payment_intent_id=payment_intent_id,
            decline_code=error.get("decline_code") or error.get("code"),
        )
        await self._notifications.publish(
            [PaymentFailed(booking.id, booking.customer_id, payment_intent_id=payment_intent_id)]
        )

    async def _sync_refund(self, obj: dict) -> None:
        external_id = obj.get("id")
        provider_kind = self._processor.provider if self._processor else "stripe"
        status = RefundStatus(map_provider_status(f"{provider_kind}.refund", obj.get("status")))
        async with self._uow_factory() as uow:
            refund = await self._refund_for(uow, obj)
            if refund is None:
                logger.warning("refund_not_found", external_refund_id=external_id)
                return

            if refund.status != status and not refund.is_final:
                if status == RefundStatus.FAILED:
                    refund.mark_failed(obj.get("failure_reason") or "processor_failed")
                else:
                    refund.record_processor_result(external_id, status)
                await uow.refund_repository.update(refund)
                await uow.commit()
                logger.info("refund_synced", refund_id=refund.id, external_refund_id=external_id, status=status.value)
            elif refund.external_refund_id is None and external_id:
                refund.external_refund_id = external_id
                await uow.refund_repository.update(refund)

            if refund.status != RefundStatus.COMPLETED:
                return
            booking = await uow.booking_repository.get_by_id(refund.booking_id)
            if booking is None:
                return
            refunded_now = await self._finalize_refund(uow, booking)

        if refunded_now:
            await self._notifications.publish(
                [BookingRefunded(booking.id, booking.customer_id, refund_id=refund.id, amount=refund.amount)]
            )

    @staticmethod
    async def _refund_for(uow: AbstractUnitOfWork, obj: dict) -> Optional[Refund]:
        refund = None
        if obj.get("id"):
            refund = await uow.refund_repository.get_by_external_id(obj["id"])
        if refund is None:
            local_id = (obj.get("metadata") or {}).get("refund_id")
            if local_id:
                refund = await uow.refund_repository.get_by_id(str(local_id))
        return refund

    @staticmethod
    async def _finalize_refund(uow: AbstractUnitOfWork, booking: Booking) -> bool:
        """Move the booking and its earnings to refunded where the lifecycle allows it."""
        allowed = BookingStatus.REFUNDED in RESOLUTION_TRANSITIONS.get(booking.status, frozenset())
        if not allowed and not can_transition(booking.status, BookingStatus.REFUNDED):
            return False
        await transition_booking(uow.booking_repository, booking, BookingStatus.REFUNDED, resolution=True)

        earnings = await uow.earnings_repository.get_by_booking(booking.id)
        if earnings is not None and earnings.status != EarningsStatus.REFUNDED:
            if earnings.is_settled:
                logger.error("refund_after_transfer", booking_id=booking.id, transfer_id=earnings.transfer_id)
            else:
                earnings.mark_refunded()
                await uow.earnings_repository.update(earnings)
        logger.info("booking_refunded", booking_id=booking.id)
        return True

    # ---- identity -----------------------------------------------------

    async def _apply_kyc(self, event: IdentityEvent) -> None:
        status = kyc_status_for(event.type, event.review_status, event.review_answer)
        if not event.external_user_id:
            logger.warning("kyc_event_without_user", event_id=event.id, event_type=event.type)
            return
        async with self._uow_factory() as uow:
            provider = await uow.provider_repository.get_by_id(event.external_user_id)
            if provider is None:
                logger.warning("kyc_provider_not_found", event_id=event.id, external_user_id=event.external_user_id)
                return
            changed = provider.apply_kyc_status(status)
            if changed:
                await uow.provider_repository.update(provider)

        logger.info(
            "kyc_status_synced",
            provider_id=provider.id,
            applicant_id=event.applicant_id,
            kyc_status=status.value,
            changed=changed,
        )
        if changed:
            await self._notifications.notify_template(
                provider.user_id,
                "kyc.status_changed",
                f"notify.kyc.{status.value}",
                f"identity:{event.id}:{provider.user_id}",
                kyc_status=status.value,
            )
