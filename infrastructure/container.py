"""
Service wiring shared by the HTTP app and the Celery worker.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from application.ports.payment_gateway import PaymentProcessor
from application.services.booking_service import BookingApplicationService
from application.services.idempotency import IdempotencyGuard
from application.services.notification_service import NotificationService
from application.services.payout_service import PayoutOrchestrator
from application.services.refund_service import CancellationCoordinator, DisputeCoordinator, RefundIssuer
from application.services.webhook_service import WebhookReconciler
from core.settings import payment_settings
from domain.common.config import PlatformConfig
from infrastructure.external.payments import get_payment_processor
from infrastructure.idempotency import get_idempotency_store
from infrastructure.notifications import DatabaseNotificationDispatcher
from infrastructure.tasks.utils.dispatcher import TaskDispatcher
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@lru_cache(maxsize=1)
def payment_processor() -> Optional[PaymentProcessor]:
    return get_payment_processor()


def platform_config() -> PlatformConfig:
    return payment_settings.platform.to_platform_config()


def notification_service() -> NotificationService:
    return NotificationService(DatabaseNotificationDispatcher(SQLAlchemyUnitOfWork, TaskDispatcher()))


async def idempotency_guard() -> IdempotencyGuard:
    return IdempotencyGuard(await get_idempotency_store())


def build_cancellations(guard: IdempotencyGuard, notifications: NotificationService) -> CancellationCoordinator:
    return CancellationCoordinator(SQLAlchemyUnitOfWork, RefundIssuer(payment_processor()), guard, notifications)


async def build_booking_service() -> BookingApplicationService:
    guard = await idempotency_guard()
    notifications = notification_service()
    return BookingApplicationService(
        SQLAlchemyUnitOfWork,
        guard,
        notifications,
        platform_config(),
        cancellations=build_cancellations(guard, notifications),
    )


async def build_cancellation_coordinator() -> CancellationCoordinator:
    return build_cancellations(await idempotency_guard(), notification_service())


async def build_payout_orchestrator() -> PayoutOrchestrator:
    return PayoutOrchestrator(SQLAlchemyUnitOfWork, payment_processor(), platform_config(), notification_service())


async def build_dispute_coordinator() -> DisputeCoordinator:
    return DisputeCoordinator(
        SQLAlchemyUnitOfWork,
        RefundIssuer(payment_processor()),
        notification_service(),
        platform_config(),
    )


async def build_webhook_reconciler() -> WebhookReconciler:
    return WebhookReconciler(SQLAlchemyUnitOfWork, payment_processor(), await idempotency_guard(), notification_service())
