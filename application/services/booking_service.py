"""
预订应用服务（application/services）- 创建、服务商响应、服务商标记完成、查询
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, TYPE_CHECKING

from application.dtos.bookings import BookingDTO
from application.services.booking_rules import ensure_held_earnings, transition_booking
from application.services.idempotency import (
    BOOKING_CREATE_TTL_SECONDS,
    IdempotencyGuard,
    make_idempotency_key,
)
from application.services.notification_service import NotificationService
from core.logging_config import get_logger
from domain.booking.entity import Booking, BookingStatus
from domain.booking.events import (
    BookingAccepted,
    BookingDeclined,
    BookingMarkedComplete,
    BookingRequested,
)
from domain.common.config import PlatformConfig
from domain.common.exceptions import (
    BookingNotFoundException,
    DomainValidationException,
    ForbiddenActionException,
    ProviderNotFoundException,
    ServiceNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork

if TYPE_CHECKING:
    from application.services.refund_service import CancellationCoordinator


logger = get_logger(__name__)


class BookingApplicationService:
    """预订应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        guard: IdempotencyGuard,
        notifications: NotificationService,
        config: PlatformConfig,
        cancellations: Optional["CancellationCoordinator"] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._guard = guard
        self._notifications = notifications
        self._config = config
        self._cancellations = cancellations

    async def create_booking(
        self,
        customer_id: str,
        service_id: str,
        scheduled_date: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
    ) -> BookingDTO:
        """创建预订；同一客户对同一服务的相同请求在 TTL 内返回同一条预订。"""
        payload = {
            "service_id": service_id,
            "scheduled_date": scheduled_date.isoformat() if scheduled_date else None,
        }
        if idempotency_key:
            payload["client_key"] = idempotency_key
        key = make_idempotency_key("booking:create", customer_id, service_id, payload)

        async def _create() -> BookingDTO:
            async with self._uow_factory() as uow:
                service = await uow.service_repository.get_by_id(service_id)
                if service is None or not service.is_active:
                    raise ServiceNotFoundException(service_id)
                provider = await uow.provider_repository.get_by_id(service.provider_id)
                if provider is None:
                    raise ProviderNotFoundException(service.provider_id)
                if provider.user_id == customer_id:
                    raise ForbiddenActionException("Cannot book your own service")

                booking = Booking(
                    id=None,
                    customer_id=customer_id,
                    provider_id=provider.id,
                    service_id=service.id,
                    status=BookingStatus.PENDING,
                    price_at_booking=service.price,
                    scheduled_date=scheduled_date,
                )
                if booking.scheduled_in_past():
                    raise DomainValidationException("Scheduled date must be in the future", field="scheduled_date")
                booking = await uow.booking_repository.create(booking)

            logger.info(
                "booking_created",
                booking_id=booking.id,
                customer_id=customer_id,
                provider_id=provider.id,
                price=booking.price_at_booking,
            )
            await self._notifications.publish([BookingRequested(booking.id, provider.user_id)])
            return BookingDTO.from_entity(booking)

        return await self._guard.run(
            key,
            BOOKING_CREATE_TTL_SECONDS,
            _create,
            encode=lambda dto: dto.model_dump(mode="json"),
            decode=BookingDTO.model_validate,
        )

    async def respond_to_booking(
        self,
        booking_id: str,
        actor_id: str,
        action: str,
        reason: Optional[str] = None,
    ) -> BookingDTO:
        """服务商接受 / 拒绝；cancel 交给取消协调器处理。"""
        if action == "cancel":
            if self._cancellations is None:
                raise DomainValidationException("Cancellation is not available", field="action")
            result = await self._cancellations.cancel_booking(booking_id, actor_id, reason)
            return result.booking

        targets = {"accept": BookingStatus.ACCEPTED, "decline": BookingStatus.DECLINED}
        if action not in targets:
            raise DomainValidationException(f"Unknown action: {action}", field="action")

        async with self._uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            provider = await uow.provider_repository.get_by_id(booking.provider_id)
            if provider is None or provider.user_id != actor_id:
                raise ForbiddenActionException("Only the provider can respond to this booking")
            await transition_booking(uow.booking_repository, booking, targets[action])

        logger.info("booking_responded", booking_id=booking.id, action=action, status=booking.status.value)
        if action == "accept":
            event = BookingAccepted(booking.id, booking.customer_id)
        else:
            event = BookingDeclined(booking.id, booking.customer_id, reason=reason)
        await self._notifications.publish([event])
        return BookingDTO.from_entity(booking)

    async def mark_completed_by_provider(self, booking_id: str, provider_user_id: str) -> BookingDTO:
        """paid -> completed_by_provider，同时确保收益记录以 held 状态存在。"""
        async with self._uow_factory() as uow:
            booking = await self._load(uow, booking_id)
            provider = await uow.provider_repository.get_by_id(booking.provider_id)
            if provider is None or provider.user_id != provider_user_id:
                raise ForbiddenActionException("Only the provider can complete this booking")
            await transition_booking(uow.booking_repository, booking, BookingStatus.COMPLETED_BY_PROVIDER)
            await uow.commit()
            await ensure_held_earnings(uow, booking, self._config)

        logger.info("booking_marked_complete", booking_id=booking.id, provider_id=provider.id)
        await self._notifications.publish([BookingMarkedComplete(booking.id, booking.customer_id)])
        return BookingDTO.from_entity(booking)

    async def get_booking(self, booking_id: str, actor_id: str, *, is_admin: bool = False) -> BookingDTO:
        async with self._uow_factory(readonly=True) as uow:
            booking = await self._load(uow, booking_id)
            if not is_admin and booking.customer_id != actor_id:
                provider = await uow.provider_repository.get_by_id(booking.provider_id)
                if provider is None or provider.user_id != actor_id:
                    # 不暴露他人预订是否存在
                    raise BookingNotFoundException(booking_id)
            return BookingDTO.from_entity(booking)

    @staticmethod
    async def _load(uow: AbstractUnitOfWork, booking_id: str) -> Booking:
        booking = await uow.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise BookingNotFoundException(booking_id)
        return booking
