"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.booking.repository import BookingRepository, CancellationRepository, DisputeRepository
from domain.earnings.repository import EarningsRepository, PayoutRepository
from domain.notification.repository import NotificationRepository
from domain.payment.repository import RefundRepository
from domain.provider.repository import ProviderRepository, ServiceRepository


class AbstractUnitOfWork(ABC):
    """
    应用层事务边界控制抽象

    多步骤流程在每个关键步骤后显式 commit，使任一中间状态都可安全重入，
    不依赖跨步骤回滚。
    """

    booking_repository: BookingRepository
    cancellation_repository: CancellationRepository
    dispute_repository: DisputeRepository
    earnings_repository: EarningsRepository
    payout_repository: PayoutRepository
    refund_repository: RefundRepository
    provider_repository: ProviderRepository
    service_repository: ServiceRepository
    notification_repository: NotificationRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._readonly = readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        elif not self._readonly:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
