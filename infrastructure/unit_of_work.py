"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.booking_repository import (
    SQLAlchemyBookingRepository,
    SQLAlchemyCancellationRepository,
    SQLAlchemyDisputeRepository,
)
from infrastructure.repositories.earnings_repository import (
    SQLAlchemyEarningsRepository,
    SQLAlchemyPayoutRepository,
)
from infrastructure.repositories.notification_repository import SQLAlchemyNotificationRepository
from infrastructure.repositories.provider_repository import (
    SQLAlchemyProviderRepository,
    SQLAlchemyServiceRepository,
)
from infrastructure.repositories.refund_repository import SQLAlchemyRefundRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    基于SQLAlchemy的Unit of Work

    会话使用 autobegin：commit 之后的下一条语句自动开启新事务，
    因此多步骤流程可在同一个 UoW 内逐步提交。
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        session = self.session
        self.booking_repository = SQLAlchemyBookingRepository(session)
        self.cancellation_repository = SQLAlchemyCancellationRepository(session)
        self.dispute_repository = SQLAlchemyDisputeRepository(session)
        self.earnings_repository = SQLAlchemyEarningsRepository(session)
        self.payout_repository = SQLAlchemyPayoutRepository(session)
        self.refund_repository = SQLAlchemyRefundRepository(session)
        self.provider_repository = SQLAlchemyProviderRepository(session)
        self.service_repository = SQLAlchemyServiceRepository(session)
        self.notification_repository = SQLAlchemyNotificationRepository(session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            return
        if self.session is not None and self.session.in_transaction():
            await self.session.commit()

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
