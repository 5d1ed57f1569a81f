"""
预订仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.booking.entity import (
    ActorRole,
    Booking,
    BookingCancellation,
    BookingStatus,
    Dispute,
    DisputeStatus,
)
from domain.booking.repository import BookingRepository, CancellationRepository, DisputeRepository
from domain.booking.state_machine import normalize_status
from infrastructure.models.base import utcnow
from infrastructure.models.booking import BookingCancellationModel, BookingModel, DisputeModel


logger = get_logger(__name__)


class SQLAlchemyBookingRepository(BookingRepository):
    """预订仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: BookingModel) -> Booking:
        """将数据库模型转换为领域实体（历史状态拼写在此归一化）"""
        return Booking(
            id=model.id,
            customer_id=model.customer_id,
            provider_id=model.provider_id,
            service_id=model.service_id,
            status=normalize_status(model.status),
            price_at_booking=model.price_at_booking,
            scheduled_date=model.scheduled_date,
            payment_intent_id=model.payment_intent_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def _get_model(self, **criteria) -> Optional[BookingModel]:
        stmt = select(BookingModel).filter_by(**criteria).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, booking: Booking) -> Booking:
        db_booking = BookingModel(
            customer_id=booking.customer_id,
            provider_id=booking.provider_id,
            service_id=booking.service_id,
            status=booking.status.value,
            price_at_booking=booking.price_at_booking,
            scheduled_date=booking.scheduled_date,
            payment_intent_id=booking.payment_intent_id,
        )
        if booking.id:
            db_booking.id = booking.id
        self.session.add(db_booking)
        await self.session.flush()
        await self.session.refresh(db_booking)
        return self._to_entity(db_booking)

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        db_booking = await self._get_model(id=booking_id)
        return self._to_entity(db_booking) if db_booking else None

    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Booking]:
        db_booking = await self._get_model(payment_intent_id=payment_intent_id)
        return self._to_entity(db_booking) if db_booking else None

    async def transition(self, booking: Booking, expected: BookingStatus, status: BookingStatus) -> bool:
        """条件更新（compare-and-set）"""
        result = await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking.id, BookingModel.status == expected.value)
            .values(status=status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        booking.apply_status(status)
        logger.info(
            "booking_status_changed",
            booking_id=booking.id,
            from_status=expected.value,
            to_status=status.value,
        )
        return True

    async def set_payment_intent(self, booking_id: str, payment_intent_id: Optional[str]) -> None:
        await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking_id)
            .values(payment_intent_id=payment_intent_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def list_by_provider(self, provider_id: str, limit: int = 100) -> List[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.provider_id == provider_id)
            .order_by(BookingModel.created_at.desc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyCancellationRepository(CancellationRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: BookingCancellationModel) -> BookingCancellation:
        return BookingCancellation(
            id=model.id,
            booking_id=model.booking_id,
            canceled_by=model.canceled_by,
            actor_role=ActorRole(model.actor_role),
            previous_status=normalize_status(model.previous_status),
            reason=model.reason,
            refunded=model.refunded,
            refund_id=model.refund_id,
            created_at=model.created_at,
        )

    async def create(self, cancellation: BookingCancellation) -> BookingCancellation:
        db_row = BookingCancellationModel(
            booking_id=cancellation.booking_id,
            canceled_by=cancellation.canceled_by,
            actor_role=cancellation.actor_role.value,
            previous_status=cancellation.previous_status.value,
            reason=cancellation.reason,
            refunded=cancellation.refunded,
            refund_id=cancellation.refund_id,
        )
        self.session.add(db_row)
        await self.session.flush()
        await self.session.refresh(db_row)
        return self._to_entity(db_row)

    async def list_by_booking(self, booking_id: str) -> List[BookingCancellation]:
        result = await self.session.execute(
            select(BookingCancellationModel)
            .where(BookingCancellationModel.booking_id == booking_id)
            .order_by(BookingCancellationModel.created_at)
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyDisputeRepository(DisputeRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: DisputeModel) -> Dispute:
        return Dispute(
            id=model.id,
            booking_id=model.booking_id,
            opened_by=model.opened_by,
            reason=model.reason,
            status=DisputeStatus(model.status),
            admin_decision=model.admin_decision,
            admin_notes=model.admin_notes,
            refund_amount=model.refund_amount,
            resolved_by=model.resolved_by,
            resolved_at=model.resolved_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, dispute: Dispute) -> Dispute:
        db_row = DisputeModel(
            booking_id=dispute.booking_id,
            opened_by=dispute.opened_by,
            reason=dispute.reason,
            status=dispute.status.value,
        )
        self.session.add(db_row)
        await self.session.flush()
        await self.session.refresh(db_row)
        return self._to_entity(db_row)

    async def get_by_id(self, dispute_id: str) -> Optional[Dispute]:
        result = await self.session.execute(
            select(DisputeModel).where(DisputeModel.id == dispute_id).execution_options(populate_existing=True)
        )
        db_row = result.scalar_one_or_none()
        return self._to_entity(db_row) if db_row else None

    async def update(self, dispute: Dispute) -> Dispute:
        db_row = await self.session.get(DisputeModel, dispute.id)
        if db_row is None:
            raise ValueError(f"Dispute with id {dispute.id} not found")
        db_row.status = dispute.status.value
        db_row.admin_decision = dispute.admin_decision
        db_row.admin_notes = dispute.admin_notes
        db_row.refund_amount = dispute.refund_amount
        db_row.resolved_by = dispute.resolved_by
        db_row.resolved_at = dispute.resolved_at
        await self.session.flush()
        return self._to_entity(db_row)
