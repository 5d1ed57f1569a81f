"""
退款仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.payment.entity import Refund, RefundReason, RefundStatus
from domain.payment.repository import RefundRepository
from infrastructure.models.payment import RefundModel


logger = get_logger(__name__)


class SQLAlchemyRefundRepository(RefundRepository):
    """退款仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        """将数据库模型转换为领域实体"""
        return Refund(
            id=model.id,
            booking_id=model.booking_id,
            amount=model.amount,
            reason=RefundReason(model.reason),
            processed_by=model.processed_by,
            status=RefundStatus(model.status),
            external_refund_id=model.external_refund_id,
            description=model.description,
            platform_fee_refunded=model.platform_fee_refunded,
            provider_amount_refunded=model.provider_amount_refunded,
            failure_reason=model.failure_reason,
            processed_at=model.processed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            metadata=model.extra_metadata or {},
        )

    async def create(self, refund: Refund) -> Refund:
        """创建退款记录（processing）"""
        db_refund = RefundModel(
            booking_id=refund.booking_id,
            amount=refund.amount,
            reason=refund.reason.value,
            processed_by=refund.processed_by,
            status=refund.status.value,
            description=refund.description,
            extra_metadata=refund.metadata,
        )
        self.session.add(db_refund)
        await self.session.flush()
        await self.session.refresh(db_refund)
        logger.info("refund_created", refund_id=db_refund.id, booking_id=db_refund.booking_id, amount=db_refund.amount)
        return self._to_entity(db_refund)

    async def _first(self, *criteria) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(*criteria).execution_options(populate_existing=True)
        )
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None

    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        return await self._first(RefundModel.id == refund_id)

    async def get_by_external_id(self, external_refund_id: str) -> Optional[Refund]:
        """根据渠道退款ID获取退款"""
        return await self._first(RefundModel.external_refund_id == external_refund_id)

    async def list_by_booking(self, booking_id: str) -> List[Refund]:
        result = await self.session.execute(
            select(RefundModel)
            .where(RefundModel.booking_id == booking_id)
            .order_by(RefundModel.created_at)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, refund: Refund) -> Refund:
        db_refund = await self.session.get(RefundModel, refund.id)
        if not db_refund:
            raise ValueError(f"Refund with id {refund.id} not found")

        db_refund.status = refund.status.value
        db_refund.external_refund_id = refund.external_refund_id
        db_refund.platform_fee_refunded = refund.platform_fee_refunded
        db_refund.provider_amount_refunded = refund.provider_amount_refunded
        db_refund.failure_reason = refund.failure_reason
        db_refund.processed_at = refund.processed_at

        await self.session.flush()
        logger.info("refund_updated", refund_id=db_refund.id, status=db_refund.status)
        return self._to_entity(db_refund)
