"""
收益与提现仓储实现

upsert_held / record_transfer 依赖数据库约束保证并发安全：
booking_id 唯一，transfer_id 只在为空时写入。
"""
from typing import List, Optional, Sequence

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.booking.entity import BookingStatus
from domain.earnings.entity import EarningsStatus, PayoutStatus, ProviderEarnings, ProviderPayout
from domain.earnings.repository import EarningsRepository, PayoutRepository
from infrastructure.models.base import utcnow
from infrastructure.models.booking import BookingModel
from infrastructure.models.earnings import ProviderEarningsModel, ProviderPayoutModel
from infrastructure.repositories.dialect import upsert_insert


logger = get_logger(__name__)


def earnings_id_for(booking_id: str) -> str:
    return f"earn_{booking_id}"


class SQLAlchemyEarningsRepository(EarningsRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: ProviderEarningsModel) -> ProviderEarnings:
        return ProviderEarnings(
            id=model.id,
            booking_id=model.booking_id,
            provider_id=model.provider_id,
            gross_amount=model.gross_amount,
            platform_fee_amount=model.platform_fee_amount,
            gst_amount=model.gst_amount,
            net_amount=model.net_amount,
            status=EarningsStatus(model.status),
            currency=model.currency,
            transfer_id=model.transfer_id,
            ledger_reference=model.ledger_reference,
            payout_id=model.payout_id,
            payout_attempts=model.payout_attempts,
            last_payout_error=model.last_payout_error,
            transferred_at=model.transferred_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_by_booking(self, booking_id: str) -> Optional[ProviderEarnings]:
        result = await self.session.execute(
            select(ProviderEarningsModel)
            .where(ProviderEarningsModel.booking_id == booking_id)
            .execution_options(populate_existing=True)
        )
        db_row = result.scalar_one_or_none()
        return self._to_entity(db_row) if db_row else None

    async def upsert_held(self, earnings: ProviderEarnings) -> ProviderEarnings:
        now = utcnow()
        stmt = upsert_insert(self.session, ProviderEarningsModel).values(
            id=earnings.id or earnings_id_for(earnings.booking_id),
            booking_id=earnings.booking_id,
            provider_id=earnings.provider_id,
            gross_amount=earnings.gross_amount,
            platform_fee_amount=earnings.platform_fee_amount,
            gst_amount=earnings.gst_amount,
            net_amount=earnings.net_amount,
            currency=earnings.currency,
            status=EarningsStatus.HELD.value,
            payout_attempts=0,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["booking_id"])
        await self.session.execute(stmt)
        stored = await self.get_by_booking(earnings.booking_id)
        if stored is None:
            raise RuntimeError(f"earnings upsert for booking {earnings.booking_id} returned no row")
        return stored

    async def update(self, earnings: ProviderEarnings) -> ProviderEarnings:
        db_row = await self.session.get(ProviderEarningsModel, earnings.id)
        if db_row is None:
            raise ValueError(f"Earnings with id {earnings.id} not found")
        db_row.status = earnings.status.value
        db_row.payout_id = earnings.payout_id
        db_row.payout_attempts = earnings.payout_attempts
        db_row.last_payout_error = earnings.last_payout_error
        # transfer 字段只通过 record_transfer 写入
        await self.session.flush()
        return self._to_entity(db_row)

    async def record_transfer(self, earnings: ProviderEarnings) -> bool:
        result = await self.session.execute(
            update(ProviderEarningsModel)
            .where(
                ProviderEarningsModel.id == earnings.id,
                ProviderEarningsModel.transfer_id.is_(None),
            )
            .values(
                transfer_id=earnings.transfer_id,
                ledger_reference=earnings.ledger_reference,
                status=earnings.status.value,
                transferred_at=earnings.transferred_at,
                last_payout_error=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        written = result.rowcount == 1
        if not written:
            logger.warning("earnings_transfer_already_recorded", earnings_id=earnings.id, transfer_id=earnings.transfer_id)
        return written

    async def list_pending_payouts(self, limit: int = 100) -> List[ProviderEarnings]:
        stranded_held = and_(
            ProviderEarningsModel.status == EarningsStatus.HELD.value,
            BookingModel.status == BookingStatus.COMPLETED.value,
        )
        result = await self.session.execute(
            select(ProviderEarningsModel)
            .join(BookingModel, BookingModel.id == ProviderEarningsModel.booking_id)
            .where(
                or_(ProviderEarningsModel.status == EarningsStatus.AWAITING_PAYOUT.value, stranded_held),
                ProviderEarningsModel.transfer_id.is_(None),
            )
            .order_by(ProviderEarningsModel.created_at)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_ledger_refs(self, provider_id: str, refs: Sequence[str]) -> List[ProviderEarnings]:
        if not refs:
            return []
        result = await self.session.execute(
            select(ProviderEarningsModel).where(
                ProviderEarningsModel.provider_id == provider_id,
                ProviderEarningsModel.ledger_reference.in_(list(refs)),
            )
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyPayoutRepository(PayoutRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: ProviderPayoutModel) -> ProviderPayout:
        return ProviderPayout(
            id=model.id,
            provider_id=model.provider_id,
            connect_account_id=model.connect_account_id,
            amount=model.amount,
            currency=model.currency,
            status=PayoutStatus(model.status),
            arrival_date=model.arrival_date,
            failure_code=model.failure_code,
            failure_message=model.failure_message,
            balance_transaction_id=model.balance_transaction_id,
            raw=model.raw or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def upsert(self, payout: ProviderPayout) -> ProviderPayout:
        now = utcnow()
        values = dict(
            provider_id=payout.provider_id,
            connect_account_id=payout.connect_account_id,
            amount=payout.amount,
            currency=payout.currency,
            status=payout.status.value,
            arrival_date=payout.arrival_date,
            failure_code=payout.failure_code,
            failure_message=payout.failure_message,
            balance_transaction_id=payout.balance_transaction_id,
            raw=payout.raw,
            updated_at=now,
        )
        stmt = upsert_insert(self.session, ProviderPayoutModel).values(id=payout.id, created_at=now, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=values)
        await self.session.execute(stmt)
        stored = await self.get_by_id(payout.id)
        return stored

    async def get_by_id(self, payout_id: str) -> Optional[ProviderPayout]:
        result = await self.session.execute(
            select(ProviderPayoutModel)
            .where(ProviderPayoutModel.id == payout_id)
            .execution_options(populate_existing=True)
        )
        db_row = result.scalar_one_or_none()
        return self._to_entity(db_row) if db_row else None
