"""
服务商与服务目录仓储实现
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.provider.entity import KycStatus, Provider, ProviderPlan, Service
from domain.provider.repository import ProviderRepository, ServiceRepository
from infrastructure.models.provider import ProviderModel, ServiceModel


def _plan(value: Optional[str]) -> ProviderPlan:
    try:
        return ProviderPlan((value or "").lower())
    except ValueError:
        return ProviderPlan.STARTER


class SQLAlchemyProviderRepository(ProviderRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: ProviderModel) -> Provider:
        return Provider(
            id=model.id,
            user_id=model.user_id,
            business_name=model.business_name,
            plan=_plan(model.plan),
            charges_gst=model.charges_gst,
            fee_override_bps=model.fee_override_bps,
            connect_account_id=model.connect_account_id,
            charges_enabled=model.charges_enabled,
            payouts_enabled=model.payouts_enabled,
            kyc_status=KycStatus(model.kyc_status),
            kyc_reviewed_at=model.kyc_reviewed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def _first(self, *criteria) -> Optional[Provider]:
        result = await self.session.execute(
            select(ProviderModel).where(*criteria).execution_options(populate_existing=True)
        )
        db_row = result.scalar_one_or_none()
        return self._to_entity(db_row) if db_row else None

    async def create(self, provider: Provider) -> Provider:
        db_row = ProviderModel(
            user_id=provider.user_id,
            business_name=provider.business_name,
            plan=provider.plan.value,
            charges_gst=provider.charges_gst,
            fee_override_bps=provider.fee_override_bps,
            connect_account_id=provider.connect_account_id,
            charges_enabled=provider.charges_enabled,
            payouts_enabled=provider.payouts_enabled,
            kyc_status=provider.kyc_status.value,
        )
        if provider.id:
            db_row.id = provider.id
        self.session.add(db_row)
        await self.session.flush()
        await self.session.refresh(db_row)
        return self._to_entity(db_row)

    async def get_by_id(self, provider_id: str) -> Optional[Provider]:
        return await self._first(ProviderModel.id == provider_id)

    async def get_by_user_id(self, user_id: str) -> Optional[Provider]:
        return await self._first(ProviderModel.user_id == user_id)

    async def get_by_connect_account(self, connect_account_id: str) -> Optional[Provider]:
        return await self._first(ProviderModel.connect_account_id == connect_account_id)

    async def update(self, provider: Provider) -> Provider:
        db_row = await self.session.get(ProviderModel, provider.id)
        if db_row is None:
            raise ValueError(f"Provider with id {provider.id} not found")
        db_row.connect_account_id = provider.connect_account_id
        db_row.charges_enabled = provider.charges_enabled
        db_row.payouts_enabled = provider.payouts_enabled
        db_row.kyc_status = provider.kyc_status.value
        db_row.kyc_reviewed_at = provider.kyc_reviewed_at
        db_row.plan = provider.plan.value
        db_row.fee_override_bps = provider.fee_override_bps
        await self.session.flush()
        return self._to_entity(db_row)


class SQLAlchemyServiceRepository(ServiceRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: ServiceModel) -> Service:
        return Service(
            id=model.id,
            provider_id=model.provider_id,
            title=model.title,
            price=model.price,
            charges_gst=model.charges_gst,
            is_active=model.is_active,
        )

    async def create(self, service: Service) -> Service:
        db_row = ServiceModel(
            provider_id=service.provider_id,
            title=service.title,
            price=service.price,
            charges_gst=service.charges_gst,
            is_active=service.is_active,
        )
        if service.id:
            db_row.id = service.id
        self.session.add(db_row)
        await self.session.flush()
        await self.session.refresh(db_row)
        return self._to_entity(db_row)

    async def get_by_id(self, service_id: str) -> Optional[Service]:
        result = await self.session.execute(select(ServiceModel).where(ServiceModel.id == service_id))
        db_row = result.scalar_one_or_none()
        return self._to_entity(db_row) if db_row else None
