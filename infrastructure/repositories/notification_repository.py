"""
通知仓储实现（按 idempotency_key 去重）
"""
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.notification.entity import Notification
from domain.notification.repository import NotificationRepository
from infrastructure.models.base import new_id, utcnow
from infrastructure.models.notification import NotificationModel
from infrastructure.repositories.dialect import upsert_insert


class SQLAlchemyNotificationRepository(NotificationRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: NotificationModel) -> Notification:
        return Notification(
            id=model.id,
            user_id=model.user_id,
            event=model.event,
            title=model.title,
            body=model.body,
            idempotency_key=model.idempotency_key,
            action_url=model.action_url,
            payload=model.payload or {},
            read_at=model.read_at,
            created_at=model.created_at,
        )

    async def create_once(self, notification: Notification) -> bool:
        stmt = upsert_insert(self.session, NotificationModel).values(
            id=notification.id or new_id("ntf"),
            user_id=notification.user_id,
            event=notification.event,
            title=notification.title,
            body=notification.body,
            action_url=notification.action_url,
            payload=notification.payload,
            idempotency_key=notification.idempotency_key,
            created_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=["idempotency_key"])
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[Notification]:
        result = await self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .order_by(NotificationModel.created_at.desc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
